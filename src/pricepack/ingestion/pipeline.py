"""Archive → records → store.

The payload is parsed completely while the archive is still open, so a
corrupt container or malformed CSV fails the upload before the store is
touched.
"""

from __future__ import annotations

import logging
from typing import IO

from pricepack.core.models import ArchiveFormat, IdentityPolicy, PriceRecord, StatsDelta
from pricepack.ingestion.locator import locate, resolve_format
from pricepack.ingestion.parser import parse_records
from pricepack.ingestion.store import StorageProtocol
from pricepack.ingestion.transaction import ingest_records

logger = logging.getLogger(__name__)


def read_archive(container: IO[bytes], fmt: ArchiveFormat | str) -> list[PriceRecord]:
    """Locate the CSV payload in ``container`` and parse it into records."""
    archive_format = resolve_format(fmt)
    with locate(container, archive_format) as payload:
        records = parse_records(payload)
    logger.debug("Read %d records from %s archive", len(records), archive_format)
    return records


async def ingest_archive(
    store: StorageProtocol,
    container: IO[bytes],
    fmt: ArchiveFormat | str = ArchiveFormat.ZIP,
    id_policy: IdentityPolicy = IdentityPolicy.GENERATE,
) -> StatsDelta:
    """Read an uploaded archive and persist its records in one transaction."""
    records = read_archive(container, fmt)
    return await ingest_records(store, records, id_policy=id_policy)
