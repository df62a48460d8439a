"""Export the stored dataset as a ZIP archive holding ``data.csv``."""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, localcontext

from pricepack.core.models import StoredRecord
from pricepack.ingestion.locator import PAYLOAD_NAME
from pricepack.ingestion.parser import DATE_FORMAT
from pricepack.ingestion.store import StorageProtocol

logger = logging.getLogger(__name__)

EXPORT_HEADER = ["id", "name", "category", "price", "create_date"]
EXPORT_FILENAME = "data.zip"

_CENTS = Decimal("0.01")


def format_price(price: Decimal) -> str:
    """Render a price with exactly two decimal digits.

    Precision is widened for the call, so rows stored outside the parser's
    bounds still export instead of raising InvalidOperation.
    """
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, price.adjusted() + 3)
        return str(price.quantize(_CENTS, rounding=ROUND_HALF_UP))


def build_export(records: Iterable[StoredRecord]) -> bytes:
    """Serialize records (already in id order) into a zipped CSV."""
    text = io.StringIO(newline="")
    writer = csv.writer(text, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    count = 0
    for record in records:
        writer.writerow(
            [
                record.id,
                record.name,
                record.category,
                format_price(record.price),
                record.create_date.strftime(DATE_FORMAT),
            ]
        )
        count += 1

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(PAYLOAD_NAME, text.getvalue().encode("utf-8"))

    logger.info("Exported %d records", count)
    return buffer.getvalue()


async def export_store(store: StorageProtocol) -> bytes:
    """Read every stored record and build the export archive."""
    records = await store.list_records()
    return build_export(records)
