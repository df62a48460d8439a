"""Persist validated records and compute the delta they add.

With the default ``IdentityPolicy.GENERATE`` the delta is isolated by a
watermark: the highest identity present when the transaction starts. The
store assigns monotonically increasing identities, and ingest sessions are
serialized by the store, so every row with ``id > watermark`` was written by
this transaction.

``IdentityPolicy.SOURCE`` persists the caller's ids, which carry no ordering
guarantee; those rows are scoped by a per-call batch tag instead.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import uuid4

from pricepack.core.models import IdentityPolicy, PriceRecord, StatsDelta
from pricepack.ingestion.store import StorageProtocol

logger = logging.getLogger(__name__)


async def ingest_records(
    store: StorageProtocol,
    records: Sequence[PriceRecord],
    id_policy: IdentityPolicy = IdentityPolicy.GENERATE,
) -> StatsDelta:
    """Insert ``records`` atomically and return stats for exactly those rows.

    Records are trusted to be validated already; any failure aborts the
    whole batch and the store rolls back. An empty batch still opens a
    transaction and returns zero totals.
    """
    batch = uuid4().hex
    keep_source_ids = id_policy == IdentityPolicy.SOURCE

    async with store.ingest_session() as session:
        watermark = await session.watermark()
        inserted = await session.insert_many(records, batch, keep_source_ids=keep_source_ids)
        if keep_source_ids:
            delta = await session.delta_for_batch(batch)
        else:
            delta = await session.delta_after(watermark)

    logger.info(
        "Ingested %d records (watermark=%d, batch=%s): %d categories, total price %.2f",
        inserted,
        watermark,
        batch,
        delta.total_categories,
        delta.total_price,
    )
    return delta
