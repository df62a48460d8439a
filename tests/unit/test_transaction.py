"""Tests for the ingestion transaction and its delta scoping."""

from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from pricepack.core.exceptions import StorageError
from pricepack.core.models import IdentityPolicy, StatsDelta
from pricepack.ingestion.reporter import report_stats
from pricepack.ingestion.store import IngestSession, StorageProtocol
from pricepack.ingestion.transaction import ingest_records


# -- Fakes --


class FakeSession:
    """Minimal in-memory IngestSession over a list of row dicts."""

    def __init__(self, rows: list[dict], fail_on_insert: bool = False):
        self._rows = rows
        self._fail_on_insert = fail_on_insert
        self.batches: list[str] = []

    async def watermark(self) -> int:
        return max((r["id"] for r in self._rows), default=0)

    async def insert_many(self, records, batch, keep_source_ids=False) -> int:
        self.batches.append(batch)
        next_id = await self.watermark()
        for record in records:
            if self._fail_on_insert:
                raise StorageError("insert exploded", context={"operation": "insert"})
            next_id += 1
            self._rows.append(
                {
                    "id": record.source_id if keep_source_ids else next_id,
                    "category": record.category,
                    "price": record.price,
                    "batch": batch,
                }
            )
        return len(records)

    async def delta_after(self, watermark: int) -> StatsDelta:
        return self._delta([r for r in self._rows if r["id"] > watermark])

    async def delta_for_batch(self, batch: str) -> StatsDelta:
        return self._delta([r for r in self._rows if r["batch"] == batch])

    @staticmethod
    def _delta(rows: list[dict]) -> StatsDelta:
        return StatsDelta(
            total_items=len(rows),
            total_categories=len({r["category"] for r in rows}),
            total_price=float(sum((r["price"] for r in rows), Decimal(0))),
        )


class FakeStore:
    """Store whose sessions copy rows on entry and publish them on clean exit."""

    def __init__(self, rows: list[dict] | None = None, fail_on_insert: bool = False):
        self.rows = list(rows or [])
        self.fail_on_insert = fail_on_insert
        self.sessions = 0
        self.last_session: FakeSession | None = None

    @asynccontextmanager
    async def ingest_session(self):
        self.sessions += 1
        working = list(self.rows)
        session = FakeSession(working, fail_on_insert=self.fail_on_insert)
        self.last_session = session
        yield session
        self.rows = working

    async def list_records(self):
        return []

    async def count_records(self) -> int:
        return len(self.rows)

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def health_check(self) -> bool:
        return True


def _existing(n: int, category: str = "Old", price: str = "100.00") -> list[dict]:
    return [
        {"id": i, "category": category, "price": Decimal(price), "batch": "previous"}
        for i in range(1, n + 1)
    ]


# -- Tests --


class TestFakes:
    def test_fake_store_satisfies_protocol(self):
        assert isinstance(FakeStore(), StorageProtocol)

    def test_fake_session_satisfies_protocol(self):
        assert isinstance(FakeSession([]), IngestSession)


class TestIngestRecords:
    async def test_delta_counts_only_new_rows(self, make_record):
        store = FakeStore(rows=_existing(5))
        records = [
            make_record(source_id=1, category="Tools", price=Decimal("10.50")),
            make_record(source_id=2, category="Electronics", price=Decimal("20.25")),
            make_record(source_id=3, category="Tools", price=Decimal("5.00")),
        ]
        delta = await ingest_records(store, records)
        assert delta == StatsDelta(total_items=3, total_categories=2, total_price=35.75)
        assert len(store.rows) == 8

    async def test_existing_categories_not_counted(self, make_record):
        # "Old" exists before the call; only categories in this batch count.
        store = FakeStore(rows=_existing(2, category="Old"))
        delta = await ingest_records(store, [make_record(category="Old")])
        assert delta.total_categories == 1
        assert delta.total_items == 1

    async def test_generated_ids_follow_watermark(self, make_record):
        store = FakeStore(rows=_existing(4))
        await ingest_records(store, [make_record(source_id=99), make_record(source_id=98)])
        assert [r["id"] for r in store.rows[-2:]] == [5, 6]

    async def test_empty_batch_returns_zero_totals(self):
        store = FakeStore(rows=_existing(3))
        delta = await ingest_records(store, [])
        assert delta == StatsDelta.empty()
        assert store.sessions == 1
        assert len(store.rows) == 3

    async def test_failure_leaves_store_unchanged(self, make_record):
        store = FakeStore(rows=_existing(2), fail_on_insert=True)
        with pytest.raises(StorageError, match="insert exploded"):
            await ingest_records(store, [make_record()])
        assert len(store.rows) == 2

    async def test_source_policy_keeps_ids_and_scopes_by_batch(self, make_record):
        # Caller ids below the watermark would be invisible to delta_after.
        store = FakeStore(rows=[{"id": 50, "category": "Old", "price": Decimal("1"), "batch": "x"}])
        records = [make_record(source_id=7, price=Decimal("2.00"))]
        delta = await ingest_records(store, records, id_policy=IdentityPolicy.SOURCE)
        assert delta.total_items == 1
        assert delta.total_price == 2.0
        assert store.rows[-1]["id"] == 7

    async def test_each_call_uses_fresh_batch_tag(self, make_record):
        store = FakeStore()
        await ingest_records(store, [make_record()])
        first = store.last_session.batches[0]
        await ingest_records(store, [make_record()])
        assert store.last_session.batches[0] != first


class TestReportStats:
    def test_shape(self):
        payload = report_stats(StatsDelta(total_items=3, total_categories=2, total_price=35.75))
        assert payload == {"total_items": 3, "total_categories": 2, "total_price": 35.75}

    def test_empty(self):
        assert report_stats(StatsDelta.empty()) == {
            "total_items": 0,
            "total_categories": 0,
            "total_price": 0.0,
        }
