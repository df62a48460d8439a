"""Integration tests for archive -> store -> export, with real SQLite I/O."""

from __future__ import annotations

import asyncio
import io
from decimal import Decimal

import pytest

from pricepack.core.exceptions import MalformedCSVError, PayloadNotFoundError
from pricepack.core.models import ArchiveFormat, IdentityPolicy, StatsDelta
from pricepack.ingestion import (
    export_store,
    ingest_archive,
    parse_records,
    read_archive,
    report_stats,
)
from pricepack.ingestion.locator import locate

pytestmark = pytest.mark.integration


class TestIngestArchive:
    """End-to-end ingestion of ZIP and TAR uploads."""

    async def test_zip_example(self, integration_store, make_zip, sample_csv):
        delta = await ingest_archive(
            integration_store, io.BytesIO(make_zip({"data.csv": sample_csv})), ArchiveFormat.ZIP
        )
        assert report_stats(delta) == {
            "total_items": 3,
            "total_categories": 2,
            "total_price": 35.75,
        }

    async def test_tar_gz_example(self, integration_store, make_tar, sample_csv):
        container = make_tar({"bundle/notes.txt": "x", "data.csv": sample_csv}, compression="gz")
        delta = await ingest_archive(integration_store, io.BytesIO(container), "tar")
        assert delta.total_items == 3

    async def test_mixed_rows_example(self, integration_store, make_zip):
        text = (
            "id,name,category,price,create_date\n"
            "1, Widget , Tools,19.999,2024-01-15\n"
            "2,Broken,Tools,notanumber,2024-01-15\n"
        )
        delta = await ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": text})))
        assert delta.total_items == 1
        records = await integration_store.list_records()
        assert records[0].name == "Widget"
        assert records[0].category == "Tools"
        assert records[0].price == Decimal("19.999")

    async def test_header_only_leaves_store_unchanged(self, integration_store, make_zip, sample_csv):
        await ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": sample_csv})))
        delta = await ingest_archive(
            integration_store,
            io.BytesIO(make_zip({"data.csv": "id,name,category,price,create_date\n"})),
        )
        assert delta == StatsDelta.empty()
        assert await integration_store.count_records() == 3

    async def test_rejected_archives_touch_nothing(self, integration_store, make_zip):
        with pytest.raises(PayloadNotFoundError):
            await ingest_archive(integration_store, io.BytesIO(make_zip({"a.txt": "x"})))
        bad = "id,name,category,price,create_date\n1,A,B,1,2024-01-15\n2,\"x\"y,B,1,2024-01-15\n"
        with pytest.raises(MalformedCSVError):
            await ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": bad})))
        assert await integration_store.count_records() == 0


class TestConcurrentIngestion:
    """Concurrent uploads each see only their own rows."""

    async def test_disjoint_deltas(self, integration_store, make_zip, make_csv):
        batches = [
            make_csv([(f"Item{i}-{n}", f"Cat{i}", "1.00", "2024-01-15") for n in range(i + 1)])
            for i in range(5)
        ]
        deltas = await asyncio.gather(
            *(
                ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": text})))
                for text in batches
            )
        )
        assert sorted(d.total_items for d in deltas) == [1, 2, 3, 4, 5]
        assert all(d.total_categories == 1 for d in deltas)
        assert all(d.total_price == float(d.total_items) for d in deltas)
        assert sum(d.total_items for d in deltas) == await integration_store.count_records()

    async def test_source_policy_concurrent(self, integration_store, make_zip, make_csv):
        first = make_csv([("A", "X", "1.00", "2024-01-15")] * 3, start_id=100)
        second = make_csv([("B", "Y", "2.00", "2024-01-15")] * 2, start_id=1)
        deltas = await asyncio.gather(
            ingest_archive(
                integration_store,
                io.BytesIO(make_zip({"data.csv": first})),
                id_policy=IdentityPolicy.SOURCE,
            ),
            ingest_archive(
                integration_store,
                io.BytesIO(make_zip({"data.csv": second})),
                id_policy=IdentityPolicy.SOURCE,
            ),
        )
        assert [d.total_items for d in deltas] == [3, 2]
        assert [d.total_price for d in deltas] == [3.0, 4.0]


class TestExportRoundTrip:
    """Exported archives are valid uploads."""

    async def test_export_reparses(self, integration_store, make_zip, sample_csv):
        await ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": sample_csv})))
        payload = await export_store(integration_store)

        records = read_archive(io.BytesIO(payload), "zip")
        assert [(r.source_id, r.name, r.price) for r in records] == [
            (1, "Widget", Decimal("10.50")),
            (2, "Gadget", Decimal("20.25")),
            (3, "Hammer", Decimal("5.00")),
        ]

    async def test_reingest_export_doubles_store(self, integration_store, make_zip, sample_csv):
        await ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": sample_csv})))
        payload = await export_store(integration_store)
        delta = await ingest_archive(integration_store, io.BytesIO(payload))
        assert delta.total_items == 3
        assert await integration_store.count_records() == 6

    async def test_export_rounds_prices(self, integration_store, make_zip, make_csv):
        text = make_csv([("A", "X", "0.125", "2024-01-15"), ("B", "X", "3", "2024-01-15")])
        await ingest_archive(integration_store, io.BytesIO(make_zip({"data.csv": text})))
        with locate(io.BytesIO(await export_store(integration_store)), "zip") as payload:
            prices = [r.price for r in parse_records(payload)]
        assert prices == [Decimal("0.13"), Decimal("3.00")]
