"""Price archive ingestion: locator, parser, transaction, store, export."""

from pricepack.ingestion.exporter import build_export, export_store
from pricepack.ingestion.locator import PayloadLocator, TarLocator, ZipLocator, locate
from pricepack.ingestion.parser import iter_records, parse_records
from pricepack.ingestion.pipeline import ingest_archive, read_archive
from pricepack.ingestion.reporter import report_stats
from pricepack.ingestion.store import (
    IngestSession,
    PostgresStore,
    SqliteStore,
    StorageProtocol,
    create_store,
)
from pricepack.ingestion.transaction import ingest_records

__all__ = [
    "PayloadLocator",
    "ZipLocator",
    "TarLocator",
    "locate",
    "iter_records",
    "parse_records",
    "ingest_records",
    "report_stats",
    "read_archive",
    "ingest_archive",
    "build_export",
    "export_store",
    "IngestSession",
    "StorageProtocol",
    "SqliteStore",
    "PostgresStore",
    "create_store",
]
