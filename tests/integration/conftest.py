"""Integration test fixtures: real SQLite files and archives, no network."""

from __future__ import annotations

from pathlib import Path

import pytest

from pricepack.core.config import StorageConfig
from pricepack.core.models import StorageBackend
from pricepack.ingestion.store import SqliteStore


@pytest.fixture
async def integration_store(tmp_path: Path) -> SqliteStore:
    """An initialized SqliteStore for integration tests."""
    config = StorageConfig(
        backend=StorageBackend.SQLITE,
        sqlite_path=str(tmp_path / "integration.db"),
    )
    store = SqliteStore(config)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def make_csv():
    """Factory: list of (name, category, price, date) tuples -> CSV text."""

    def _make(rows, start_id: int = 1) -> str:
        lines = ["id,name,category,price,create_date"]
        for offset, (name, category, price, day) in enumerate(rows):
            lines.append(f"{start_id + offset},{name},{category},{price},{day}")
        return "\n".join(lines) + "\n"

    return _make
