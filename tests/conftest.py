"""Shared pytest fixtures for pricepack."""

import io
import tarfile
import zipfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from pricepack.core.config import StorageConfig
from pricepack.core.models import PriceRecord, StorageBackend
from pricepack.ingestion.store import SqliteStore

SAMPLE_CSV = (
    "id,name,category,price,create_date\n"
    "1,Widget,Tools,10.50,2024-01-15\n"
    "2,Gadget,Electronics,20.25,2024-01-16\n"
    "3,Hammer,Tools,5.00,2024-01-17\n"
)


def build_zip(entries: dict[str, bytes | str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def build_tar(entries: dict[str, bytes | str], compression: str = "") -> bytes:
    buffer = io.BytesIO()
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(fileobj=buffer, mode=mode) as archive:
        for name, content in entries.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_CSV


@pytest.fixture
def make_zip():
    """Factory: dict of entry name -> content to ZIP bytes."""
    return build_zip


@pytest.fixture
def make_tar():
    """Factory: dict of entry name -> content to TAR bytes."""
    return build_tar


@pytest.fixture
def make_record():
    """Factory for PriceRecord with overridable defaults."""

    def _make(**overrides):
        defaults = dict(
            source_id=1,
            name="Widget",
            category="Tools",
            price=Decimal("10.50"),
            create_date=date(2024, 1, 15),
        )
        defaults.update(overrides)
        return PriceRecord(**defaults)

    return _make


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(
        backend=StorageBackend.SQLITE,
        sqlite_path=str(tmp_path / "prices.db"),
    )


@pytest.fixture
async def sqlite_store(storage_config: StorageConfig) -> SqliteStore:
    """An initialized SqliteStore backed by a temp file."""
    store = SqliteStore(storage_config)
    await store.initialize()
    yield store
    await store.close()
