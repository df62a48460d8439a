"""Pydantic data models — the system's type contracts."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

# --- Type Aliases ---

RecordId = int
BatchTag = str

# --- Enumerations ---


class ArchiveFormat(StrEnum):
    """Container formats accepted for upload."""

    ZIP = "zip"
    TAR = "tar"


class IdentityPolicy(StrEnum):
    """How persisted row identities are chosen.

    GENERATE ignores the id column of the CSV and lets the store assign one.
    SOURCE persists the caller-supplied id as-is.
    """

    GENERATE = "generate"
    SOURCE = "source"


class StorageBackend(StrEnum):
    """Supported storage backends."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# --- Record Models ---


class PriceRecord(BaseModel):
    """One validated price row, as produced by the CSV parser."""

    model_config = ConfigDict(frozen=True)

    source_id: RecordId
    name: str
    category: str
    price: Decimal
    create_date: date

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError(f"price must be a finite number, got {v}")
        if v < 0:
            raise ValueError(f"price must be >= 0, got {v}")
        return v


class StoredRecord(BaseModel):
    """A persisted price row with its store-assigned identity."""

    model_config = ConfigDict(frozen=True)

    id: RecordId
    name: str
    category: str
    price: Decimal
    create_date: date


class StatsDelta(BaseModel):
    """Aggregates over the rows inserted by a single ingestion.

    Never includes rows written by any other operation.
    """

    model_config = ConfigDict(frozen=True)

    total_items: int = 0
    total_categories: int = 0
    total_price: float = 0.0

    @classmethod
    def empty(cls) -> StatsDelta:
        return cls()
