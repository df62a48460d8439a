"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


class StatsResponse(BaseModel):
    """Delta for the rows inserted by one upload."""

    total_items: int
    total_categories: int
    total_price: float


class HealthResponse(BaseModel):
    """System health check response."""

    status: str
    version: str
    storage_backend: str
    total_records: int
