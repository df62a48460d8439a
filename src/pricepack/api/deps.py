"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from pricepack.core.config import PricePackConfig
from pricepack.ingestion.store import StorageProtocol


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: PricePackConfig
    store: StorageProtocol


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> PricePackConfig:
    """Dependency: retrieve config."""
    return request.app.state.app_state.config


def get_store(request: Request) -> StorageProtocol:
    """Dependency: retrieve storage backend."""
    return request.app.state.app_state.store
