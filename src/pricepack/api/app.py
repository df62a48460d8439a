"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pricepack.api.deps import AppState
from pricepack.api.routes import router
from pricepack.core.config import PricePackConfig, load_config
from pricepack.core.exceptions import (
    ConfigError,
    DuplicateRecordError,
    IngestionError,
    PricePackError,
    StorageError,
)
from pricepack.ingestion.store import create_store

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v0"

# Resolved along the exception MRO, so the nearest mapped class wins.
_STATUS_MAP: dict[type[PricePackError], int] = {
    DuplicateRecordError: 409,
    StorageError: 500,
    IngestionError: 400,
    ConfigError: 500,
}


def status_for(exc: PricePackError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            return _STATUS_MAP[cls]
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    store = await create_store(config.storage)

    app.state.app_state = AppState(config=config, store=store)
    logger.info("pricepack API started (storage=%s)", config.storage.backend.value)

    yield

    await store.close()
    logger.info("pricepack API stopped")


def create_app(config: PricePackConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    import pricepack

    app = FastAPI(
        title="pricepack API",
        description="Archive-wrapped CSV price ingestion",
        version=pricepack.__version__,
        lifespan=lifespan,
    )

    # Stash config so lifespan can retrieve it
    app.state._pending_config = config

    app.include_router(router, prefix=API_PREFIX)

    @app.exception_handler(PricePackError)
    async def pricepack_exception_handler(request: Request, exc: PricePackError):
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        logger.warning("%s %s rejected: %s", request.method, request.url.path, detail)
        return JSONResponse(
            status_code=400,
            content={"error": "RequestValidationError", "detail": detail},
        )

    return app
