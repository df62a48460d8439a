"""FastAPI route definitions for the pricepack API."""

from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from starlette.concurrency import run_in_threadpool

import pricepack
from pricepack.api.deps import get_config, get_store
from pricepack.api.schemas import ErrorResponse, HealthResponse, StatsResponse
from pricepack.core.config import PricePackConfig
from pricepack.core.exceptions import MissingUploadError, UploadTooLargeError
from pricepack.ingestion.exporter import EXPORT_FILENAME, export_store
from pricepack.ingestion.locator import resolve_format
from pricepack.ingestion.pipeline import read_archive
from pricepack.ingestion.reporter import report_stats
from pricepack.ingestion.store import StorageProtocol
from pricepack.ingestion.transaction import ingest_records

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: StorageProtocol = Depends(get_store),
    config: PricePackConfig = Depends(get_config),
):
    """System health and record count."""
    total = await store.count_records()
    return HealthResponse(
        status="ok",
        version=pricepack.__version__,
        storage_backend=str(config.storage.backend.value),
        total_records=total,
    )


# -- Prices --


@router.post("/prices", response_model=StatsResponse, responses=_ERROR_RESPONSES)
async def upload_prices(
    file: UploadFile | None = File(None, description="ZIP or TAR archive holding a CSV"),
    archive_type: str = Query("zip", alias="type", description="Archive type: zip or tar"),
    store: StorageProtocol = Depends(get_store),
    config: PricePackConfig = Depends(get_config),
):
    """Ingest an archive and report stats for the rows it added."""
    fmt = resolve_format(archive_type)
    if file is None:
        raise MissingUploadError(
            "Missing multipart file field 'file'", context={"field": "file"}
        )

    try:
        size = _upload_size(file)
        limit = config.ingest.max_upload_bytes
        if size > limit:
            raise UploadTooLargeError(
                f"Upload of {size} bytes exceeds the {limit} byte limit",
                context={"limit": limit},
            )
        records = await run_in_threadpool(read_archive, file.file, fmt)
    finally:
        await file.close()

    delta = await ingest_records(store, records, id_policy=config.ingest.id_policy)
    logger.info(
        "Upload %s (%s): %d rows ingested",
        file.filename,
        fmt,
        delta.total_items,
    )
    return StatsResponse(**report_stats(delta))


@router.get(
    "/prices",
    response_class=Response,
    responses={200: {"content": {"application/zip": {}}}},
)
async def download_prices(store: StorageProtocol = Depends(get_store)):
    """Download every stored record as a zipped data.csv."""
    payload = await export_store(store)
    return Response(
        content=payload,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename={EXPORT_FILENAME}"},
    )


def _upload_size(upload: UploadFile) -> int:
    """Size of the spooled upload; leaves the file rewound."""
    size = upload.size
    if size is None:
        upload.file.seek(0, os.SEEK_END)
        size = upload.file.tell()
    upload.file.seek(0)
    return size
