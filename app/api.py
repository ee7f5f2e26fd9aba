"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from app.schemas import ExportState, ExportStateResponse
from datastore.export_state import ExportStateStore, build_default_state_store
from services.exporter import ExportFormat
from settings import get_settings
from storage.export_bucket import ExportBucket, build_default_bucket

router = APIRouter()

_MEDIA_TYPES = {
    ExportFormat.csv: "text/csv",
    ExportFormat.binary: "application/octet-stream",
}


def get_state_store() -> ExportStateStore:
    return build_default_state_store()


def get_bucket() -> ExportBucket:
    return build_default_bucket()


def get_object_key() -> str:
    return get_settings().object_key


def get_export_format() -> ExportFormat:
    return ExportFormat(get_settings().export_format)


@router.get(
    "/exports/state",
    response_model=ExportStateResponse,
    summary="Fetch the export checkpoint and whether an export is published.",
)
async def get_export_state(
    store: ExportStateStore = Depends(get_state_store),
    bucket: ExportBucket = Depends(get_bucket),
    object_key: str = Depends(get_object_key),
) -> ExportStateResponse:
    state: ExportState | None = store.load()
    return ExportStateResponse(
        state=state,
        object_key=object_key,
        available=bucket.exists(object_key),
    )


@router.get(
    "/exports/latest",
    summary="Download the most recently published export.",
    response_class=Response,
)
async def download_latest_export(
    bucket: ExportBucket = Depends(get_bucket),
    object_key: str = Depends(get_object_key),
    export_format: ExportFormat = Depends(get_export_format),
) -> Response:
    try:
        payload = bucket.get_object(object_key)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return Response(
        content=payload,
        media_type=_MEDIA_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="{object_key.rsplit("/", 1)[-1]}"'},
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /exports/state for the latest export."}
