"""HTTP route definitions for the service."""

from __future__ import annotations

import io
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from app.schemas import (
    AssetRecord,
    AssetUpsert,
    ConsumptionResult,
    ReadingUploadResponse,
    RecalculationSummary,
    RefillEvent,
    Strategy,
)
from datastore.asset_store import AssetStoreError
from services.consumption import ConsumptionService, build_default_service
from storage.reading_store import ReadingStoreError

router = APIRouter()

_STORE_ERRORS = (ReadingStoreError, AssetStoreError)


def get_service() -> ConsumptionService:
    return build_default_service()


def _not_found(exc: KeyError) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=str(exc.args[0]) if exc.args else "Not found.",
    ) from exc


def _store_unavailable(exc: Exception) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(exc),
    ) from exc


@router.put(
    "/assets/{asset_id}",
    response_model=AssetRecord,
    summary="Register a tank or update its metadata.",
)
def upsert_asset(
    asset_id: str,
    payload: AssetUpsert,
    service: ConsumptionService = Depends(get_service),
) -> AssetRecord:
    try:
        return service.upsert_asset(asset_id, payload)
    except _STORE_ERRORS as exc:
        _store_unavailable(exc)


@router.get(
    "/assets/{asset_id}",
    response_model=AssetRecord,
    summary="Fetch a tank record including its last consumption figures.",
)
def get_asset(
    asset_id: str,
    service: ConsumptionService = Depends(get_service),
) -> AssetRecord:
    try:
        return service.get_asset(asset_id)
    except KeyError as exc:
        _not_found(exc)


@router.post(
    "/assets/{asset_id}/readings",
    response_model=ReadingUploadResponse,
    summary="Upload a CSV of level readings for a tank.",
)
def upload_readings(
    asset_id: str,
    file: UploadFile = File(..., description="CSV with timestamp and level columns."),
    service: ConsumptionService = Depends(get_service),
) -> ReadingUploadResponse:
    file.file.seek(0)
    contents = file.file.read()
    if isinstance(contents, bytes):
        try:
            contents = contents.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Uploaded file is not UTF-8 text.",
            ) from exc
    if not contents.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty.",
        )

    try:
        return service.ingest_readings(asset_id, io.StringIO(contents))
    except KeyError as exc:
        _not_found(exc)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except _STORE_ERRORS as exc:
        _store_unavailable(exc)


@router.post(
    "/assets/{asset_id}/consumption",
    response_model=ConsumptionResult,
    summary="Estimate consumption for a tank and optionally persist it.",
)
def estimate_consumption(
    asset_id: str,
    days: Optional[int] = Query(None, ge=1, le=365, description="Analysis horizon in days."),
    strategy: Optional[Strategy] = Query(None, description="Rate estimation algorithm."),
    persist: bool = Query(True, description="Store the result on the asset record."),
    service: ConsumptionService = Depends(get_service),
) -> ConsumptionResult:
    try:
        result = service.estimate_consumption(asset_id, analysis_days=days, strategy=strategy)
        if persist:
            service.apply_consumption(asset_id, result)
    except KeyError as exc:
        _not_found(exc)
    except _STORE_ERRORS as exc:
        _store_unavailable(exc)
    return result


@router.get(
    "/assets/{asset_id}/refills",
    response_model=List[RefillEvent],
    summary="List refill events detected in a tank's recent readings.",
)
def list_refills(
    asset_id: str,
    days: Optional[int] = Query(None, ge=1, le=365),
    threshold: Optional[float] = Query(None, gt=0, description="Minimum rise in channel units."),
    service: ConsumptionService = Depends(get_service),
) -> List[RefillEvent]:
    try:
        return service.detect_refills(asset_id, days=days, threshold=threshold)
    except KeyError as exc:
        _not_found(exc)
    except _STORE_ERRORS as exc:
        _store_unavailable(exc)


@router.post(
    "/consumption/recalculate",
    response_model=RecalculationSummary,
    summary="Recalculate consumption for every active tank.",
)
def recalculate_all(
    days: Optional[int] = Query(None, ge=1, le=365),
    strategy: Optional[Strategy] = Query(None),
    service: ConsumptionService = Depends(get_service),
) -> RecalculationSummary:
    try:
        return service.recalculate_all(analysis_days=days, strategy=strategy)
    except _STORE_ERRORS as exc:
        _store_unavailable(exc)


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
    return {"status": "ok", "detail": "See /health for service status."}
