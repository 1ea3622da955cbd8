"""Routes for ingesting machine readings."""

from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_coordinator, get_service_settings
from api.models.readings import EntityOutcomeResponse, IngestErrorResponse, ReadingAcceptedResponse
from ingestion.coordinator import IngestResult, ReadingCoordinator
from ingestion.errors import TransactionError, ValidationError
from ingestion.extractor import extract_reading
from ingestion.models import Reading
from telemetry_db.config import ServiceSettings


logger = logging.getLogger(__name__)

router = APIRouter(tags=["readings"])

SUCCESS_MESSAGE = "Data received successfully"
FAILURE_MESSAGE = "Failed to store reading"


def _describe_payload(payload: Any) -> str:
    if isinstance(payload, dict):
        return f"serialNumber={payload.get('serialNumber')!r} machineType={payload.get('machineType')!r}"
    return f"non-object body ({type(payload).__name__})"


def ingest_with_retry(
    coordinator: ReadingCoordinator,
    reading: Reading,
    max_retries: int,
    delay_seconds: float,
) -> IngestResult:
    """Ingest ``reading``, retrying transient storage failures with exponential backoff."""
    attempt = 0
    while True:
        try:
            return coordinator.ingest(reading)
        except TransactionError as exc:
            if not exc.transient or attempt >= max_retries:
                raise
            wait = delay_seconds * (2 ** attempt)
            attempt += 1
            logger.warning(
                "Transient storage failure for %s, retry %d/%d in %.2fs",
                reading.serial_number,
                attempt,
                max_retries,
                wait,
            )
            time.sleep(wait)


def _accepted(result: IngestResult) -> JSONResponse:
    body = ReadingAcceptedResponse(
        message=SUCCESS_MESSAGE,
        machineRecordId=result.machine_record_id,
        modalityType=result.modality_type.value,
        outcomes=[EntityOutcomeResponse(**outcome.as_dict()) for outcome in result.outcomes],
    )
    return JSONResponse(
        status_code=201 if result.created else 200,
        content=body.model_dump(exclude_none=True),
    )


def _handle_reading(payload: Any, coordinator: ReadingCoordinator, settings: ServiceSettings) -> JSONResponse:
    logger.info("Received reading: %s", _describe_payload(payload))
    try:
        reading = extract_reading(payload)
    except ValidationError as exc:
        logger.info("Rejected reading: %s", exc)
        return JSONResponse(status_code=400, content=IngestErrorResponse(error=str(exc)).model_dump(exclude_none=True))

    try:
        result = ingest_with_retry(
            coordinator,
            reading,
            settings.ingest_max_retries,
            settings.ingest_retry_delay_seconds,
        )
    except TransactionError as exc:
        return JSONResponse(
            status_code=500,
            content=IngestErrorResponse(error=FAILURE_MESSAGE, details=exc.details()).model_dump(),
        )
    return _accepted(result)


@router.post("/api/readings", response_model=ReadingAcceptedResponse, status_code=201)
def post_reading(
    payload: Any = Body(...),
    coordinator: ReadingCoordinator = Depends(get_coordinator),
    settings: ServiceSettings = Depends(get_service_settings),
):
    """Ingest one machine reading."""
    return _handle_reading(payload, coordinator, settings)


@router.post("/upload", response_model=ReadingAcceptedResponse, status_code=201, include_in_schema=False)
def upload_reading(
    payload: Any = Body(...),
    coordinator: ReadingCoordinator = Depends(get_coordinator),
    settings: ServiceSettings = Depends(get_service_settings),
):
    """Legacy alias of POST /api/readings."""
    return _handle_reading(payload, coordinator, settings)
