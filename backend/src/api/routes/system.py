"""System routes for health checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_database
from api.models.system import HealthResponse, ReadinessResponse
from telemetry_db.session import TelemetryDatabase


router = APIRouter(prefix="/api", tags=["system"])


@router.get("/health", response_model=HealthResponse)
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/ready", response_model=ReadinessResponse)
def readiness_check(database: TelemetryDatabase = Depends(get_database)):
    """Readiness check that verifies database connectivity."""
    if database.ping():
        return {"status": "ready", "database": "connected"}
    return {"status": "not_ready", "database": "disconnected"}
