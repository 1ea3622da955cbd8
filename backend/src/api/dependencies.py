"""Request-scoped accessors for objects owned by the application."""

from __future__ import annotations

from fastapi import Request

from ingestion.coordinator import ReadingCoordinator
from ingestion.observers import PrometheusObserver
from telemetry_db.config import ServiceSettings
from telemetry_db.session import TelemetryDatabase


def get_database(request: Request) -> TelemetryDatabase:
    return request.app.state.database


def get_coordinator(request: Request) -> ReadingCoordinator:
    return request.app.state.coordinator


def get_service_settings(request: Request) -> ServiceSettings:
    return request.app.state.service_settings


def get_metrics(request: Request) -> PrometheusObserver | None:
    return request.app.state.metrics
