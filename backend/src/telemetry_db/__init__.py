"""Telemetry database package."""

from .config import get_settings, get_service_settings  # noqa: F401
from .lifecycle import ensure_schema, bootstrap  # noqa: F401
from .session import TelemetryDatabase, build_engine  # noqa: F401
