"""Schema bootstrap helpers for the telemetry database."""

from __future__ import annotations

import logging

from sqlalchemy import inspect, select

from .schema import SCHEMA_VERSION, Base, SchemaVersion
from .session import TelemetryDatabase

logger = logging.getLogger(__name__)


def missing_tables(database: TelemetryDatabase) -> list[str]:
    """Return the names of ORM tables not yet present in the database."""
    existing = set(inspect(database.engine).get_table_names())
    return sorted(name for name in Base.metadata.tables if name not in existing)


def ensure_schema(database: TelemetryDatabase) -> str:
    missing = missing_tables(database)
    if missing:
        logger.info("Creating telemetry tables: %s", ", ".join(missing))
    Base.metadata.create_all(database.engine)

    with database.session_scope() as session:
        version_row = session.execute(
            select(SchemaVersion).where(SchemaVersion.version == SCHEMA_VERSION)
        ).scalar_one_or_none()
        if version_row:
            return version_row.version
        session.add(SchemaVersion(version=SCHEMA_VERSION))
        logger.info("Telemetry schema version %s recorded", SCHEMA_VERSION)
        return SCHEMA_VERSION


def bootstrap(database: TelemetryDatabase) -> str:
    version = ensure_schema(database)
    logger.info("Telemetry database ready (schema %s, dialect %s)", version, database.dialect_name)
    return version
