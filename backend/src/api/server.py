"""FastAPI application factory for the imaging telemetry API."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from logging_config import configure_logging

# Patchable imports for testing
from telemetry_db.lifecycle import bootstrap as telemetry_bootstrap
from telemetry_db.config import ServiceSettings, get_service_settings
from telemetry_db.session import TelemetryDatabase
from ingestion.coordinator import ReadingCoordinator
from ingestion.observers import PrometheusObserver

configure_logging()
logger = logging.getLogger(__name__)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


def create_app(
    database: TelemetryDatabase | None = None,
    settings: ServiceSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A ``database`` passed in stays owned by the caller; otherwise one is built
    from the environment and disposed when the application shuts down.
    """
    settings = settings or get_service_settings()
    owns_database = database is None
    database = database or TelemetryDatabase.from_settings()

    metrics = PrometheusObserver() if settings.metrics_enabled else None
    coordinator = ReadingCoordinator(database, observers=[metrics] if metrics else ())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            telemetry_bootstrap(database)
        except Exception:
            logger.exception("Telemetry database bootstrap failed")
            raise
        yield
        if owns_database:
            database.dispose()

    app = FastAPI(
        title="Imaging Telemetry API",
        description="Ingests CT and DR machine readings and keeps their latest state",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.database = database
    app.state.coordinator = coordinator
    app.state.metrics = metrics
    app.state.service_settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    from api.routes import machines_router, metrics_router, readings_router, system_router

    app.include_router(system_router)
    app.include_router(readings_router)
    app.include_router(machines_router)
    app.include_router(metrics_router)

    return app


def main():
    """Run the API server."""
    import uvicorn
    settings = get_service_settings()
    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
