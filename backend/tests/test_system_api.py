from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from api import server
from telemetry_db.config import ServiceSettings
from telemetry_db.session import TelemetryDatabase


def _make_database() -> TelemetryDatabase:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return TelemetryDatabase(engine)


def test_health_and_ready():
    app = server.create_app(database=_make_database(), settings=ServiceSettings())

    with TestClient(app) as client:
        health = client.get("/api/health")
        ready = client.get("/api/ready")

    assert health.json() == {"status": "healthy"}
    assert ready.json() == {"status": "ready", "database": "connected"}


def test_ready_reports_disconnected_database(monkeypatch):
    database = _make_database()
    app = server.create_app(database=database, settings=ServiceSettings())

    with TestClient(app) as client:
        monkeypatch.setattr(database, "ping", lambda: False)
        response = client.get("/api/ready")

    assert response.json() == {"status": "not_ready", "database": "disconnected"}


def test_startup_bootstraps_and_keeps_caller_database(monkeypatch):
    database = _make_database()
    calls = []
    monkeypatch.setattr(server, "telemetry_bootstrap", lambda db: calls.append(db))

    app = server.create_app(database=database, settings=ServiceSettings())
    with TestClient(app):
        pass

    assert calls == [database]
    assert database.ping() is True


def test_owned_database_is_disposed_on_shutdown(monkeypatch):
    database = _make_database()
    monkeypatch.setattr(server.TelemetryDatabase, "from_settings", classmethod(lambda cls, settings=None: database))

    app = server.create_app(settings=ServiceSettings())
    with TestClient(app) as client:
        assert client.get("/api/ready").json()["status"] == "ready"

    assert database.ping() is False
