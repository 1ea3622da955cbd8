from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from api import server
from api.routes import readings as readings_route
from telemetry_db.config import ServiceSettings
from telemetry_db.lifecycle import ensure_schema
from telemetry_db.schema import CHILD_TABLES, MachineRecord
from telemetry_db.session import TelemetryDatabase


def _setup_readings_api(**settings):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = TelemetryDatabase(engine)
    ensure_schema(database)
    app = server.create_app(database=database, settings=ServiceSettings(**settings))
    return app, database


def _row_count(database):
    with database.session() as session:
        total = session.scalar(select(func.count()).select_from(MachineRecord))
        for model in CHILD_TABLES:
            total += session.scalar(select(func.count()).select_from(model))
    return total


def _ct_payload(temperature=36.5):
    return {
        "machineType": "CT",
        "serialNumber": "SN1",
        "status": "active",
        "data": {
            "modality": "CT",
            "acquisition_date": "20240301",
            "series_info": {"series_id": "S1", "temperature": temperature, "kV": 120},
        },
    }


def test_post_reading_creates_then_skips_then_updates():
    app, database = _setup_readings_api()

    with TestClient(app) as client:
        first = client.post("/api/readings", json=_ct_payload())
        assert first.status_code == 201
        body = first.json()
        assert body["message"] == "Data received successfully"
        assert body["modalityType"] == "CT"
        assert body["outcomes"] == [
            {"entity": "machine_record", "action": "insert"},
            {"entity": "series_info", "action": "insert"},
        ]

        second = client.post("/api/readings", json=_ct_payload())
        assert second.status_code == 200
        assert [item["action"] for item in second.json()["outcomes"]] == ["skip", "skip"]
        assert second.json()["machineRecordId"] == body["machineRecordId"]

        third = client.post("/api/readings", json=_ct_payload(temperature=37.0))
        assert third.status_code == 200
        assert third.json()["outcomes"] == [
            {"entity": "machine_record", "action": "skip"},
            {"entity": "series_info", "action": "update", "changedFields": ["temperature"]},
        ]


def test_legacy_upload_route_accepts_readings():
    app, _ = _setup_readings_api()

    with TestClient(app) as client:
        response = client.post("/upload", json=_ct_payload())

    assert response.status_code == 201
    assert response.json()["message"] == "Data received successfully"


def test_unknown_machine_type_returns_400_without_writes():
    app, database = _setup_readings_api()
    payload = _ct_payload()
    payload["machineType"] = "unknown_device"

    with TestClient(app) as client:
        response = client.post("/api/readings", json=payload)

    assert response.status_code == 400
    assert "unknown_device" in response.json()["error"]
    assert _row_count(database) == 0


def test_missing_serial_number_returns_400_without_writes():
    app, database = _setup_readings_api()
    payload = _ct_payload()
    payload.pop("serialNumber")

    with TestClient(app) as client:
        response = client.post("/api/readings", json=payload)

    assert response.status_code == 400
    assert "serialNumber" in response.json()["error"]
    assert _row_count(database) == 0


def test_malformed_json_returns_400():
    app, _ = _setup_readings_api()

    with TestClient(app) as client:
        response = client.post(
            "/api/readings",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

    assert response.status_code == 400
    assert "error" in response.json()


def test_storage_failure_returns_500_and_rolls_back():
    app, database = _setup_readings_api()

    @event.listens_for(database.engine, "before_cursor_execute")
    def _fail_series(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT INTO CT_SERIES_INFO"):
            raise OperationalError(statement, parameters, Exception("connection reset"))

    with TestClient(app) as client:
        response = client.post("/api/readings", json=_ct_payload())

    event.remove(database.engine, "before_cursor_execute", _fail_series)

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to store reading"
    assert body["details"]["entity"] == "series_info"
    assert body["details"]["errorType"] == "OperationalError"
    assert "INSERT" not in response.text
    assert _row_count(database) == 0


def test_transient_failure_is_retried(monkeypatch):
    app, database = _setup_readings_api(ingest_max_retries=2, ingest_retry_delay_seconds=0.01)
    sleeps = []
    monkeypatch.setattr(readings_route.time, "sleep", sleeps.append)
    failures = {"remaining": 1}

    @event.listens_for(database.engine, "before_cursor_execute")
    def _fail_once(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT INTO MACHINE_RECORD") and failures["remaining"]:
            failures["remaining"] -= 1
            raise OperationalError(statement, parameters, Exception("server closed the connection"))

    with TestClient(app) as client:
        response = client.post("/api/readings", json=_ct_payload())

    event.remove(database.engine, "before_cursor_execute", _fail_once)

    assert response.status_code == 201
    assert sleeps == [0.01]


def test_metrics_reflect_committed_readings():
    app, _ = _setup_readings_api()
    dr_payload = {
        "machineType": "DR",
        "serialNumber": "DR7",
        "status": "active",
        "data": {"source_info": {"kV": 80, "mA": 5, "temperature_celsius": 31.5}},
    }

    with TestClient(app) as client:
        client.post("/api/readings", json=_ct_payload())
        client.post("/api/readings", json=dr_payload)
        response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "imaging_machine_temperature" in response.text

    registry = app.state.metrics.registry
    ct_labels = {"serial_number": "SN1", "machine_type": "CT"}
    dr_labels = {"serial_number": "DR7", "machine_type": "DR"}
    assert registry.get_sample_value("imaging_machine_temperature", ct_labels) == 36.5
    assert registry.get_sample_value("imaging_machine_kv", ct_labels) == 120.0
    assert registry.get_sample_value("imaging_machine_ma", dr_labels) == 5.0
    assert registry.get_sample_value("imaging_machine_temperature", dr_labels) == 31.5


def test_metrics_route_is_disabled_by_settings():
    app, _ = _setup_readings_api(metrics_enabled=False)

    with TestClient(app) as client:
        client.post("/api/readings", json=_ct_payload())
        response = client.get("/metrics")

    assert response.status_code == 404


def test_offset_acquisition_time_is_skipped_on_repeat():
    app, database = _setup_readings_api()
    payload = {
        "machineType": "CT",
        "serialNumber": "SN2",
        "status": "ok",
        "data": {"acquisition_time": "10:30:00+02:00"},
    }

    with TestClient(app) as client:
        first = client.post("/api/readings", json=payload)
        second = client.post("/api/readings", json=payload)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["outcomes"] == [{"entity": "machine_record", "action": "skip"}]

    with database.session() as session:
        record = session.scalars(select(MachineRecord)).one()
        assert record.acquisition_time.isoformat() == "08:30:00"


def test_nan_measurement_returns_400_without_writes():
    app, database = _setup_readings_api()
    body = (
        b'{"machineType": "CT", "serialNumber": "SN1", "status": "active", '
        b'"data": {"series_info": {"series_id": "S1", "temperature": NaN}}}'
    )

    with TestClient(app) as client:
        response = client.post("/api/readings", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert "temperature" in response.json()["error"]
    assert _row_count(database) == 0


def test_oversized_count_returns_400_without_writes():
    app, database = _setup_readings_api()
    payload = {
        "machineType": "DR",
        "serialNumber": "DR9",
        "status": "active",
        "data": {"series_info": {"series_number": "1", "image_count": 10**20}},
    }

    with TestClient(app) as client:
        response = client.post("/api/readings", json=payload)

    assert response.status_code == 400
    assert "image_count" in response.json()["error"]
    assert _row_count(database) == 0
