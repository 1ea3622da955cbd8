from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from api import server
from telemetry_db.config import ServiceSettings
from telemetry_db.lifecycle import ensure_schema
from telemetry_db.session import TelemetryDatabase


def _setup_machines_api():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = TelemetryDatabase(engine)
    ensure_schema(database)
    return server.create_app(database=database, settings=ServiceSettings())


def test_get_machine_returns_records_with_children():
    app = _setup_machines_api()
    payload = {
        "machineType": "CT",
        "serialNumber": "SN1",
        "status": "active",
        "data": {
            "acquisition_date": "2024-03-01",
            "acquisition_time": "101530",
            "series_info": {"series_id": "S1", "temperature": 36.5, "kV": 120},
            "patient_info": {"position": "HFS", "size_kg": 70},
            "firmware": "4.2",
        },
    }

    with TestClient(app) as client:
        client.post("/api/readings", json=payload)
        response = client.get("/api/machines/SN1")

    assert response.status_code == 200
    body = response.json()
    assert body["serialNumber"] == "SN1"
    assert len(body["records"]) == 1

    record = body["records"][0]
    assert record["modalityType"] == "CT"
    assert record["machineType"] == "CT"
    assert record["acquisitionDate"] == "2024-03-01"
    assert record["acquisitionTime"] == "10:15:30"
    assert record["additionalInfo"] == {"firmware": "4.2"}
    assert record["seriesInfo"][0]["series_id"] == "S1"
    assert record["seriesInfo"][0]["kv"] == 120.0
    assert record["patientInfo"]["position"] == "HFS"
    assert record["sourceInfo"] is None


def test_get_unknown_machine_returns_404():
    app = _setup_machines_api()

    with TestClient(app) as client:
        response = client.get("/api/machines/missing")

    assert response.status_code == 404
