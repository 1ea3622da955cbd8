from __future__ import annotations

from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.pool import StaticPool

from telemetry_db import lifecycle
from telemetry_db.schema import SCHEMA_VERSION, SchemaVersion
from telemetry_db.session import TelemetryDatabase


def _make_database() -> TelemetryDatabase:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return TelemetryDatabase(engine)


def test_bootstrap_creates_schema():
    database = _make_database()

    version = lifecycle.bootstrap(database)
    assert version == SCHEMA_VERSION

    tables = set(inspect(database.engine).get_table_names())
    for expected in {
        "machine_record",
        "ct_series_info",
        "ct_source_info",
        "ct_system_info",
        "ct_acquisition_info",
        "ct_patient_info",
        "dr_series_info",
        "dr_source_info",
        "dr_system_info",
        "dr_acquisition_info",
        "dr_patient_info",
        "schema_version",
    }:
        assert expected in tables
    assert lifecycle.missing_tables(database) == []


def test_bootstrap_idempotent():
    database = _make_database()
    first = lifecycle.bootstrap(database)
    second = lifecycle.bootstrap(database)
    assert first == second == SCHEMA_VERSION

    with database.session() as session:
        assert len(session.scalars(select(SchemaVersion)).all()) == 1


def test_natural_keys_have_unique_indexes():
    database = _make_database()
    lifecycle.bootstrap(database)

    with database.engine.connect() as conn:
        for table, columns in {
            "machine_record": {"serial_number", "modality_type"},
            "ct_series_info": {"serial_number", "series_id"},
            "dr_series_info": {"serial_number", "series_number"},
            "dr_source_info": {"serial_number"},
        }.items():
            unique_columns = []
            for row in conn.execute(text(f"PRAGMA index_list('{table}')")).fetchall():
                if not row[2]:
                    continue
                info = conn.execute(text(f"PRAGMA index_info('{row[1]}')")).fetchall()
                unique_columns.append({entry[2] for entry in info})
            assert columns in unique_columns, table


def test_session_scope_rolls_back_on_error():
    database = _make_database()
    lifecycle.bootstrap(database)

    try:
        with database.session_scope() as session:
            session.add(SchemaVersion(version="9.9.9"))
            session.flush()
            raise RuntimeError("abort")
    except RuntimeError:
        pass

    with database.session() as session:
        versions = session.scalars(select(SchemaVersion.version)).all()
    assert versions == [SCHEMA_VERSION]


def test_ping_and_dispose():
    database = _make_database()
    assert database.ping() is True

    database.dispose()
    assert database.ping() is False
