"""Read helpers for the stored state of a machine."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from telemetry_db.schema import MachineRecord
from telemetry_db.session import TelemetryDatabase

from .models import EntityKind, Modality
from .reconciler import EntitySpec, strategy_for


def list_machine_records(session: Session, serial_number: str) -> list[MachineRecord]:
    stmt = (
        select(MachineRecord)
        .where(MachineRecord.serial_number == serial_number)
        .order_by(MachineRecord.modality_type, MachineRecord.id.desc())
    )
    return list(session.scalars(stmt))


def _row_dict(spec: EntitySpec, row: Any) -> dict[str, Any]:
    columns = (*spec.key_columns, *spec.tracked_columns, *spec.insert_only_columns)
    payload = {"id": row.id}
    payload.update({column: getattr(row, column) for column in columns})
    payload["updated_at"] = row.updated_at
    return payload


def _children(session: Session, record: MachineRecord) -> dict[str, Any]:
    strategy = strategy_for(Modality(record.modality_type))
    children: dict[str, Any] = {}
    for spec in strategy.child_specs():
        stmt = (
            select(spec.model)
            .where(spec.model.serial_number == record.serial_number)
            .order_by(spec.model.id.desc())
        )
        rows = list(session.scalars(stmt))
        if spec.kind is EntityKind.SERIES_INFO:
            children[spec.kind.value] = [_row_dict(spec, row) for row in rows]
        else:
            children[spec.kind.value] = _row_dict(spec, rows[0]) if rows else None
    return children


def get_machine_state(database: TelemetryDatabase, serial_number: str) -> list[dict[str, Any]]:
    """Return one entry per stored modality of ``serial_number`` with its child rows."""
    with database.session() as session:
        state = []
        for record in list_machine_records(session, serial_number):
            state.append(
                {
                    "id": record.id,
                    "serial_number": record.serial_number,
                    "modality_type": record.modality_type,
                    "machine_type": record.machine_type,
                    "modality": record.modality,
                    "acquisition_date": record.acquisition_date,
                    "acquisition_time": record.acquisition_time,
                    "study_uid": record.study_uid,
                    "series_uid": record.series_uid,
                    "status": record.status,
                    "additional_info": record.additional_info,
                    "created_at": record.created_at,
                    "updated_at": record.updated_at,
                    **_children(session, record),
                }
            )
        return state
