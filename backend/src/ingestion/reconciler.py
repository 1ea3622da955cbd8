"""Per-entity change detection and atomic upserts for machine readings.

Every entity of a reading (the machine record and each present sub-object)
is reconciled against the stored row that shares its natural key:

* no stored row -> ``insert``
* stored row with at least one differing tracked field -> ``update``
* stored row with identical tracked fields -> ``skip`` (no write)

Writes go through ``INSERT ... ON CONFLICT (natural key) DO UPDATE`` on
dialects that support it, so two concurrent readings for the same key can
never produce duplicate rows. Only tracked columns are overwritten on
update; insert-only columns keep the value of the first sighting.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy import literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from telemetry_db.schema import (
    Base,
    CTAcquisitionInfo,
    CTPatientInfo,
    CTSeriesInfo,
    CTSourceInfo,
    CTSystemInfo,
    DRAcquisitionInfo,
    DRPatientInfo,
    DRSeriesInfo,
    DRSourceInfo,
    DRSystemInfo,
    MachineRecord,
)

from .models import (
    CHILD_KINDS,
    Action,
    CTAcquisitionInfoPayload,
    CTSeriesInfoPayload,
    CTSourceInfoPayload,
    CTSystemInfoPayload,
    DRAcquisitionInfoPayload,
    DRSeriesInfoPayload,
    DRSourceInfoPayload,
    DRSystemInfoPayload,
    EntityKind,
    EntityOutcome,
    InfoPayload,
    Modality,
    PatientInfoPayload,
)

logger = logging.getLogger(__name__)

_FLOAT_TOLERANCE = 1e-9

_UPSERT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class EntitySpec:
    """How one entity kind is stored and which of its columns signal a change."""

    kind: EntityKind
    model: type[Base]
    key_columns: tuple[str, ...]
    tracked_columns: tuple[str, ...]
    payload_model: type[InfoPayload] | None = None
    insert_only_columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModalityStrategy:
    modality: Modality
    children: Mapping[EntityKind, EntitySpec]

    def child_specs(self) -> list[EntitySpec]:
        return [self.children[kind] for kind in CHILD_KINDS if kind in self.children]


MACHINE_RECORD_SPEC = EntitySpec(
    kind=EntityKind.MACHINE_RECORD,
    model=MachineRecord,
    key_columns=("serial_number", "modality_type"),
    tracked_columns=("modality", "acquisition_date", "acquisition_time", "study_uid", "series_uid", "status"),
    insert_only_columns=("machine_type", "additional_info"),
)

_CHILD_INSERT_ONLY = ("machine_record_id",)

CT_STRATEGY = ModalityStrategy(
    modality=Modality.CT,
    children={
        EntityKind.SERIES_INFO: EntitySpec(
            kind=EntityKind.SERIES_INFO,
            model=CTSeriesInfo,
            key_columns=("serial_number", "series_id"),
            tracked_columns=("temperature", "kv"),
            payload_model=CTSeriesInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.SOURCE_INFO: EntitySpec(
            kind=EntityKind.SOURCE_INFO,
            model=CTSourceInfo,
            key_columns=("serial_number",),
            tracked_columns=("source_type", "energy"),
            payload_model=CTSourceInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.SYSTEM_INFO: EntitySpec(
            kind=EntityKind.SYSTEM_INFO,
            model=CTSystemInfo,
            key_columns=("serial_number",),
            tracked_columns=("angle_range", "linear_position"),
            payload_model=CTSystemInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.ACQUISITION_INFO: EntitySpec(
            kind=EntityKind.ACQUISITION_INFO,
            model=CTAcquisitionInfo,
            key_columns=("serial_number",),
            tracked_columns=("frame_rate", "grid_type"),
            payload_model=CTAcquisitionInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.PATIENT_INFO: EntitySpec(
            kind=EntityKind.PATIENT_INFO,
            model=CTPatientInfo,
            key_columns=("serial_number",),
            tracked_columns=("position", "size_kg", "target"),
            payload_model=PatientInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
    },
)

DR_STRATEGY = ModalityStrategy(
    modality=Modality.DR,
    children={
        EntityKind.SERIES_INFO: EntitySpec(
            kind=EntityKind.SERIES_INFO,
            model=DRSeriesInfo,
            key_columns=("serial_number", "series_number"),
            tracked_columns=("image_count", "patient_id", "exam_type"),
            payload_model=DRSeriesInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.SOURCE_INFO: EntitySpec(
            kind=EntityKind.SOURCE_INFO,
            model=DRSourceInfo,
            key_columns=("serial_number",),
            tracked_columns=("source_type", "kv", "ma", "exposure_time_ms", "temperature_celsius"),
            payload_model=DRSourceInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.SYSTEM_INFO: EntitySpec(
            kind=EntityKind.SYSTEM_INFO,
            model=DRSystemInfo,
            key_columns=("serial_number",),
            tracked_columns=("linear_position_mm", "panel_position_mm", "angle_range_degrees", "manufacturer"),
            payload_model=DRSystemInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.ACQUISITION_INFO: EntitySpec(
            kind=EntityKind.ACQUISITION_INFO,
            model=DRAcquisitionInfo,
            key_columns=("serial_number",),
            tracked_columns=("frames_per_run", "frame_rate_hz"),
            payload_model=DRAcquisitionInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
        EntityKind.PATIENT_INFO: EntitySpec(
            kind=EntityKind.PATIENT_INFO,
            model=DRPatientInfo,
            key_columns=("serial_number",),
            tracked_columns=("position", "size_kg", "target"),
            payload_model=PatientInfoPayload,
            insert_only_columns=_CHILD_INSERT_ONLY,
        ),
    },
)

STRATEGIES: dict[Modality, ModalityStrategy] = {
    Modality.CT: CT_STRATEGY,
    Modality.DR: DR_STRATEGY,
}


def strategy_for(modality: Modality) -> ModalityStrategy:
    return STRATEGIES[modality]


def values_equal(stored: Any, incoming: Any) -> bool:
    """Null-safe equality: NULL only matches NULL."""
    if stored is None or incoming is None:
        return stored is None and incoming is None
    if isinstance(stored, float) or isinstance(incoming, float):
        try:
            return math.isclose(float(stored), float(incoming), rel_tol=_FLOAT_TOLERANCE, abs_tol=_FLOAT_TOLERANCE)
        except (TypeError, ValueError):
            return False
    return stored == incoming


def changed_columns(spec: EntitySpec, row: Any, values: Mapping[str, Any]) -> list[str]:
    return [
        column
        for column in spec.tracked_columns
        if not values_equal(getattr(row, column), values.get(column))
    ]


def find_latest(session: Session, spec: EntitySpec, values: Mapping[str, Any]) -> Any | None:
    """Return the most recent stored row for the natural key in ``values``."""
    model = spec.model
    stmt = (
        select(model)
        .where(*(getattr(model, column) == values[column] for column in spec.key_columns))
        .order_by(model.id.desc())
        .limit(1)
        .with_for_update()
    )
    return session.execute(stmt).scalars().first()


def _row_values(spec: EntitySpec, values: Mapping[str, Any]) -> dict[str, Any]:
    columns = (*spec.key_columns, *spec.tracked_columns, *spec.insert_only_columns)
    return {column: values.get(column) for column in columns}


def _upsert(
    session: Session,
    spec: EntitySpec,
    row: dict[str, Any],
    insert_fn: Callable[..., Any],
) -> tuple[int, bool | None]:
    stmt = insert_fn(spec.model).values(**row)
    update_set = {column: stmt.excluded[column] for column in spec.tracked_columns}
    update_set["updated_at"] = datetime.now(timezone.utc)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(spec.key_columns),
        set_=update_set,
    )
    if session.get_bind().dialect.name == "postgresql":
        # xmax is zero only for a tuple created by this statement.
        row_id, inserted = session.execute(
            stmt.returning(spec.model.id, literal_column("xmax = 0"))
        ).one()
        return row_id, bool(inserted)
    return session.execute(stmt.returning(spec.model.id)).scalar_one(), None


def _write_without_upsert(session: Session, spec: EntitySpec, row: dict[str, Any], existing: Any | None) -> int:
    if existing is None:
        record = spec.model(**row)
        session.add(record)
        session.flush()
        return record.id
    for column in spec.tracked_columns:
        setattr(existing, column, row[column])
    session.flush()
    return existing.id


def write_entity(
    session: Session,
    spec: EntitySpec,
    values: Mapping[str, Any],
    existing: Any | None = None,
) -> tuple[int, bool | None]:
    """Insert the entity or overwrite its tracked columns.

    Returns the row id and whether the write created the row, or ``None``
    when the dialect cannot tell an upsert's insert from its update.
    """
    row = _row_values(spec, values)
    insert_fn = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
    if insert_fn is None:
        return _write_without_upsert(session, spec, row, existing), existing is None
    row_id, inserted = _upsert(session, spec, row, insert_fn)
    if existing is not None:
        session.expire(existing)
    return row_id, inserted


def reconcile_entity(session: Session, spec: EntitySpec, values: Mapping[str, Any]) -> tuple[EntityOutcome, int]:
    existing = find_latest(session, spec, values)
    if existing is None:
        row_id, inserted = write_entity(session, spec, values)
        if inserted is False:
            # A concurrent reading created the row between the lookup and the write.
            logger.debug(
                "%s %s: update after concurrent insert (id=%s)",
                spec.kind.value,
                _describe_key(spec, values),
                row_id,
            )
            return EntityOutcome(entity=spec.kind, action=Action.UPDATE), row_id
        logger.debug("%s %s: insert (id=%s)", spec.kind.value, _describe_key(spec, values), row_id)
        return EntityOutcome(entity=spec.kind, action=Action.INSERT), row_id

    changed = changed_columns(spec, existing, values)
    if not changed:
        logger.debug("%s %s: skip (id=%s)", spec.kind.value, _describe_key(spec, values), existing.id)
        return EntityOutcome(entity=spec.kind, action=Action.SKIP), existing.id

    row_id, _ = write_entity(session, spec, values, existing)
    logger.debug(
        "%s %s: update of %s (id=%s)",
        spec.kind.value,
        _describe_key(spec, values),
        ", ".join(changed),
        row_id,
    )
    return EntityOutcome(entity=spec.kind, action=Action.UPDATE, changed=tuple(changed)), row_id


def _describe_key(spec: EntitySpec, values: Mapping[str, Any]) -> str:
    return ",".join(f"{column}={values.get(column)}" for column in spec.key_columns)
