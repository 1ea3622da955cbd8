"""Typed readings, per-modality sub-objects and reconciliation outcomes."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, time
from typing import Annotated, Any, ClassVar, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


class Modality(str, enum.Enum):
    CT = "CT"
    DR = "DR"


class MachineType(str, enum.Enum):
    CT = "CT"
    CBCT = "CBCT"
    DR = "DR"
    CR = "CR"
    RF = "RF"
    MG = "MG"

    @property
    def family(self) -> Modality:
        return _MACHINE_FAMILIES[self]


_MACHINE_FAMILIES: dict[MachineType, Modality] = {
    MachineType.CT: Modality.CT,
    MachineType.CBCT: Modality.CT,
    MachineType.DR: Modality.DR,
    MachineType.CR: Modality.DR,
    MachineType.RF: Modality.DR,
    MachineType.MG: Modality.DR,
}


class EntityKind(str, enum.Enum):
    MACHINE_RECORD = "machine_record"
    SERIES_INFO = "series_info"
    SOURCE_INFO = "source_info"
    SYSTEM_INFO = "system_info"
    ACQUISITION_INFO = "acquisition_info"
    PATIENT_INFO = "patient_info"


# Fixed child reconciliation order; the machine record always comes first.
CHILD_KINDS: tuple[EntityKind, ...] = (
    EntityKind.SERIES_INFO,
    EntityKind.SOURCE_INFO,
    EntityKind.SYSTEM_INFO,
    EntityKind.ACQUISITION_INFO,
    EntityKind.PATIENT_INFO,
)


class Action(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class EntityOutcome:
    entity: EntityKind
    action: Action | None = None
    error: str | None = None
    changed: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "entity": self.entity.value,
            "action": self.action.value if self.action is not None else None,
        }
        if self.changed:
            payload["changedFields"] = list(self.changed)
        if self.error is not None:
            payload["error"] = self.error
        return payload


# --- Sub-object payloads ----------------------------------------------------


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _as_text(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


Text = Annotated[Optional[str], BeforeValidator(_as_text)]
KeyText = Annotated[str, BeforeValidator(_as_text)]
Number = Annotated[Optional[float], BeforeValidator(_blank_to_none)]
# Counts land in 32-bit INTEGER columns.
MAX_COUNT = 2**31 - 1
Count = Annotated[Optional[Annotated[int, Field(ge=0, le=MAX_COUNT)]], BeforeValidator(_blank_to_none)]


class InfoPayload(BaseModel):
    """Base class for the per-modality sub-objects of a reading."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True, allow_inf_nan=False)

    # gauge name -> field name, published by metrics observers after commit
    GAUGES: ClassVar[dict[str, str]] = {}

    def column_values(self) -> dict[str, Any]:
        return self.model_dump(by_alias=False)

    def gauge_values(self) -> dict[str, float]:
        values: dict[str, float] = {}
        for gauge, field_name in self.GAUGES.items():
            value = getattr(self, field_name)
            if value is not None:
                values[gauge] = float(value)
        return values


class CTSeriesInfoPayload(InfoPayload):
    GAUGES: ClassVar[dict[str, str]] = {"temperature": "temperature", "kv": "kv"}

    series_id: KeyText
    temperature: Number = None
    kv: Number = Field(default=None, alias="kV")


class DRSeriesInfoPayload(InfoPayload):
    GAUGES: ClassVar[dict[str, str]] = {"image_count": "image_count"}

    series_number: KeyText
    image_count: Count = None
    patient_id: Text = None
    exam_type: Text = None


class CTSourceInfoPayload(InfoPayload):
    source_type: Text = None
    energy: Number = None


class DRSourceInfoPayload(InfoPayload):
    GAUGES: ClassVar[dict[str, str]] = {
        "temperature": "temperature_celsius",
        "kv": "kv",
        "ma": "ma",
        "exposure_time_ms": "exposure_time_ms",
    }

    source_type: Text = None
    kv: Number = Field(default=None, alias="kV")
    ma: Number = Field(default=None, alias="mA")
    exposure_time_ms: Number = None
    temperature_celsius: Number = None


class CTSystemInfoPayload(InfoPayload):
    angle_range: Number = None
    linear_position: Number = None


class DRSystemInfoPayload(InfoPayload):
    linear_position_mm: Number = None
    panel_position_mm: Number = None
    angle_range_degrees: Number = None
    manufacturer: Text = None


class CTAcquisitionInfoPayload(InfoPayload):
    frame_rate: Number = None
    grid_type: Text = None


class DRAcquisitionInfoPayload(InfoPayload):
    frames_per_run: Count = None
    frame_rate_hz: Number = None


class PatientInfoPayload(InfoPayload):
    position: Text = None
    size_kg: Number = None
    target: Text = None


# --- Reading ----------------------------------------------------------------


@dataclass(frozen=True)
class Reading:
    """One inbound payload describing a machine's current acquisition state."""

    machine_type: MachineType
    serial_number: str
    status: str
    modality_type: Modality
    modality: str | None = None
    acquisition_date: date | None = None
    acquisition_time: time | None = None
    study_uid: str | None = None
    series_uid: str | None = None
    series_info: InfoPayload | None = None
    source_info: InfoPayload | None = None
    system_info: InfoPayload | None = None
    acquisition_info: InfoPayload | None = None
    patient_info: InfoPayload | None = None
    additional_info: dict[str, Any] | None = None

    def sub_object(self, kind: EntityKind) -> InfoPayload | None:
        if kind is EntityKind.MACHINE_RECORD:
            raise ValueError("The machine record is not a sub-object")
        return getattr(self, kind.value)

    def machine_record_values(self) -> dict[str, Any]:
        return {
            "serial_number": self.serial_number,
            "modality_type": self.modality_type.value,
            "machine_type": self.machine_type.value,
            "modality": self.modality,
            "acquisition_date": self.acquisition_date,
            "acquisition_time": self.acquisition_time,
            "study_uid": self.study_uid,
            "series_uid": self.series_uid,
            "status": self.status,
            "additional_info": self.additional_info,
        }

    def gauge_values(self) -> dict[str, float]:
        gauges: dict[str, float] = {}
        for kind in CHILD_KINDS:
            payload = self.sub_object(kind)
            if payload is not None:
                gauges.update(payload.gauge_values())
        return gauges
