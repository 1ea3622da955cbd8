"""Turn generic ingestion payloads into typed readings."""

from __future__ import annotations

import datetime as dt
import re
from typing import Annotated, Any, Mapping, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import CHILD_KINDS, MachineType, Modality, Reading, Text
from .reconciler import strategy_for


REQUIRED_FIELDS: tuple[str, ...] = ("machineType", "serialNumber", "status", "data")

_DICOM_DATE = re.compile(r"^\d{8}$")
_DICOM_TIME = re.compile(r"^(\d{2})(\d{2})?(\d{2})?(?:\.(\d{1,6}))?$")


def parse_acquisition_date(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    raw = str(value).strip()
    if _DICOM_DATE.match(raw):
        try:
            return dt.datetime.strptime(raw, "%Y%m%d").date()
        except ValueError as exc:
            raise ValueError(f"Cannot parse date from '{value}'") from exc
    try:
        return date_parser.parse(raw, yearfirst=True).date()
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"Cannot parse date from '{value}'") from exc


def _naive_utc(value: dt.time) -> dt.time:
    """Drop a time's UTC offset, shifting it to UTC; the column stores naive times."""
    if value.utcoffset() is None:
        return value.replace(tzinfo=None)
    anchored = dt.datetime.combine(dt.date(2000, 1, 1), value)
    return anchored.astimezone(dt.timezone.utc).time()


def parse_acquisition_time(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, dt.datetime):
        if value.utcoffset() is not None:
            value = value.astimezone(dt.timezone.utc)
        return value.time()
    if isinstance(value, dt.time):
        return _naive_utc(value)
    raw = str(value).strip()
    match = _DICOM_TIME.match(raw)
    try:
        if match:
            hours, minutes, seconds, fraction = match.groups()
            return dt.time(
                int(hours),
                int(minutes or 0),
                int(seconds or 0),
                int((fraction or "0").ljust(6, "0")),
            )
        try:
            return _naive_utc(dt.time.fromisoformat(raw))
        except ValueError:
            return _naive_utc(date_parser.parse(raw).timetz())
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"Cannot parse time from '{value}'") from exc


class ReadingData(BaseModel):
    """The ``data`` object of a payload; unknown keys become additional_info."""

    model_config = ConfigDict(extra="allow")

    modality_type: Text = None
    modality: Text = None
    acquisition_date: Annotated[Optional[dt.date], BeforeValidator(parse_acquisition_date)] = None
    acquisition_time: Annotated[Optional[dt.time], BeforeValidator(parse_acquisition_time)] = None
    study_uid: Text = None
    series_uid: Text = None
    series_info: Optional[dict[str, Any]] = None
    source_info: Optional[dict[str, Any]] = None
    system_info: Optional[dict[str, Any]] = None
    acquisition_info: Optional[dict[str, Any]] = None
    patient_info: Optional[dict[str, Any]] = None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _describe_errors(exc: PydanticValidationError, prefix: str) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in (prefix, *error.get("loc", ())))
        messages.append(f"{location}: {error.get('msg')}")
    return "; ".join(messages)


def _require_text(payload: Mapping[str, Any], name: str) -> str:
    value = payload[name]
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValidationError(f"{name} must be a string")
    return str(value).strip()


def parse_machine_type(value: Any) -> MachineType:
    normalized = str(value).strip().upper()
    try:
        return MachineType(normalized)
    except ValueError as exc:
        known = ", ".join(member.value for member in MachineType)
        raise ValidationError(f"Unknown machine type '{value}' (expected one of: {known})") from exc


def resolve_modality(declared: str | None, machine_type: MachineType) -> Modality:
    if declared is None:
        return machine_type.family
    try:
        return Modality(declared.upper())
    except ValueError as exc:
        known = ", ".join(member.value for member in Modality)
        raise ValidationError(f"Unknown modality_type '{declared}' (expected one of: {known})") from exc


def extract_reading(payload: Any) -> Reading:
    """Validate ``payload`` and build a :class:`Reading`.

    Raises :class:`ValidationError` before anything touches the store when a
    required top-level field is missing, the machine type is not recognised,
    or a sub-object value cannot be coerced to its column type.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Reading payload must be a JSON object")

    missing = [name for name in REQUIRED_FIELDS if _is_blank(payload.get(name))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    machine_type = parse_machine_type(payload["machineType"])
    serial_number = _require_text(payload, "serialNumber")
    status = _require_text(payload, "status")

    raw_data = payload["data"]
    if not isinstance(raw_data, Mapping):
        raise ValidationError("data must be an object")
    try:
        data = ReadingData.model_validate(dict(raw_data))
    except PydanticValidationError as exc:
        raise ValidationError(_describe_errors(exc, "data")) from exc

    modality_type = resolve_modality(data.modality_type, machine_type)
    strategy = strategy_for(modality_type)

    sub_objects: dict[str, Any] = {}
    for kind in CHILD_KINDS:
        raw = getattr(data, kind.value)
        if not raw:
            continue
        spec = strategy.children[kind]
        try:
            sub_objects[kind.value] = spec.payload_model.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(_describe_errors(exc, f"data.{kind.value}")) from exc

    return Reading(
        machine_type=machine_type,
        serial_number=serial_number,
        status=status,
        modality_type=modality_type,
        modality=data.modality,
        acquisition_date=data.acquisition_date,
        acquisition_time=data.acquisition_time,
        study_uid=data.study_uid,
        series_uid=data.series_uid,
        additional_info=dict(data.model_extra) if data.model_extra else None,
        **sub_objects,
    )
