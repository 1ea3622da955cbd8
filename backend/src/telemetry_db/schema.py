"""ORM models for the imaging telemetry store."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Float, ForeignKey, Integer, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


SCHEMA_VERSION = "1.0.0"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
    )


class MachineRecord(TimestampMixin, Base):
    """Latest known acquisition state of one machine for one modality."""

    __tablename__ = "machine_record"
    __table_args__ = (
        UniqueConstraint("serial_number", "modality_type", name="uq_machine_record_serial_modality"),
    )

    # Autoincrement id doubles as the insertion order used to pick the latest row.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    serial_number: Mapped[str] = mapped_column(Text, nullable=False)
    modality_type: Mapped[str] = mapped_column(String(8), nullable=False)
    machine_type: Mapped[str] = mapped_column(String(16), nullable=False)
    modality: Mapped[str | None] = mapped_column(Text, nullable=True)
    acquisition_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    acquisition_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    study_uid: Mapped[str | None] = mapped_column(Text, nullable=True)
    series_uid: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    additional_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class ChildInfoMixin(TimestampMixin):
    """Columns shared by every per-modality child table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    @declared_attr
    def machine_record_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("machine_record.id"), nullable=True, index=True)


# --- CT ---------------------------------------------------------------------


class CTSeriesInfo(ChildInfoMixin, Base):
    __tablename__ = "ct_series_info"
    __table_args__ = (UniqueConstraint("serial_number", "series_id", name="uq_ct_series_info_key"),)

    serial_number: Mapped[str] = mapped_column(Text, nullable=False)
    series_id: Mapped[str] = mapped_column(Text, nullable=False)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    kv: Mapped[float | None] = mapped_column(Float, nullable=True)


class CTSourceInfo(ChildInfoMixin, Base):
    __tablename__ = "ct_source_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    source_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    energy: Mapped[float | None] = mapped_column(Float, nullable=True)


class CTSystemInfo(ChildInfoMixin, Base):
    __tablename__ = "ct_system_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    angle_range: Mapped[float | None] = mapped_column(Float, nullable=True)
    linear_position: Mapped[float | None] = mapped_column(Float, nullable=True)


class CTAcquisitionInfo(ChildInfoMixin, Base):
    __tablename__ = "ct_acquisition_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    grid_type: Mapped[str | None] = mapped_column(Text, nullable=True)


class CTPatientInfo(ChildInfoMixin, Base):
    __tablename__ = "ct_patient_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    position: Mapped[str | None] = mapped_column(Text, nullable=True)
    size_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    target: Mapped[str | None] = mapped_column(Text, nullable=True)


# --- DR ---------------------------------------------------------------------


class DRSeriesInfo(ChildInfoMixin, Base):
    __tablename__ = "dr_series_info"
    __table_args__ = (UniqueConstraint("serial_number", "series_number", name="uq_dr_series_info_key"),)

    serial_number: Mapped[str] = mapped_column(Text, nullable=False)
    series_number: Mapped[str] = mapped_column(Text, nullable=False)
    image_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    patient_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    exam_type: Mapped[str | None] = mapped_column(Text, nullable=True)


class DRSourceInfo(ChildInfoMixin, Base):
    __tablename__ = "dr_source_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    source_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    kv: Mapped[float | None] = mapped_column(Float, nullable=True)
    ma: Mapped[float | None] = mapped_column(Float, nullable=True)
    exposure_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    temperature_celsius: Mapped[float | None] = mapped_column(Float, nullable=True)


class DRSystemInfo(ChildInfoMixin, Base):
    __tablename__ = "dr_system_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    linear_position_mm: Mapped[float | None] = mapped_column(Float, nullable=True)
    panel_position_mm: Mapped[float | None] = mapped_column(Float, nullable=True)
    angle_range_degrees: Mapped[float | None] = mapped_column(Float, nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(Text, nullable=True)


class DRAcquisitionInfo(ChildInfoMixin, Base):
    __tablename__ = "dr_acquisition_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    frames_per_run: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frame_rate_hz: Mapped[float | None] = mapped_column(Float, nullable=True)


class DRPatientInfo(ChildInfoMixin, Base):
    __tablename__ = "dr_patient_info"

    serial_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    position: Mapped[str | None] = mapped_column(Text, nullable=True)
    size_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    target: Mapped[str | None] = mapped_column(Text, nullable=True)


CHILD_TABLES: tuple[type[ChildInfoMixin], ...] = (
    CTSeriesInfo,
    CTSourceInfo,
    CTSystemInfo,
    CTAcquisitionInfo,
    CTPatientInfo,
    DRSeriesInfo,
    DRSourceInfo,
    DRSystemInfo,
    DRAcquisitionInfo,
    DRPatientInfo,
)
