"""Pydantic schemas for stored machine state."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any

from pydantic import BaseModel


class MachineRecordResponse(BaseModel):
    """Latest stored record of one machine for one modality, with its child rows."""
    id: int
    modalityType: str
    machineType: str
    modality: str | None = None
    acquisitionDate: date | None = None
    acquisitionTime: time | None = None
    studyUid: str | None = None
    seriesUid: str | None = None
    status: str
    additionalInfo: dict[str, Any] | None = None
    createdAt: datetime | None = None
    updatedAt: datetime | None = None
    seriesInfo: list[dict[str, Any]] = []
    sourceInfo: dict[str, Any] | None = None
    systemInfo: dict[str, Any] | None = None
    acquisitionInfo: dict[str, Any] | None = None
    patientInfo: dict[str, Any] | None = None


class MachineStateResponse(BaseModel):
    """Response for the machine state endpoint."""
    serialNumber: str
    records: list[MachineRecordResponse]
