"""Routes for reading back stored machine state."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_database
from api.models.machines import MachineRecordResponse, MachineStateResponse
from ingestion.state import get_machine_state
from telemetry_db.session import TelemetryDatabase


router = APIRouter(prefix="/api/machines", tags=["machines"])


def _to_response(record: dict[str, Any]) -> MachineRecordResponse:
    return MachineRecordResponse(
        id=record["id"],
        modalityType=record["modality_type"],
        machineType=record["machine_type"],
        modality=record["modality"],
        acquisitionDate=record["acquisition_date"],
        acquisitionTime=record["acquisition_time"],
        studyUid=record["study_uid"],
        seriesUid=record["series_uid"],
        status=record["status"],
        additionalInfo=record["additional_info"],
        createdAt=record["created_at"],
        updatedAt=record["updated_at"],
        seriesInfo=record["series_info"],
        sourceInfo=record["source_info"],
        systemInfo=record["system_info"],
        acquisitionInfo=record["acquisition_info"],
        patientInfo=record["patient_info"],
    )


@router.get("/{serial_number}", response_model=MachineStateResponse)
def get_machine(serial_number: str, database: TelemetryDatabase = Depends(get_database)):
    """Get the stored records of a machine, one per modality."""
    records = get_machine_state(database, serial_number)
    if not records:
        raise HTTPException(status_code=404, detail=f"No records for machine {serial_number}")
    return MachineStateResponse(
        serialNumber=serial_number,
        records=[_to_response(record) for record in records],
    )
