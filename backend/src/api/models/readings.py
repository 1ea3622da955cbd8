"""Pydantic schemas for reading ingestion."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class EntityOutcomeResponse(BaseModel):
    """Action taken for one entity of a reading."""
    entity: str
    action: str | None = None
    changedFields: list[str] | None = None
    error: str | None = None


class ReadingAcceptedResponse(BaseModel):
    """Response for a committed reading."""
    message: str
    machineRecordId: int
    modalityType: str
    outcomes: list[EntityOutcomeResponse]


class IngestErrorResponse(BaseModel):
    """Response for a rejected or rolled back reading."""
    error: str
    details: Any = None
