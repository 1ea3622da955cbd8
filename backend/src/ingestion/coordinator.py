"""Run one reading through reconciliation inside a single transaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from telemetry_db.session import TelemetryDatabase

from .errors import StorageError, TransactionError
from .models import Action, EntityKind, EntityOutcome, Modality, Reading
from .reconciler import MACHINE_RECORD_SPEC, reconcile_entity, strategy_for

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    serial_number: str
    modality_type: Modality
    machine_record_id: int
    outcomes: list[EntityOutcome] = field(default_factory=list)

    @property
    def created(self) -> bool:
        """True when the machine record was inserted by this reading."""
        return any(
            outcome.entity is EntityKind.MACHINE_RECORD and outcome.action is Action.INSERT
            for outcome in self.outcomes
        )

    def summary(self) -> str:
        return ", ".join(f"{outcome.entity.value}={outcome.action.value}" for outcome in self.outcomes)


ReadingObserver = Callable[[Reading, IngestResult], Any]


class ReadingCoordinator:
    """Reconcile every entity of a reading atomically.

    The machine record is reconciled first, followed by each present
    sub-object in a fixed order. All writes share one transaction: either
    every entity commits or nothing does. Observers run only after a
    successful commit and cannot fail the reading.
    """

    def __init__(self, database: TelemetryDatabase, observers: Iterable[ReadingObserver] = ()) -> None:
        self.database = database
        self._observers: list[ReadingObserver] = list(observers)

    def add_observer(self, observer: ReadingObserver) -> None:
        self._observers.append(observer)

    def ingest(self, reading: Reading) -> IngestResult:
        strategy = strategy_for(reading.modality_type)
        outcomes: list[EntityOutcome] = []
        stage = EntityKind.MACHINE_RECORD.value
        machine_record_id: int | None = None

        try:
            with self.database.session_scope() as session:
                outcome, machine_record_id = reconcile_entity(
                    session, MACHINE_RECORD_SPEC, reading.machine_record_values()
                )
                outcomes.append(outcome)

                for spec in strategy.child_specs():
                    payload = reading.sub_object(spec.kind)
                    if payload is None:
                        continue
                    stage = spec.kind.value
                    values = payload.column_values()
                    values["serial_number"] = reading.serial_number
                    values["machine_record_id"] = machine_record_id
                    outcome, _ = reconcile_entity(session, spec, values)
                    outcomes.append(outcome)

                stage = "commit"
        except SQLAlchemyError as exc:
            storage_error = StorageError(stage, exc)
            rolled_back = [*outcomes]
            if stage != "commit":
                rolled_back.append(EntityOutcome(entity=EntityKind(stage), error=type(exc).__name__))
            logger.error(
                "Reading for %s (%s) rolled back at %s: %s",
                reading.serial_number,
                reading.modality_type.value,
                stage,
                type(exc).__name__,
                exc_info=True,
            )
            raise TransactionError(reading.serial_number, storage_error, rolled_back) from exc

        result = IngestResult(
            serial_number=reading.serial_number,
            modality_type=reading.modality_type,
            machine_record_id=machine_record_id,
            outcomes=outcomes,
        )
        logger.info(
            "Reading for %s (%s, %s) committed: %s",
            reading.serial_number,
            reading.machine_type.value,
            reading.modality_type.value,
            result.summary(),
        )
        self._notify(reading, result)
        return result

    def _notify(self, reading: Reading, result: IngestResult) -> None:
        for observer in self._observers:
            try:
                observer(reading, result)
            except Exception:
                logger.warning(
                    "Reading observer %r failed for %s", observer, reading.serial_number, exc_info=True
                )
