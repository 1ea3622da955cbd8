"""Exceptions raised while ingesting machine readings."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError

if TYPE_CHECKING:
    from .models import EntityOutcome


class IngestionError(Exception):
    """Base exception for reading ingestion."""


class ValidationError(IngestionError):
    """Raised when a payload is missing required fields or names an unknown machine type."""


class StorageError(IngestionError):
    """A store operation failed while reconciling one entity."""

    def __init__(self, entity: str, cause: SQLAlchemyError) -> None:
        self.entity = entity
        self.cause = cause
        super().__init__(f"Storage failure while reconciling {entity}: {type(cause).__name__}")

    @property
    def transient(self) -> bool:
        # Connection loss and pool/statement timeouts; constraint violations are not.
        return isinstance(self.cause, (OperationalError, DisconnectionError, PoolTimeoutError))


class TransactionError(IngestionError):
    """Raised after a reading's transaction was rolled back because of a storage error."""

    def __init__(
        self,
        serial_number: str,
        storage_error: StorageError,
        rolled_back: Sequence["EntityOutcome"] = (),
    ) -> None:
        self.serial_number = serial_number
        self.storage_error = storage_error
        self.rolled_back = tuple(rolled_back)
        super().__init__(
            f"Reading for {serial_number} rolled back after failure in {storage_error.entity}"
        )

    @property
    def transient(self) -> bool:
        return self.storage_error.transient

    def details(self) -> dict[str, Any]:
        """Operator-facing summary that never includes SQL text or parameters."""
        return {
            "serialNumber": self.serial_number,
            "entity": self.storage_error.entity,
            "errorType": type(self.storage_error.cause).__name__,
            "transient": self.transient,
            "rolledBack": [outcome.entity.value for outcome in self.rolled_back],
        }
