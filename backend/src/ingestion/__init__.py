"""Reading ingestion: extraction, reconciliation and transactional coordination."""

from .coordinator import IngestResult, ReadingCoordinator  # noqa: F401
from .errors import IngestionError, StorageError, TransactionError, ValidationError  # noqa: F401
from .extractor import extract_reading  # noqa: F401
from .models import Action, EntityKind, MachineType, Modality, Reading  # noqa: F401
from .observers import PrometheusObserver  # noqa: F401
