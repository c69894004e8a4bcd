"""Retail spreadsheet ingestion and receiving-voucher reconciliation.

Typical use::

    from retail_ingest import InMemoryStore, ingest_file

    result = ingest_file(Path("vouchers.xlsx"), "receiving-voucher", store=InMemoryStore())
"""

from .db.store import IngestStore, InMemoryStore
from .errors import (
    IngestError,
    InvalidFieldError,
    MissingFieldError,
    PersistenceError,
    StructuralError,
    ValidationError,
)
from .models.ingest_result import IngestBatchResult
from .models.records import UploadMode, UploadType
from .services.control import ControlToken
from .services.orchestrator import ingest_file

__version__ = "0.1.0"

__all__ = [
    "ingest_file",
    "ControlToken",
    "IngestBatchResult",
    "IngestStore",
    "InMemoryStore",
    "UploadMode",
    "UploadType",
    # Errors
    "IngestError",
    "StructuralError",
    "ValidationError",
    "MissingFieldError",
    "InvalidFieldError",
    "PersistenceError",
]
