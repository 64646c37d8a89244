"""Visit-payment ledger, slot scheduler and their SQLite stores."""

from .errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    PartialFailure,
    PatientAlreadyScheduledError,
    SlotOccupiedError,
    ValidationError,
)
from .system import ClinicLedgerSystem

__all__ = [
    "ClinicLedgerSystem",
    "ConflictError",
    "LedgerError",
    "NotFoundError",
    "PartialFailure",
    "PatientAlreadyScheduledError",
    "SlotOccupiedError",
    "ValidationError",
]
