"""Error kinds raised by the visit ledger and slot scheduler."""

from __future__ import annotations

from typing import Any


class LedgerError(RuntimeError):
    """Base class for every error the ledger core raises."""


class ValidationError(LedgerError):
    """Raised when incoming data fails validation."""


class NotFoundError(LedgerError):
    """Raised when an operation targets a key with no existing record."""


class ConflictError(LedgerError):
    """Raised when a mutation would break a scheduling invariant."""

    reason = "conflict"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details


class SlotOccupiedError(ConflictError):
    reason = "slot_occupied"

    def __init__(self, **details: Any) -> None:
        super().__init__("This time slot is already occupied", **details)


class PatientAlreadyScheduledError(ConflictError):
    reason = "patient_already_scheduled"

    def __init__(self, **details: Any) -> None:
        super().__init__("This patient is already scheduled for this day", **details)


class PartialFailure(LedgerError):
    """Raised on request when a bulk operation did not apply to every date."""

    def __init__(self, result: Any) -> None:
        failed = len(result.failed)
        skipped = len(result.skipped)
        super().__init__(
            f"{len(result.succeeded)} date(s) saved, {failed} failed, {skipped} not attempted"
        )
        self.result = result
