"""Records, day keys and value normalisation for the visit ledger."""

from __future__ import annotations

import datetime as dt
import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import PartialFailure, ValidationError

PAYMENT_METHODS = ("cash", "upi", "card", "bank")
SLOT_STATUSES = ("scheduled", "completed", "cancelled")
ADMIN_ROLES = ("admin", "superAdmin")
CALLER_ROLES = ADMIN_ROLES + ("practitioner",)

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?$")


def to_day_key(value: Any) -> dt.date:
    """Normalise a date, datetime or ISO string to its civil date.

    The date is taken as written: time-of-day and UTC offset are dropped, not
    applied, so ``2024-03-01T23:59:59+05:30`` and ``2024-03-01T00:00:00Z``
    are the same day.
    """

    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Invalid date: {value!r}")
    text = value.strip()
    if not text:
        raise ValidationError("Date is required")
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        if len(text) == 10:
            return dt.date.fromisoformat(text)
        return dt.datetime.fromisoformat(text).date()
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}") from None


def to_time_of_day(value: Any, label: str = "time") -> str:
    """Return ``value`` as a 24-hour ``HH:MM`` string."""

    if isinstance(value, dt.time):
        return value.strftime("%H:%M")
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {label}: {value!r}")
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid {label}: {value!r}")
    hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    if meridiem:
        if not 1 <= hour <= 12:
            raise ValidationError(f"Invalid {label}: {value!r}")
        hour = hour % 12 + (12 if meridiem.lower() == "pm" else 0)
    if hour > 23 or minute > 59:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return f"{hour:02d}:{minute:02d}"


def to_amount(value: Any, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{label.capitalize()} must be a number")
    amount = float(value)
    if not math.isfinite(amount):
        raise ValidationError(f"{label.capitalize()} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{label.capitalize()} cannot be negative")
    return amount


def require_id(value: Any, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required")
    return str(value).strip()


@dataclass(frozen=True)
class VisitRecord:
    patient_id: str
    day: dt.date
    fee: float
    paid: float
    payment_method: str
    practitioner_id: str
    visit_time: str

    @property
    def due(self) -> float:
        return round(self.fee - self.paid, 2)

    @property
    def is_paid(self) -> bool:
        return self.paid >= self.fee

    def to_dict(self) -> dict:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        data["due"] = self.due
        data["is_paid"] = self.is_paid
        return data


@dataclass(frozen=True)
class SlotAssignment:
    assignment_id: int
    practitioner_id: str
    day: dt.date
    time_slot: str
    patient_id: str
    status: str = "scheduled"
    # Leave notices raised when the slot was booked; never stored.
    warnings: tuple[str, ...] = field(default=(), compare=False)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        data["warnings"] = list(self.warnings)
        return data


@dataclass(frozen=True)
class PeriodSummary:
    visits: int = 0
    total_fee: float = 0.0
    total_paid: float = 0.0
    total_due: float = 0.0
    paid_count: int = 0
    unpaid_count: int = 0
    collection_rate: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BulkFailure:
    value: Any
    reason: str

    def to_dict(self) -> dict:
        value = self.value
        if isinstance(value, dt.date):
            value = value.isoformat()
        return {"date": value, "reason": self.reason}


@dataclass
class BulkMarkResult:
    succeeded: list[VisitRecord] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)
    skipped: list[Any] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise PartialFailure(self)

    def to_dict(self) -> dict:
        return {
            "succeeded": [record.to_dict() for record in self.succeeded],
            "failed": [failure.to_dict() for failure in self.failed],
            "skipped": [
                value.isoformat() if isinstance(value, dt.date) else value
                for value in self.skipped
            ],
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True)
class CallerContext:
    """Identity of whoever issues an operation, supplied by the caller."""

    role: str
    practitioner_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in CALLER_ROLES:
            raise ValidationError(f"Unknown role: {self.role!r}")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def resolve_practitioner(self, requested: str | None) -> str | None:
        """Admins pick any practitioner; everyone else acts as their own."""

        if self.is_admin:
            return requested
        if not self.practitioner_id:
            raise ValidationError("No practitioner is linked to this account")
        return self.practitioner_id
