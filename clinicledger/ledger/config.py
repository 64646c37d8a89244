"""Runtime settings for the ledger core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from .models import PAYMENT_METHODS, to_amount, to_time_of_day
from .errors import ValidationError

DEFAULT_FEE = 300.0
DEFAULT_VISIT_TIME = "10:00"
DEFAULT_PAYMENT_METHOD = "upi"
DEFAULT_TIME_SLOTS = tuple(f"{hour:02d}:00" for hour in range(8, 20))

ENV_PREFIX = "CLINICLEDGER_"


@dataclass(frozen=True)
class Settings:
    default_fee: float = DEFAULT_FEE
    default_visit_time: str = DEFAULT_VISIT_TIME
    default_payment_method: str = DEFAULT_PAYMENT_METHOD
    time_slots: tuple[str, ...] = field(default=DEFAULT_TIME_SLOTS)

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_fee", to_amount(self.default_fee, "default fee"))
        object.__setattr__(
            self,
            "default_visit_time",
            to_time_of_day(self.default_visit_time, "default visit time"),
        )
        if self.default_payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {self.default_payment_method!r}")
        slots = tuple(to_time_of_day(slot, "time slot") for slot in self.time_slots)
        if not slots:
            raise ValidationError("At least one time slot must be configured")
        object.__setattr__(self, "time_slots", tuple(dict.fromkeys(slots)))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``CLINICLEDGER_*`` environment variables."""

        environ = os.environ if environ is None else environ
        values: dict = {}
        fee = environ.get(ENV_PREFIX + "DEFAULT_FEE")
        if fee:
            try:
                values["default_fee"] = float(fee)
            except ValueError:
                raise ValidationError(f"Invalid default fee: {fee!r}") from None
        visit_time = environ.get(ENV_PREFIX + "DEFAULT_VISIT_TIME")
        if visit_time:
            values["default_visit_time"] = visit_time
        method = environ.get(ENV_PREFIX + "DEFAULT_PAYMENT_METHOD")
        if method:
            values["default_payment_method"] = method
        slots = environ.get(ENV_PREFIX + "TIME_SLOTS")
        if slots:
            values["time_slots"] = tuple(s.strip() for s in slots.split(",") if s.strip())
        return cls(**values)
