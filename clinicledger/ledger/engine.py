"""Visit-Payment Engine: mark, unmark and bulk-mark visits on the ledger."""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from typing import Any, Iterable

from .config import Settings
from .errors import NotFoundError, ValidationError
from .models import (
    PAYMENT_METHODS,
    BulkFailure,
    BulkMarkResult,
    VisitRecord,
    require_id,
    to_amount,
    to_day_key,
    to_time_of_day,
)
from .stores import LedgerStore

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("paid", "unpaid")


def paid_for_status(status: str, fee: float) -> float:
    """Translate a Paid/Unpaid status into the amount collected."""

    normalized = str(status).strip().lower()
    if normalized not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status: {status!r}")
    return to_amount(fee, "fee") if normalized == "paid" else 0.0


class VisitPaymentEngine:
    def __init__(self, store: LedgerStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or Settings()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _payment_terms(
        self,
        *,
        fee: Any,
        paid: Any,
        payment_method: str | None,
        practitioner_id: Any,
        visit_time: Any,
    ) -> dict:
        fee = to_amount(fee, "fee")
        paid = to_amount(paid, "paid amount")
        method = payment_method or self.settings.default_payment_method
        if method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Unknown payment method: {method!r} (expected one of {', '.join(PAYMENT_METHODS)})"
            )
        practitioner_id = require_id(practitioner_id, "Practitioner")
        if visit_time is None or visit_time == "":
            visit_time = self.settings.default_visit_time
        else:
            visit_time = to_time_of_day(visit_time, "visit time")
        return {
            "fee": fee,
            "paid": paid,
            "payment_method": method,
            "practitioner_id": practitioner_id,
            "visit_time": visit_time,
        }

    def _write(self, patient_id: str, day: dt.date, terms: dict, *, mark_visited: bool) -> VisitRecord:
        record = VisitRecord(patient_id=patient_id, day=day, **terms)
        with self.store.key_lock(patient_id, day):
            self.store.write_visit(record, mark_visited=mark_visited)
        return record

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def mark_visit(
        self,
        patient_id: str,
        date: Any,
        fee: Any,
        paid: Any,
        payment_method: str | None,
        practitioner_id: str,
        visit_time: Any = None,
    ) -> VisitRecord:
        """Record a visit with its payment, overwriting any record for that day."""

        patient_id = require_id(patient_id, "Patient")
        terms = self._payment_terms(
            fee=fee,
            paid=paid,
            payment_method=payment_method,
            practitioner_id=practitioner_id,
            visit_time=visit_time,
        )
        day = to_day_key(date)
        record = self._write(patient_id, day, terms, mark_visited=True)
        logger.info(
            "Marked visit for patient %s on %s (fee=%.2f paid=%.2f)",
            patient_id,
            day,
            record.fee,
            record.paid,
        )
        return record

    def add_payment(
        self,
        patient_id: str,
        date: Any,
        fee: Any,
        paid: Any,
        payment_method: str | None,
        practitioner_id: str,
        visit_time: Any = None,
    ) -> VisitRecord:
        """Store a payment for a day without flagging the day as visited."""

        patient_id = require_id(patient_id, "Patient")
        terms = self._payment_terms(
            fee=fee,
            paid=paid,
            payment_method=payment_method,
            practitioner_id=practitioner_id,
            visit_time=visit_time,
        )
        day = to_day_key(date)
        record = self._write(patient_id, day, terms, mark_visited=False)
        logger.info("Recorded payment for patient %s on %s", patient_id, day)
        return record

    def add_visited_day(self, patient_id: str, date: Any) -> dt.date:
        """Flag a day as visited without any payment details."""

        patient_id = require_id(patient_id, "Patient")
        day = to_day_key(date)
        with self.store.key_lock(patient_id, day):
            added = self.store.add_visited_day(patient_id, day)
        if added:
            logger.info("Flagged %s as visited for patient %s", day, patient_id)
        return day

    def unmark_visit(self, patient_id: str, date: Any) -> None:
        patient_id = require_id(patient_id, "Patient")
        day = to_day_key(date)
        with self.store.key_lock(patient_id, day):
            removed = self.store.remove(patient_id, day)
        if not removed:
            raise NotFoundError("No visit or payment found for this date")
        logger.info("Unmarked visit for patient %s on %s", patient_id, day)

    def bulk_mark_visits(
        self,
        patient_id: str,
        dates: Iterable[Any],
        fee: Any,
        paid: Any,
        payment_method: str | None,
        practitioner_id: str,
        visit_time: Any = None,
        *,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ) -> BulkMarkResult:
        """Mark every date with the same payment terms, each date on its own.

        A bad date is reported in ``failed`` and never blocks the others. Once
        ``cancel_event`` is set or ``timeout`` seconds have passed, the
        remaining dates are reported in ``skipped``.
        """

        dates = list(dates or [])
        if not dates:
            raise ValidationError("No dates selected")
        patient_id = require_id(patient_id, "Patient")
        terms = self._payment_terms(
            fee=fee,
            paid=paid,
            payment_method=payment_method,
            practitioner_id=practitioner_id,
            visit_time=visit_time,
        )
        deadline = time.monotonic() + timeout if timeout is not None else None
        result = BulkMarkResult()
        seen: set[dt.date] = set()
        for index, value in enumerate(dates):
            if (cancel_event is not None and cancel_event.is_set()) or (
                deadline is not None and time.monotonic() >= deadline
            ):
                result.cancelled = True
                result.skipped.extend(dates[index:])
                break
            try:
                day = to_day_key(value)
            except ValidationError as exc:
                result.failed.append(BulkFailure(value=value, reason=str(exc)))
                continue
            if day in seen:
                continue
            seen.add(day)
            result.succeeded.append(self._write(patient_id, day, terms, mark_visited=True))

        if result.ok:
            logger.info("Bulk-marked %d visit(s) for patient %s", len(result.succeeded), patient_id)
        else:
            logger.warning(
                "Bulk mark for patient %s: %d saved, %d failed, %d skipped",
                patient_id,
                len(result.succeeded),
                len(result.failed),
                len(result.skipped),
            )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_visit(self, patient_id: str, date: Any) -> VisitRecord:
        record = self.store.get_visit(require_id(patient_id, "Patient"), to_day_key(date))
        if record is None:
            raise NotFoundError("No payment recorded for this date")
        return record

    def list_visits(self, patient_id: str) -> list[VisitRecord]:
        return self.store.visits(patient_id=require_id(patient_id, "Patient"))

    def list_day_visits(self, date: Any, practitioner_id: str | None = None) -> list[VisitRecord]:
        day = to_day_key(date)
        return self.store.visits(practitioner_id=practitioner_id, start=day, end=day)

    def visited_days(self, patient_id: str) -> list[dt.date]:
        keys = self.store.visited_keys(patient_id=require_id(patient_id, "Patient"))
        return [day for _, day in keys]

    def active_days(self, patient_id: str) -> list[dt.date]:
        """Days present in either the visited set or the payment records."""

        days = set(self.visited_days(patient_id))
        days.update(record.day for record in self.list_visits(patient_id))
        return sorted(days)

    def get_last_paid_amount(self, patient_id: str) -> float | None:
        return self.store.last_paid(require_id(patient_id, "Patient"))

    def suggested_fee(self, patient_id: str, date: Any = None) -> float:
        """Default amount for the payment form: day's fee, last paid, or default."""

        if date is not None:
            record = self.store.get_visit(require_id(patient_id, "Patient"), to_day_key(date))
            if record is not None:
                return record.fee
        last_paid = self.get_last_paid_amount(patient_id)
        return last_paid if last_paid is not None else self.settings.default_fee
