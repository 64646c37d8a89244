"""Read-only rollups over the visit ledger."""

from __future__ import annotations

import calendar
import datetime as dt
from collections import defaultdict
from typing import Any

from .errors import ValidationError
from .models import PAYMENT_METHODS, PeriodSummary, VisitRecord, to_day_key
from .stores import LedgerStore, SlotStore


def month_bounds(month: Any) -> tuple[dt.date, dt.date]:
    """Accept ``"YYYY-MM"``, ``(year, month)`` or a date; return first and last day."""

    if isinstance(month, dt.date):
        year, number = month.year, month.month
    elif isinstance(month, (tuple, list)) and len(month) == 2:
        year, number = month
    elif isinstance(month, str):
        try:
            year, number = (int(part) for part in month.strip().split("-"))
        except ValueError:
            raise ValidationError(f"Invalid month: {month!r} (expected YYYY-MM)") from None
    else:
        raise ValidationError(f"Invalid month: {month!r}")
    try:
        last = calendar.monthrange(int(year), int(number))[1]
        return dt.date(int(year), int(number), 1), dt.date(int(year), int(number), last)
    except (TypeError, ValueError, calendar.IllegalMonthError):
        raise ValidationError(f"Invalid month: {month!r}") from None


class SummaryAggregator:
    def __init__(self, ledger: LedgerStore, slots: SlotStore | None = None) -> None:
        self.ledger = ledger
        self.slots = slots

    def _period(self, start: Any, end: Any, month: Any) -> tuple[dt.date | None, dt.date | None]:
        """Resolve the filters to one inclusive range.

        A range that misses ``month`` entirely comes back with start after end,
        which matches no rows.
        """

        start = to_day_key(start) if start is not None else None
        end = to_day_key(end) if end is not None else None
        if start and end and start > end:
            raise ValidationError("Start date must not be after end date")
        if month is not None:
            month_start, month_end = month_bounds(month)
            start = max(start, month_start) if start else month_start
            end = min(end, month_end) if end else month_end
        return start, end

    def _active_keys(
        self,
        *,
        patient_id: str | None,
        practitioner_id: str | None,
        start: Any,
        end: Any,
        month: Any,
    ) -> tuple[set[tuple[str, dt.date]], dict[tuple[str, dt.date], VisitRecord]]:
        start, end = self._period(start, end, month)
        records = {
            (record.patient_id, record.day): record
            for record in self.ledger.visits(patient_id=patient_id, start=start, end=end)
        }
        keys = set(records)
        keys.update(self.ledger.visited_keys(patient_id=patient_id, start=start, end=end))
        if practitioner_id is not None:
            keys = {
                key
                for key in keys
                if key in records and records[key].practitioner_id == practitioner_id
            }
        return keys, records

    def get_period_summary(
        self,
        *,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        start: Any = None,
        end: Any = None,
        month: Any = None,
    ) -> PeriodSummary:
        """Visits and money over every day active in either ledger structure."""

        keys, records = self._active_keys(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            start=start,
            end=end,
            month=month,
        )
        total_fee = total_paid = 0.0
        paid_count = 0
        for key in keys:
            record = records.get(key)
            if record is None:
                continue
            total_fee += record.fee
            total_paid += record.paid
            if record.is_paid:
                paid_count += 1
        rate = round(total_paid / total_fee * 100, 2) if total_fee else 0.0
        return PeriodSummary(
            visits=len(keys),
            total_fee=round(total_fee, 2),
            total_paid=round(total_paid, 2),
            total_due=round(total_fee - total_paid, 2),
            paid_count=paid_count,
            unpaid_count=len(keys) - paid_count,
            collection_rate=rate,
        )

    def payment_breakdown(
        self,
        *,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        start: Any = None,
        end: Any = None,
        month: Any = None,
    ) -> dict:
        keys, records = self._active_keys(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            start=start,
            end=end,
            month=month,
        )
        totals = {method: 0.0 for method in PAYMENT_METHODS}
        for key in keys:
            record = records.get(key)
            if record is not None:
                totals[record.payment_method] += record.paid
        breakdown = {method: round(amount, 2) for method, amount in totals.items()}
        breakdown["total_collected"] = round(sum(totals.values()), 2)
        return breakdown

    def daily_revenue(
        self,
        *,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        start: Any = None,
        end: Any = None,
        month: Any = None,
    ) -> list[dict]:
        keys, records = self._active_keys(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            start=start,
            end=end,
            month=month,
        )
        buckets: dict[dt.date, dict] = defaultdict(lambda: {"revenue": 0.0, "visits": 0})
        for key in keys:
            bucket = buckets[key[1]]
            bucket["visits"] += 1
            record = records.get(key)
            if record is not None:
                bucket["revenue"] += record.paid
        return [
            {"date": day.isoformat(), "revenue": round(bucket["revenue"], 2), "visits": bucket["visits"]}
            for day, bucket in sorted(buckets.items())
        ]

    def schedule_summary(
        self,
        *,
        practitioner_id: str,
        start: Any = None,
        end: Any = None,
        month: Any = None,
    ) -> dict:
        """Count a practitioner's slot assignments by status over a period."""

        if self.slots is None:
            raise ValidationError("No slot store configured")
        start, end = self._period(start, end, month)
        if start is None or end is None:
            raise ValidationError("A start and end date or a month is required")
        counts = {"scheduled": 0, "completed": 0}
        patients: set[str] = set()
        for assignment in self.slots.assignments(
            practitioner_id=practitioner_id, start=start, end=end
        ):
            counts[assignment.status] += 1
            patients.add(assignment.patient_id)
        counts["total"] = counts["scheduled"] + counts["completed"]
        counts["patients"] = len(patients)
        return counts
