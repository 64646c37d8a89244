"""Core orchestration logic for the clinic visit ledger and slot scheduler."""

from __future__ import annotations

import datetime as dt
import threading
from typing import Any, Iterable, Iterator

from .config import Settings
from .database import get_connection, get_metadata, initialize_database
from .engine import VisitPaymentEngine
from .models import BulkMarkResult, CallerContext, PeriodSummary, SlotAssignment, VisitRecord
from .scheduler import LeaveCalendar, SlotScheduler
from .stores import LedgerStore, SlotStore
from .summary import SummaryAggregator


class ClinicLedgerSystem:
    """High level façade that exposes the ledger and scheduling behaviours."""

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        settings: Settings | None = None,
        leave_calendar: LeaveCalendar | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.conn = get_connection(db_path)
        initialize_database(self.conn)
        self._conn_lock = threading.RLock()
        self.ledger_store = LedgerStore(self.conn, self._conn_lock)
        self.slot_store = SlotStore(self.conn, self._conn_lock)
        self.engine = VisitPaymentEngine(self.ledger_store, self.settings)
        self.scheduler = SlotScheduler(self.slot_store, self.settings, leave_calendar)
        self.aggregator = SummaryAggregator(self.ledger_store, self.slot_store)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _practitioner(context: CallerContext | None, requested: str | None) -> str | None:
        if context is None:
            return requested
        return context.resolve_practitioner(requested)

    # ------------------------------------------------------------------
    # Visits & payments
    # ------------------------------------------------------------------
    def mark_visit(
        self,
        *,
        patient_id: str,
        date: Any,
        fee: float,
        paid: float,
        payment_method: str | None,
        practitioner_id: str | None = None,
        visit_time: Any = None,
        context: CallerContext | None = None,
    ) -> VisitRecord:
        return self.engine.mark_visit(
            patient_id,
            date,
            fee,
            paid,
            payment_method,
            self._practitioner(context, practitioner_id),
            visit_time,
        )

    def add_payment(
        self,
        *,
        patient_id: str,
        date: Any,
        fee: float,
        paid: float,
        payment_method: str | None,
        practitioner_id: str | None = None,
        visit_time: Any = None,
        context: CallerContext | None = None,
    ) -> VisitRecord:
        return self.engine.add_payment(
            patient_id,
            date,
            fee,
            paid,
            payment_method,
            self._practitioner(context, practitioner_id),
            visit_time,
        )

    def add_visited_day(self, *, patient_id: str, date: Any) -> dt.date:
        return self.engine.add_visited_day(patient_id, date)

    def unmark_visit(self, *, patient_id: str, date: Any) -> None:
        self.engine.unmark_visit(patient_id, date)

    def bulk_mark_visits(
        self,
        *,
        patient_id: str,
        dates: Iterable[Any],
        fee: float,
        paid: float,
        payment_method: str | None,
        practitioner_id: str | None = None,
        visit_time: Any = None,
        context: CallerContext | None = None,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ) -> BulkMarkResult:
        return self.engine.bulk_mark_visits(
            patient_id,
            dates,
            fee,
            paid,
            payment_method,
            self._practitioner(context, practitioner_id),
            visit_time,
            cancel_event=cancel_event,
            timeout=timeout,
        )

    def get_visit(self, *, patient_id: str, date: Any) -> VisitRecord:
        return self.engine.get_visit(patient_id, date)

    def list_visits(self, *, patient_id: str) -> list[VisitRecord]:
        return self.engine.list_visits(patient_id)

    def list_day_visits(self, *, date: Any, practitioner_id: str | None = None) -> list[VisitRecord]:
        return self.engine.list_day_visits(date, practitioner_id)

    def visited_days(self, *, patient_id: str) -> list[dt.date]:
        return self.engine.visited_days(patient_id)

    def active_days(self, *, patient_id: str) -> list[dt.date]:
        return self.engine.active_days(patient_id)

    def get_last_paid_amount(self, *, patient_id: str) -> float | None:
        return self.engine.get_last_paid_amount(patient_id)

    def suggested_fee(self, *, patient_id: str, date: Any = None) -> float:
        return self.engine.suggested_fee(patient_id, date)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def get_period_summary(
        self,
        *,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        start: Any = None,
        end: Any = None,
        month: Any = None,
    ) -> PeriodSummary:
        return self.aggregator.get_period_summary(
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            start=start,
            end=end,
            month=month,
        )

    def payment_breakdown(self, **filters: Any) -> dict:
        return self.aggregator.payment_breakdown(**filters)

    def daily_revenue(self, **filters: Any) -> list[dict]:
        return self.aggregator.daily_revenue(**filters)

    def schedule_summary(self, *, practitioner_id: str, **period: Any) -> dict:
        return self.aggregator.schedule_summary(practitioner_id=practitioner_id, **period)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def assign_slot(
        self,
        *,
        practitioner_id: str | None,
        date: Any,
        time_slot: Any,
        patient_id: str,
        context: CallerContext | None = None,
    ) -> SlotAssignment:
        return self.scheduler.assign_slot(
            self._practitioner(context, practitioner_id), date, time_slot, patient_id
        )

    def remove_slot(self, *, assignment_id: int) -> None:
        self.scheduler.remove_slot(assignment_id)

    def complete_slot(self, *, assignment_id: int) -> SlotAssignment:
        return self.scheduler.complete_slot(assignment_id)

    def get_assignment(self, *, assignment_id: int) -> SlotAssignment:
        return self.scheduler.get_assignment(assignment_id)

    def list_available_slots(
        self,
        *,
        practitioner_id: str,
        date: Any,
        all_slots: Iterable[Any] | None = None,
    ) -> Iterator[str]:
        return self.scheduler.list_available_slots(practitioner_id, date, all_slots)

    def daily_schedule(self, *, practitioner_id: str, date: Any) -> list[SlotAssignment]:
        return self.scheduler.daily_schedule(practitioner_id, date)

    def weekly_schedule(self, *, practitioner_id: str, week_date: Any) -> dict:
        return self.scheduler.weekly_schedule(practitioner_id, week_date)

    def leave_warning(self, *, practitioner_id: str, date: Any) -> str | None:
        return self.scheduler.leave_warning(practitioner_id, date)

    @property
    def schema_version(self) -> int:
        with self._conn_lock:
            return int(get_metadata(self.conn, "schema_version") or 0)

    def close(self) -> None:
        self.conn.close()
