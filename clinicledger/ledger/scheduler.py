"""Slot Scheduler: assign patients to a practitioner's fixed daily slots."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import replace
from typing import Any, Callable, Iterable, Iterator

from .config import Settings
from .errors import NotFoundError, PatientAlreadyScheduledError, SlotOccupiedError, ValidationError
from .models import SlotAssignment, require_id, to_day_key, to_time_of_day
from .stores import SlotStore

logger = logging.getLogger(__name__)

LeaveCalendar = Callable[[str, dt.date], Iterable[Any]]


def week_bounds(value: Any) -> tuple[dt.date, dt.date]:
    """Return the Monday and Sunday of the ISO week containing ``value``."""

    day = to_day_key(value)
    start = day - dt.timedelta(days=day.weekday())
    return start, start + dt.timedelta(days=6)


class SlotScheduler:
    def __init__(
        self,
        store: SlotStore,
        settings: Settings | None = None,
        leave_calendar: LeaveCalendar | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or Settings()
        self.leave_calendar = leave_calendar

    def _get(self, assignment_id: Any) -> SlotAssignment:
        try:
            assignment_id = int(assignment_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid assignment id: {assignment_id!r}") from None
        assignment = self.store.get(assignment_id)
        if assignment is None:
            raise NotFoundError("Scheduled visit not found")
        return assignment

    def get_assignment(self, assignment_id: Any) -> SlotAssignment:
        return self._get(assignment_id)

    def assign_slot(
        self,
        practitioner_id: str,
        date: Any,
        time_slot: Any,
        patient_id: str,
    ) -> SlotAssignment:
        """Book ``patient_id`` into one slot.

        The occupied-slot check runs before the patient-already-scheduled
        check, so a request breaking both reports the slot.
        """

        practitioner_id = require_id(practitioner_id, "Practitioner")
        patient_id = require_id(patient_id, "Patient")
        day = to_day_key(date)
        slot = to_time_of_day(time_slot, "time slot")
        details = dict(practitioner_id=practitioner_id, day=day.isoformat(), time_slot=slot)

        with self.store.day_lock(practitioner_id, day):
            if self.store.active_at_slot(practitioner_id, day, slot):
                logger.warning("Slot %s on %s for %s is already occupied", slot, day, practitioner_id)
                raise SlotOccupiedError(**details)
            if self.store.active_for_patient(practitioner_id, day, patient_id):
                logger.warning(
                    "Patient %s already scheduled with %s on %s", patient_id, practitioner_id, day
                )
                raise PatientAlreadyScheduledError(patient_id=patient_id, **details)
            assignment = self.store.insert(practitioner_id, day, slot, patient_id)

        warning = self.leave_warning(practitioner_id, day)
        if warning:
            logger.warning("%s (assignment %s)", warning, assignment.assignment_id)
            assignment = replace(assignment, warnings=(warning,))
        logger.info(
            "Scheduled patient %s with %s on %s at %s", patient_id, practitioner_id, day, slot
        )
        return assignment

    def remove_slot(self, assignment_id: Any) -> None:
        """Delete the assignment outright; no cancelled row is kept."""

        assignment = self._get(assignment_id)
        with self.store.day_lock(assignment.practitioner_id, assignment.day):
            if not self.store.delete(assignment.assignment_id):
                raise NotFoundError("Scheduled visit not found")
        logger.info("Removed scheduled visit %s", assignment.assignment_id)

    def complete_slot(self, assignment_id: Any) -> SlotAssignment:
        assignment = self._get(assignment_id)
        if assignment.status == "cancelled":
            raise ValidationError("A cancelled visit cannot be completed")
        with self.store.day_lock(assignment.practitioner_id, assignment.day):
            if not self.store.set_status(assignment.assignment_id, "completed"):
                raise NotFoundError("Scheduled visit not found")
        logger.info("Completed scheduled visit %s", assignment.assignment_id)
        return self._get(assignment.assignment_id)

    def list_available_slots(
        self,
        practitioner_id: str,
        date: Any,
        all_slots: Iterable[Any] | None = None,
    ) -> Iterator[str]:
        practitioner_id = require_id(practitioner_id, "Practitioner")
        day = to_day_key(date)
        candidates = self.settings.time_slots if all_slots is None else all_slots
        return self._free_slots(practitioner_id, day, candidates)

    def _free_slots(self, practitioner_id: str, day: dt.date, candidates: Iterable[Any]) -> Iterator[str]:
        occupied = self.store.occupied_slots(practitioner_id, day)
        for candidate in candidates:
            slot = to_time_of_day(candidate, "time slot")
            if slot not in occupied:
                yield slot

    def daily_schedule(self, practitioner_id: str, date: Any) -> list[SlotAssignment]:
        practitioner_id = require_id(practitioner_id, "Practitioner")
        day = to_day_key(date)
        return self.store.assignments(practitioner_id=practitioner_id, start=day, end=day)

    def leave_days(self, practitioner_id: str, week_start: dt.date) -> list[dt.date]:
        """Leave days from the external calendar; empty when it cannot answer."""

        if self.leave_calendar is None:
            return []
        try:
            days = {to_day_key(value) for value in self.leave_calendar(practitioner_id, week_start)}
        except Exception:
            logger.warning(
                "Leave calendar lookup failed for %s (week of %s)",
                practitioner_id,
                week_start,
                exc_info=True,
            )
            return []
        return sorted(days)

    def leave_warning(self, practitioner_id: str, date: Any) -> str | None:
        """Informational notice when the practitioner is on leave that day."""

        day = to_day_key(date)
        week_start, _ = week_bounds(day)
        if day in self.leave_days(practitioner_id, week_start):
            return f"Practitioner {practitioner_id} is on leave on {day.isoformat()}"
        return None

    def weekly_schedule(self, practitioner_id: str, week_date: Any) -> dict:
        practitioner_id = require_id(practitioner_id, "Practitioner")
        start, end = week_bounds(week_date)
        return {
            "practitioner_id": practitioner_id,
            "week_start": start,
            "week_end": end,
            "assignments": self.store.assignments(
                practitioner_id=practitioner_id, start=start, end=end
            ),
            "leave_days": self.leave_days(practitioner_id, start),
        }
