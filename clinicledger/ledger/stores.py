"""SQLite-backed Ledger Store and Slot Store."""

from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from .errors import PatientAlreadyScheduledError, SlotOccupiedError
from .locks import KeyedLocks
from .models import SlotAssignment, VisitRecord

logger = logging.getLogger(__name__)


def _range_clause(column: str, start: dt.date | None, end: dt.date | None) -> tuple[list[str], list[Any]]:
    conditions: list[str] = []
    params: list[Any] = []
    if start is not None:
        conditions.append(f"{column} >= ?")
        params.append(start.isoformat())
    if end is not None:
        conditions.append(f"{column} <= ?")
        params.append(end.isoformat())
    return conditions, params


def _where(conditions: list[str]) -> str:
    return " WHERE " + " AND ".join(conditions) if conditions else ""


class _SqliteStore:
    """Shared plumbing: one connection, a connection lock and per-key locks.

    The connection lock is only held while statements run; the key locks are
    held by callers across a whole validate-then-write sequence.
    """

    def __init__(self, conn: sqlite3.Connection, conn_lock: threading.RLock | None = None) -> None:
        self.conn = conn
        self._conn_lock = conn_lock or threading.RLock()
        self.locks = KeyedLocks()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._conn_lock:
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[dict]:
        with self._conn_lock:
            return self.conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple | list = ()) -> dict | None:
        with self._conn_lock:
            return self.conn.execute(sql, params).fetchone()


class LedgerStore(_SqliteStore):
    """Visit records and the visited-day set, keyed by patient and day."""

    def key_lock(self, patient_id: str, day: dt.date):
        return self.locks.hold((patient_id, day))

    @staticmethod
    def _record_from_row(row: dict) -> VisitRecord:
        return VisitRecord(
            patient_id=row["patient_id"],
            day=dt.date.fromisoformat(row["day"]),
            fee=row["fee"],
            paid=row["paid"],
            payment_method=row["payment_method"],
            practitioner_id=row["practitioner_id"],
            visit_time=row["visit_time"],
        )

    def write_visit(self, record: VisitRecord, *, mark_visited: bool = True) -> VisitRecord:
        """Insert or overwrite the record, optionally flagging the day as visited."""

        day = record.day.isoformat()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO visit_records(
                    patient_id, day, fee, paid, payment_method, practitioner_id, visit_time
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(patient_id, day) DO UPDATE SET
                    fee = excluded.fee,
                    paid = excluded.paid,
                    payment_method = excluded.payment_method,
                    practitioner_id = excluded.practitioner_id,
                    visit_time = excluded.visit_time,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    record.patient_id,
                    day,
                    record.fee,
                    record.paid,
                    record.payment_method,
                    record.practitioner_id,
                    record.visit_time,
                ),
            )
            if mark_visited:
                conn.execute(
                    "INSERT OR IGNORE INTO visited_days(patient_id, day) VALUES (?, ?)",
                    (record.patient_id, day),
                )
        logger.debug("Stored visit record %s/%s", record.patient_id, day)
        return record

    def add_visited_day(self, patient_id: str, day: dt.date) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO visited_days(patient_id, day) VALUES (?, ?)",
                (patient_id, day.isoformat()),
            )
        return cur.rowcount > 0

    def remove(self, patient_id: str, day: dt.date) -> bool:
        """Drop both the record and the visited flag; report whether either existed."""

        params = (patient_id, day.isoformat())
        with self._transaction() as conn:
            removed_record = conn.execute(
                "DELETE FROM visit_records WHERE patient_id = ? AND day = ?", params
            ).rowcount
            removed_day = conn.execute(
                "DELETE FROM visited_days WHERE patient_id = ? AND day = ?", params
            ).rowcount
        return bool(removed_record or removed_day)

    def get_visit(self, patient_id: str, day: dt.date) -> VisitRecord | None:
        row = self._fetchone(
            "SELECT * FROM visit_records WHERE patient_id = ? AND day = ?",
            (patient_id, day.isoformat()),
        )
        return self._record_from_row(row) if row else None

    def is_visited(self, patient_id: str, day: dt.date) -> bool:
        row = self._fetchone(
            "SELECT 1 AS present FROM visited_days WHERE patient_id = ? AND day = ?",
            (patient_id, day.isoformat()),
        )
        return row is not None

    def visits(
        self,
        *,
        patient_id: str | None = None,
        practitioner_id: str | None = None,
        start: dt.date | None = None,
        end: dt.date | None = None,
        descending: bool = False,
    ) -> list[VisitRecord]:
        conditions, params = _range_clause("day", start, end)
        if patient_id is not None:
            conditions.append("patient_id = ?")
            params.append(patient_id)
        if practitioner_id is not None:
            conditions.append("practitioner_id = ?")
            params.append(practitioner_id)
        order = "DESC" if descending else "ASC"
        rows = self._fetchall(
            "SELECT * FROM visit_records" + _where(conditions)
            + f" ORDER BY day {order}, patient_id",
            params,
        )
        return [self._record_from_row(row) for row in rows]

    def visited_keys(
        self,
        *,
        patient_id: str | None = None,
        start: dt.date | None = None,
        end: dt.date | None = None,
    ) -> list[tuple[str, dt.date]]:
        conditions, params = _range_clause("day", start, end)
        if patient_id is not None:
            conditions.append("patient_id = ?")
            params.append(patient_id)
        rows = self._fetchall(
            "SELECT patient_id, day FROM visited_days" + _where(conditions)
            + " ORDER BY day, patient_id",
            params,
        )
        return [(row["patient_id"], dt.date.fromisoformat(row["day"])) for row in rows]

    def last_paid(self, patient_id: str) -> float | None:
        row = self._fetchone(
            """
            SELECT paid FROM visit_records
            WHERE patient_id = ? AND paid > 0
            ORDER BY day DESC
            LIMIT 1
            """,
            (patient_id,),
        )
        return row["paid"] if row else None


class SlotStore(_SqliteStore):
    """Slot assignments, at most one active per slot and per patient-day."""

    def day_lock(self, practitioner_id: str, day: dt.date):
        return self.locks.hold((practitioner_id, day))

    @staticmethod
    def _assignment_from_row(row: dict) -> SlotAssignment:
        return SlotAssignment(
            assignment_id=row["id"],
            practitioner_id=row["practitioner_id"],
            day=dt.date.fromisoformat(row["day"]),
            time_slot=row["time_slot"],
            patient_id=row["patient_id"],
            status=row["status"],
        )

    def get(self, assignment_id: int) -> SlotAssignment | None:
        row = self._fetchone("SELECT * FROM slot_assignments WHERE id = ?", (assignment_id,))
        return self._assignment_from_row(row) if row else None

    def active_at_slot(self, practitioner_id: str, day: dt.date, time_slot: str) -> SlotAssignment | None:
        row = self._fetchone(
            """
            SELECT * FROM slot_assignments
            WHERE practitioner_id = ? AND day = ? AND time_slot = ? AND status <> 'cancelled'
            """,
            (practitioner_id, day.isoformat(), time_slot),
        )
        return self._assignment_from_row(row) if row else None

    def active_for_patient(self, practitioner_id: str, day: dt.date, patient_id: str) -> SlotAssignment | None:
        row = self._fetchone(
            """
            SELECT * FROM slot_assignments
            WHERE practitioner_id = ? AND day = ? AND patient_id = ? AND status <> 'cancelled'
            """,
            (practitioner_id, day.isoformat(), patient_id),
        )
        return self._assignment_from_row(row) if row else None

    def insert(self, practitioner_id: str, day: dt.date, time_slot: str, patient_id: str) -> SlotAssignment:
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO slot_assignments(practitioner_id, day, time_slot, patient_id, status)
                    VALUES (?, ?, ?, ?, 'scheduled')
                    """,
                    (practitioner_id, day.isoformat(), time_slot, patient_id),
                )
        except sqlite3.IntegrityError:
            details = dict(practitioner_id=practitioner_id, day=day.isoformat(), time_slot=time_slot)
            if self.active_at_slot(practitioner_id, day, time_slot):
                raise SlotOccupiedError(**details) from None
            raise PatientAlreadyScheduledError(patient_id=patient_id, **details) from None
        return SlotAssignment(
            assignment_id=cur.lastrowid,
            practitioner_id=practitioner_id,
            day=day,
            time_slot=time_slot,
            patient_id=patient_id,
        )

    def delete(self, assignment_id: int) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM slot_assignments WHERE id = ?", (assignment_id,))
        return cur.rowcount > 0

    def set_status(self, assignment_id: int, status: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE slot_assignments SET status = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (status, assignment_id),
            )
        return cur.rowcount > 0

    def assignments(
        self,
        *,
        practitioner_id: str,
        start: dt.date,
        end: dt.date,
        include_cancelled: bool = False,
    ) -> list[SlotAssignment]:
        conditions, params = _range_clause("day", start, end)
        conditions.append("practitioner_id = ?")
        params.append(practitioner_id)
        if not include_cancelled:
            conditions.append("status <> 'cancelled'")
        rows = self._fetchall(
            "SELECT * FROM slot_assignments" + _where(conditions) + " ORDER BY day, time_slot",
            params,
        )
        return [self._assignment_from_row(row) for row in rows]

    def occupied_slots(self, practitioner_id: str, day: dt.date) -> set[str]:
        rows = self._fetchall(
            """
            SELECT time_slot FROM slot_assignments
            WHERE practitioner_id = ? AND day = ? AND status <> 'cancelled'
            """,
            (practitioner_id, day.isoformat()),
        )
        return {row["time_slot"] for row in rows}
