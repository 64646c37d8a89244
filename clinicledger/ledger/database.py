"""Database utilities for the clinic visit ledger."""

from __future__ import annotations

import sqlite3
from pathlib import Path


SCHEMA_VERSION = 1


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path) -> sqlite3.Connection:
    """Return a SQLite connection that can be shared between worker threads.

    Callers serialise access to the connection themselves.
    """

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the database schema if it does not yet exist."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS visit_records (
            patient_id TEXT NOT NULL,
            day TEXT NOT NULL,
            fee REAL NOT NULL CHECK (fee >= 0),
            paid REAL NOT NULL CHECK (paid >= 0),
            payment_method TEXT NOT NULL
                CHECK (payment_method IN ('cash', 'upi', 'card', 'bank')),
            practitioner_id TEXT NOT NULL CHECK (practitioner_id <> ''),
            visit_time TEXT NOT NULL,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (patient_id, day)
        );

        CREATE INDEX IF NOT EXISTS visit_records_practitioner_idx
            ON visit_records(practitioner_id, day);

        CREATE TABLE IF NOT EXISTS visited_days (
            patient_id TEXT NOT NULL,
            day TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (patient_id, day)
        );

        CREATE TABLE IF NOT EXISTS slot_assignments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            practitioner_id TEXT NOT NULL,
            day TEXT NOT NULL,
            time_slot TEXT NOT NULL,
            patient_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'scheduled'
                CHECK (status IN ('scheduled', 'completed', 'cancelled')),
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE UNIQUE INDEX IF NOT EXISTS slot_assignments_slot_uniq
            ON slot_assignments(practitioner_id, day, time_slot)
            WHERE status <> 'cancelled';

        CREATE UNIQUE INDEX IF NOT EXISTS slot_assignments_patient_uniq
            ON slot_assignments(practitioner_id, day, patient_id)
            WHERE status <> 'cancelled';
        """
    )

    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str) -> None:
    with conn:
        conn.execute(
            """
            INSERT INTO metadata(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, str(value)),
        )


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None
