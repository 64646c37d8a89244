"""Flask application exposing the ledger and scheduler as a JSON API."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Mapping

from flask import Flask, current_app, jsonify, request

from clinicledger.ledger.config import Settings
from clinicledger.ledger.engine import paid_for_status
from clinicledger.ledger.errors import ConflictError, NotFoundError, PartialFailure, ValidationError
from clinicledger.ledger.models import CallerContext
from clinicledger.ledger.scheduler import LeaveCalendar
from clinicledger.ledger.system import ClinicLedgerSystem

VISIT_FIELDS = {"date", "fee", "paid", "status", "payment_method", "practitioner_id", "visit_time"}
BULK_FIELDS = (VISIT_FIELDS - {"date"}) | {"dates"}
SLOT_FIELDS = {"practitioner_id", "date", "time_slot", "patient_id"}


def _payload(allowed: set[str], required: tuple[str, ...] = ()) -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")
    missing = [name for name in required if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return data


def _caller() -> CallerContext | None:
    role = request.headers.get("X-Role")
    if not role:
        return None
    return CallerContext(role=role, practitioner_id=request.headers.get("X-Practitioner-Id") or None)


def _paid(data: Mapping[str, Any]) -> Any:
    if data.get("paid") is not None:
        return data["paid"]
    if data.get("status") is not None:
        return paid_for_status(data["status"], data.get("fee"))
    raise ValidationError("Either paid or status is required")


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


def create_app(
    database_path: str | None = None,
    *,
    leave_calendar: LeaveCalendar | None = None,
    config: Mapping[str, Any] | None = None,
) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    app.config.from_mapping(
        SECRET_KEY="clinic-ledger-secret",
        DATABASE_PATH="clinic_ledger.db",
        LOG_LEVEL="INFO",
    )
    app.config.from_prefixed_env("CLINICLEDGER")
    if config:
        app.config.update(config)
    if database_path is not None:
        app.config["DATABASE_PATH"] = database_path

    logging.getLogger("clinicledger").setLevel(app.config["LOG_LEVEL"])

    system = ClinicLedgerSystem(
        app.config["DATABASE_PATH"],
        settings=Settings.from_env(),
        leave_calendar=leave_calendar,
    )
    app.extensions["clinic_ledger"] = system

    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError) -> Any:
        return jsonify(error="validation_error", message=str(exc)), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError) -> Any:
        return jsonify(error="not_found", message=str(exc)), 404

    @app.errorhandler(ConflictError)
    def handle_conflict(exc: ConflictError) -> Any:
        current_app.logger.info("Conflict on %s: %s", request.path, exc)
        return jsonify(error="conflict", reason=exc.reason, message=str(exc), **exc.details), 409

    @app.errorhandler(PartialFailure)
    def handle_partial(exc: PartialFailure) -> Any:
        return jsonify(error="partial_failure", message=str(exc), **exc.result.to_dict()), 207

    # ------------------------------------------------------------------
    # Visits & payments
    # ------------------------------------------------------------------
    @app.post("/patients/<patient_id>/visits")
    def mark_visit(patient_id: str) -> Any:
        data = _payload(VISIT_FIELDS, required=("date", "fee"))
        record = system.mark_visit(
            patient_id=patient_id,
            date=data["date"],
            fee=data["fee"],
            paid=_paid(data),
            payment_method=data.get("payment_method"),
            practitioner_id=data.get("practitioner_id"),
            visit_time=data.get("visit_time"),
            context=_caller(),
        )
        return jsonify(record.to_dict())

    @app.delete("/patients/<patient_id>/visits/<date>")
    def unmark_visit(patient_id: str, date: str) -> Any:
        system.unmark_visit(patient_id=patient_id, date=date)
        return "", 204

    @app.post("/patients/<patient_id>/visits/bulk")
    def bulk_mark_visits(patient_id: str) -> Any:
        data = _payload(BULK_FIELDS, required=("fee",))
        dates = data.get("dates") or []
        if not isinstance(dates, list):
            raise ValidationError("Dates must be a list")
        result = system.bulk_mark_visits(
            patient_id=patient_id,
            dates=dates,
            fee=data["fee"],
            paid=_paid(data),
            payment_method=data.get("payment_method"),
            practitioner_id=data.get("practitioner_id"),
            visit_time=data.get("visit_time"),
            context=_caller(),
        )
        result.raise_for_failures()
        return jsonify(result.to_dict())

    @app.get("/patients/<patient_id>/visits")
    def list_visits(patient_id: str) -> Any:
        return jsonify(
            visits=_serialize(system.list_visits(patient_id=patient_id)),
            visited_days=_serialize(system.visited_days(patient_id=patient_id)),
            active_days=_serialize(system.active_days(patient_id=patient_id)),
        )

    @app.post("/patients/<patient_id>/visited-days")
    def add_visited_day(patient_id: str) -> Any:
        data = _payload({"date"}, required=("date",))
        day = system.add_visited_day(patient_id=patient_id, date=data["date"])
        return jsonify(patient_id=patient_id, day=day.isoformat()), 201

    @app.get("/patients/<patient_id>/last-paid")
    def last_paid(patient_id: str) -> Any:
        return jsonify(
            last_paid=system.get_last_paid_amount(patient_id=patient_id),
            suggested_fee=system.suggested_fee(
                patient_id=patient_id, date=request.args.get("date") or None
            ),
        )

    @app.get("/visits/daily")
    def daily_visits() -> Any:
        date = request.args.get("date") or dt.date.today().isoformat()
        visits = system.list_day_visits(
            date=date, practitioner_id=request.args.get("practitioner_id") or None
        )
        return jsonify(_serialize(visits))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def _filters() -> dict[str, Any]:
        return {
            "patient_id": request.args.get("patient_id") or None,
            "practitioner_id": request.args.get("practitioner_id") or None,
            "start": request.args.get("start") or None,
            "end": request.args.get("end") or None,
            "month": request.args.get("month") or None,
        }

    @app.get("/summary")
    def summary() -> Any:
        return jsonify(system.get_period_summary(**_filters()).to_dict())

    @app.get("/summary/payments")
    def payment_breakdown() -> Any:
        return jsonify(system.payment_breakdown(**_filters()))

    @app.get("/summary/revenue")
    def daily_revenue() -> Any:
        return jsonify(system.daily_revenue(**_filters()))

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    @app.post("/schedule")
    def assign_slot() -> Any:
        data = _payload(SLOT_FIELDS, required=("date", "time_slot", "patient_id"))
        assignment = system.assign_slot(
            practitioner_id=data.get("practitioner_id"),
            date=data["date"],
            time_slot=data["time_slot"],
            patient_id=data["patient_id"],
            context=_caller(),
        )
        return jsonify(assignment.to_dict()), 201

    @app.delete("/schedule/<int:assignment_id>")
    def remove_slot(assignment_id: int) -> Any:
        system.remove_slot(assignment_id=assignment_id)
        return "", 204

    @app.post("/schedule/<int:assignment_id>/complete")
    def complete_slot(assignment_id: int) -> Any:
        return jsonify(system.complete_slot(assignment_id=assignment_id).to_dict())

    @app.get("/schedule/<practitioner_id>/<date>")
    def daily_schedule(practitioner_id: str, date: str) -> Any:
        return jsonify(_serialize(system.daily_schedule(practitioner_id=practitioner_id, date=date)))

    @app.get("/schedule/<practitioner_id>/<date>/available")
    def available_slots(practitioner_id: str, date: str) -> Any:
        slots = request.args.getlist("slot") or None
        return jsonify(
            list(
                system.list_available_slots(
                    practitioner_id=practitioner_id, date=date, all_slots=slots
                )
            )
        )

    @app.get("/schedule/<practitioner_id>/week/<date>")
    def weekly_schedule(practitioner_id: str, date: str) -> Any:
        return jsonify(
            _serialize(system.weekly_schedule(practitioner_id=practitioner_id, week_date=date))
        )

    return app


__all__ = ["create_app"]
