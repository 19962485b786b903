# sitelog_api/blueprints/attendance.py
from __future__ import annotations

from datetime import date

from flask import Blueprint, request

from sitelog_api.common.auth import token_required
from sitelog_api.common.http import ok, fail
from sitelog_api.common.listing import as_int, parse_ts, parse_ymd
from sitelog_api.common.paging import paginate
from sitelog_api.models.attendance import AttendanceRecord
from sitelog_api.services import labor_hours

bp = Blueprint("attendance", __name__, url_prefix="/api/v1/attendance")


# ---------- helpers ----------

def _json():
    return request.get_json(silent=True) or {}


def _row(r: AttendanceRecord):
    return {
        "id": r.id,
        "user_id": r.user_id,
        "site_id": r.site_id,
        "work_date": r.work_date.isoformat(),
        "check_in": r.check_in.isoformat() if r.check_in else None,
        "check_out": r.check_out.isoformat() if r.check_out else None,
        "labor_hours": float(r.labor_hours) if r.labor_hours is not None else 0.0,
        "labor_hours_label": labor_hours.format_labor_hours(r.labor_hours),
        "color": labor_hours.attendance_color(r.labor_hours),
        "status": r.status,
        "notes": r.notes,
        "daily_report_id": r.daily_report_id,
    }


def _range_args():
    """(user_id, site_id, from, to) from the query string; raises ValueError."""
    user_id = as_int(request.args.get("user_id"), "user_id")
    site_id = as_int(request.args.get("site_id"), "site_id")
    date_from = parse_ymd(request.args.get("from"), "from")
    date_to = parse_ymd(request.args.get("to"), "to")
    return user_id, site_id, date_from, date_to


# ---------- writes ----------

@bp.post("")
@token_required
def record(actor):
    """
    JSON: {
      "user_id": 7, "site_id": 1, "work_date": "2024-03-01",
      "check_in": "2024-03-01T09:00", "check_out": "2024-03-01T17:42",
      "status": "present", "notes": "..."
    }
    user_id defaults to the caller.
    """
    d = _json()
    try:
        user_id = as_int(d.get("user_id"), "user_id") or actor.id
        site_id = as_int(d.get("site_id"), "site_id")
        work_date = parse_ymd(d.get("work_date"), "work_date")
        check_in = parse_ts(d.get("check_in"), "check_in")
        check_out = parse_ts(d.get("check_out"), "check_out")
    except ValueError as ex:
        return fail(str(ex), 422)
    if not site_id:
        return fail("site_id is required", 422)
    if work_date is None and check_in is not None:
        work_date = check_in.date()

    status = (d.get("status") or "present").strip().lower()
    rec = labor_hours.record_attendance(
        actor, user_id, site_id, work_date,
        check_in=check_in, check_out=check_out, status=status, notes=d.get("notes"),
    )
    return ok(_row(rec), 201)


@bp.post("/check-in")
@token_required
def check_in(actor):
    """JSON: { "site_id": 1, "at": "2024-03-01T09:00" }  (at defaults to now)"""
    d = _json()
    try:
        site_id = as_int(d.get("site_id"), "site_id")
        at = parse_ts(d.get("at"), "at")
    except ValueError as ex:
        return fail(str(ex), 422)
    if not site_id:
        return fail("site_id is required", 422)
    return ok(_row(labor_hours.check_in(actor, site_id, at)), 201)


@bp.post("/check-out")
@token_required
def check_out(actor):
    d = _json()
    try:
        site_id = as_int(d.get("site_id"), "site_id")
        at = parse_ts(d.get("at"), "at")
    except ValueError as ex:
        return fail(str(ex), 422)
    if not site_id:
        return fail("site_id is required", 422)
    return ok(_row(labor_hours.check_out(actor, site_id, at)))


# ---------- reads ----------

@bp.get("")
@token_required
def list_records(actor):
    """
    GET /api/v1/attendance?user_id=7&site_id=1&from=2024-03-01&to=2024-03-31
    Only site_id → whole-site listing (needs site-wide view).
    """
    try:
        user_id, site_id, date_from, date_to = _range_args()
    except ValueError as ex:
        return fail(str(ex), 422)
    q = labor_hours.list_attendance(actor, user_id=user_id, site_id=site_id,
                                    date_from=date_from, date_to=date_to)
    items, meta = paginate(q)
    return ok([_row(r) for r in items], **meta)


@bp.get("/summary")
@token_required
def summary(actor):
    """
    GET /api/v1/attendance/summary?user_id=7&from=2024-03-01&to=2024-03-31[&site_id=1]
    """
    try:
        user_id, site_id, date_from, date_to = _range_args()
    except ValueError as ex:
        return fail(str(ex), 422)
    if not (date_from and date_to):
        return fail("from and to are required", 422)
    uid = user_id or actor.id
    data = labor_hours.summarize(actor, uid, date_from, date_to, site_id=site_id)
    data["user_id"] = uid
    data["from"] = date_from.isoformat()
    data["to"] = date_to.isoformat()
    return ok(data)


@bp.get("/daily-totals")
@token_required
def daily(actor):
    try:
        user_id, site_id, date_from, date_to = _range_args()
    except ValueError as ex:
        return fail(str(ex), 422)
    if not (date_from and date_to):
        return fail("from and to are required", 422)
    return ok(labor_hours.daily_totals(actor, user_id or actor.id, date_from, date_to, site_id=site_id))


@bp.get("/monthly")
@token_required
def monthly(actor):
    """GET /api/v1/attendance/monthly?user_id=7&month=2024-03[&site_id=1]"""
    try:
        user_id = as_int(request.args.get("user_id"), "user_id")
        site_id = as_int(request.args.get("site_id"), "site_id")
    except ValueError as ex:
        return fail(str(ex), 422)
    month = (request.args.get("month") or date.today().strftime("%Y-%m")).strip()
    return ok(labor_hours.monthly_totals(actor, user_id or actor.id, month, site_id=site_id))


@bp.get("/payroll")
@token_required
def payroll(actor):
    """
    GET /api/v1/attendance/payroll?user_id=7&month=2024-03&hourly_rate=15000&overtime_rate=22500
    overtime_rate defaults to 1.5 × hourly_rate.
    """
    try:
        user_id = as_int(request.args.get("user_id"), "user_id")
        site_id = as_int(request.args.get("site_id"), "site_id")
        hourly_rate = float(request.args.get("hourly_rate", 0) or 0)
        raw_ot = request.args.get("overtime_rate")
        overtime_rate = float(raw_ot) if raw_ot not in (None, "") else hourly_rate * 1.5
    except ValueError as ex:
        return fail(str(ex), 422)
    if hourly_rate < 0 or overtime_rate < 0:
        return fail("rates must be non-negative", 422)
    month = (request.args.get("month") or date.today().strftime("%Y-%m")).strip()
    return ok(labor_hours.payroll_totals(actor, user_id or actor.id, month, hourly_rate, overtime_rate,
                                         site_id=site_id))
