# sitelog_api/services/labor_hours.py
"""
Labor-hour (공수) accounting.

1.0 unit = one standard 8-hour day (480 minutes). A record's value is the
worked minutes divided by 480, rounded to the nearest 0.25 (ties round up),
and must land in [0, 2.0]; anything outside is a data-entry error and is
rejected rather than clamped.

Records are kept per (user, site, work_date). A worker who splits a day
across sites keeps one value per site; the daily total is their sum.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Set
import calendar
import logging

from flask import current_app, has_app_context
from sqlalchemy import func

from sitelog_api.common.errors import (
    AccessDenied,
    APIError,
    DuplicateAttendanceError,
    InvalidIntervalError,
    NotAssignedError,
    NotFoundError,
    OutOfRangeError,
    WrongStateError,
)
from sitelog_api.common.timeutil import to_wall_clock
from sitelog_api.extensions import db
from sitelog_api.models.attendance import AttendanceRecord, ATTENDANCE_STATUSES
from sitelog_api.models.master import Site
from sitelog_api.models.user import User
from sitelog_api.services import site_registry
from sitelog_api.services.access_resolver import (
    Action,
    Capability,
    require,
    scope_deny_reason,
    visible_site_ids,
)

log = logging.getLogger(__name__)

MINUTES_PER_UNIT = 480
ROUNDING_STEP = Decimal("0.25")
MAX_UNITS = Decimal("2.0")
HOURS_PER_UNIT = Decimal("8")

_ZERO = Decimal("0")
_CENT = Decimal("0.01")


def _setting(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _d(v) -> Decimal:
    if v is None:
        return _ZERO
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


# ---------- per-record math ----------

def compute_labor_hours(check_in: Optional[datetime], check_out: Optional[datetime]) -> Decimal:
    """
    >>> compute_labor_hours(datetime(2024, 3, 1, 9, 0), datetime(2024, 3, 1, 17, 42))
    Decimal('1.00')
    """
    if check_in is None or check_out is None:
        raise InvalidIntervalError("check_in and check_out are both required")
    check_in, check_out = to_wall_clock(check_in), to_wall_clock(check_out)
    if check_out <= check_in:
        raise InvalidIntervalError(payload={"check_in": check_in.isoformat(), "check_out": check_out.isoformat()})

    per_unit = Decimal(str(_setting("LABOR_MINUTES_PER_UNIT", MINUTES_PER_UNIT)))
    step = _d(_setting("LABOR_ROUNDING_STEP", ROUNDING_STEP))
    max_units = _d(_setting("LABOR_MAX_UNITS", MAX_UNITS))

    minutes = Decimal(str((check_out - check_in).total_seconds())) / Decimal(60)
    steps = (minutes / per_unit / step).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    value = steps * step

    if value < _ZERO or value > max_units:
        raise OutOfRangeError(
            "Labor hours outside the allowed range",
            payload={"labor_hours": float(value), "min": 0.0, "max": float(max_units), "worked_minutes": float(minutes)},
        )
    return value.quantize(_CENT)


def breakdown(labor_hours) -> dict:
    """Actual/overtime hours and a coarse type for a labor-hour value."""
    units = _d(labor_hours)
    if units <= _ZERO:
        return {"labor_hours": 0.0, "actual_hours": 0.0, "overtime_hours": 0.0, "type": "absent"}
    actual = units * HOURS_PER_UNIT
    overtime = max(_ZERO, actual - HOURS_PER_UNIT)
    if units > 1:
        kind = "overtime"
    elif units == 1:
        kind = "regular"
    else:
        kind = "partial"
    return {
        "labor_hours": float(units),
        "actual_hours": float(actual),
        "overtime_hours": float(overtime),
        "type": kind,
    }


def format_labor_hours(labor_hours) -> str:
    q = _d(labor_hours).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{q}공수"


def attendance_color(labor_hours) -> str:
    units = _d(labor_hours)
    if units >= 1:
        return "green"
    if units >= Decimal("0.5"):
        return "yellow"
    if units > 0:
        return "orange"
    return "gray"


# ---------- writes ----------

def _get_site(site_id: int) -> Site:
    site = db.session.get(Site, site_id)
    if not site:
        raise NotFoundError("Site not found")
    return site


def _require_coverage(user_id: int, site_id: int, work_date: date) -> None:
    if site_registry.assignment_covering(user_id, site_id, work_date) is None:
        raise NotAssignedError(
            "User has no assignment on this site covering the work date",
            payload={"user_id": user_id, "site_id": site_id, "work_date": work_date.isoformat()},
        )


def record_attendance(
    actor: User,
    user_id: int,
    site_id: int,
    work_date: date,
    check_in: Optional[datetime] = None,
    check_out: Optional[datetime] = None,
    status: str = "present",
    notes: Optional[str] = None,
) -> AttendanceRecord:
    """Create or replace the (user, site, work_date) record."""
    if status not in ATTENDANCE_STATUSES:
        raise APIError("VALIDATION", f"status must be one of {', '.join(ATTENDANCE_STATUSES)}", status_code=422)
    if work_date is None:
        raise APIError("VALIDATION", "work_date is required", status_code=422)

    site = _get_site(site_id)
    require(actor, Action.RECORD_ATTENDANCE, site, subject_user_id=user_id)
    _require_coverage(user_id, site_id, work_date)

    if status == "present":
        check_in, check_out = to_wall_clock(check_in), to_wall_clock(check_out)
        if check_out is not None and check_in is None:
            raise InvalidIntervalError("check_out given without check_in")
        labor = compute_labor_hours(check_in, check_out) if check_out is not None else _ZERO
    else:
        check_in = check_out = None
        labor = _ZERO

    rec = AttendanceRecord.query.filter_by(user_id=user_id, site_id=site_id, work_date=work_date).first()
    if rec is None:
        rec = AttendanceRecord(user_id=user_id, site_id=site_id, work_date=work_date)
        db.session.add(rec)
    rec.check_in = check_in
    rec.check_out = check_out
    rec.status = status
    rec.labor_hours = labor
    if notes is not None:
        rec.notes = notes
    db.session.commit()

    log.info("attendance actor=%s user=%s site=%s date=%s status=%s labor=%s",
             actor.id, user_id, site_id, work_date, status, labor)
    return rec


def check_in(actor: User, site_id: int, at: Optional[datetime] = None) -> AttendanceRecord:
    at = to_wall_clock(at) or datetime.now()
    work_date = at.date()
    site = _get_site(site_id)
    if not site.is_active:
        raise WrongStateError("Site is inactive", payload={"site_id": site_id})
    require(actor, Action.RECORD_ATTENDANCE, site, subject_user_id=actor.id, as_of=work_date)

    rec = AttendanceRecord.query.filter_by(user_id=actor.id, site_id=site_id, work_date=work_date).first()
    if rec is not None and rec.check_in is not None:
        raise DuplicateAttendanceError("Already checked in today", payload={"attendance_id": rec.id})
    if rec is None:
        rec = AttendanceRecord(user_id=actor.id, site_id=site_id, work_date=work_date)
        db.session.add(rec)
    rec.check_in = at
    rec.status = "present"
    rec.labor_hours = _ZERO
    db.session.commit()
    log.info("check-in user=%s site=%s at=%s", actor.id, site_id, at)
    return rec


def check_out(actor: User, site_id: int, at: Optional[datetime] = None) -> AttendanceRecord:
    """Closes the latest check-in at the site, which may be yesterday's for a night shift."""
    at = to_wall_clock(at) or datetime.now()
    rec = (
        AttendanceRecord.query
        .filter(
            AttendanceRecord.user_id == actor.id,
            AttendanceRecord.site_id == site_id,
            AttendanceRecord.check_in.isnot(None),
        )
        .order_by(AttendanceRecord.check_in.desc())
        .first()
    )
    if rec is None:
        raise NotFoundError("No check-in found for this site")
    if rec.check_out is not None:
        raise DuplicateAttendanceError("Already checked out", payload={"attendance_id": rec.id})

    rec.labor_hours = compute_labor_hours(rec.check_in, at)
    rec.check_out = at
    db.session.commit()
    log.info("check-out user=%s site=%s at=%s labor=%s", actor.id, site_id, at, rec.labor_hours)
    return rec


# ---------- visibility scope ----------

def _scope(actor: User, user_id: int, site_id: Optional[int], action: Action,
           capability: Capability) -> Optional[Set[int]]:
    """
    Site ids whose records of `user_id` the actor may aggregate;
    None means unrestricted (admins, or a user reading their own rows).
    """
    if actor.id == user_id:
        return {site_id} if site_id is not None else None

    if site_id is not None:
        require(actor, action, site_id, subject_user_id=user_id)
        return {site_id}

    if actor.is_admin:
        return None

    sites = visible_site_ids(actor, capability)
    if not sites:
        raise AccessDenied(scope_deny_reason(actor), action=action.value, subject_user_id=user_id)
    return sites


def _records(actor: User, user_id: int, date_from: date, date_to: date, site_id: Optional[int] = None,
             action: Action = Action.VIEW_ATTENDANCE, capability: Capability = Capability.VIEW_SITE):
    scope = _scope(actor, user_id, site_id, action, capability)
    q = AttendanceRecord.query.filter(
        AttendanceRecord.user_id == user_id,
        AttendanceRecord.work_date >= date_from,
        AttendanceRecord.work_date <= date_to,
    )
    if scope is not None:
        q = q.filter(AttendanceRecord.site_id.in_(scope))
    return q.order_by(AttendanceRecord.work_date.asc(), AttendanceRecord.site_id.asc())


def list_attendance(actor: User, user_id: Optional[int] = None, site_id: Optional[int] = None,
                    date_from: Optional[date] = None, date_to: Optional[date] = None):
    """
    user_id given (or defaulted to the actor) → that user's rows in scope;
    only site_id given → the whole site, which needs VIEW_SITE.
    """
    if user_id is None and site_id is not None:
        require(actor, Action.VIEW_ATTENDANCE, site_id)
        q = AttendanceRecord.query.filter(AttendanceRecord.site_id == site_id)
        if date_from:
            q = q.filter(AttendanceRecord.work_date >= date_from)
        if date_to:
            q = q.filter(AttendanceRecord.work_date <= date_to)
        return q.order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.user_id.asc())

    uid = user_id if user_id is not None else actor.id
    return _records(actor, uid, date_from or date.min, date_to or date.max, site_id)


# ---------- aggregation ----------

def _by_date(records) -> "OrderedDict[date, Dict[int, Decimal]]":
    days: "OrderedDict[date, Dict[int, Decimal]]" = OrderedDict()
    for r in records:
        per_site = days.setdefault(r.work_date, {})
        per_site[r.site_id] = per_site.get(r.site_id, _ZERO) + _d(r.labor_hours)
    return days


def daily_totals(actor: User, user_id: int, date_from: date, date_to: date,
                 site_id: Optional[int] = None) -> List[dict]:
    """Per work date: each site's labor hours and their sum."""
    if date_to < date_from:
        return []
    out = []
    for work_date, per_site in _by_date(_records(actor, user_id, date_from, date_to, site_id)).items():
        total = sum(per_site.values(), _ZERO)
        out.append({
            "work_date": work_date.isoformat(),
            "sites": [{"site_id": sid, "labor_hours": float(v)} for sid, v in sorted(per_site.items())],
            "total_labor_hours": float(total),
        })
    return out


def summarize(actor: User, user_id: int, date_from: date, date_to: date,
              site_id: Optional[int] = None) -> dict:
    """
    {work_days, total_labor_hours, record_count} over [date_from, date_to].
    work_days counts distinct dates with a positive labor-hour value.
    """
    if date_to < date_from:
        return {"work_days": 0, "total_labor_hours": 0.0, "record_count": 0}

    records = _records(actor, user_id, date_from, date_to, site_id).all()
    total = _ZERO
    worked: Set[date] = set()
    for r in records:
        v = _d(r.labor_hours)
        total += v
        if v > 0:
            worked.add(r.work_date)
    return {
        "work_days": len(worked),
        "total_labor_hours": float(total),
        "record_count": len(records),
    }


def linked_total(report_id: int) -> float:
    """Labor hours of the attendance rows linked to a daily report."""
    v = (
        db.session.query(func.coalesce(func.sum(AttendanceRecord.labor_hours), 0))
        .filter(AttendanceRecord.daily_report_id == report_id)
        .scalar()
    )
    return float(_d(v))


def _month_bounds(month: str):
    try:
        year, mon = (int(p) for p in str(month).split("-", 1))
        last = calendar.monthrange(year, mon)[1]
        return date(year, mon, 1), date(year, mon, last)
    except (TypeError, ValueError):
        raise APIError("VALIDATION", "month must be YYYY-MM", status_code=422)


def _day_rows(records):
    """Per-day totals across sites with their hour breakdown; overtime is per day, not per site."""
    return [(d, breakdown(sum(per_site.values(), _ZERO))) for d, per_site in _by_date(records).items()]


def monthly_totals(actor: User, user_id: int, month: str, site_id: Optional[int] = None) -> dict:
    start, end = _month_bounds(month)
    days = _day_rows(_records(actor, user_id, start, end, site_id))

    total_units = sum((_d(b["labor_hours"]) for _, b in days), _ZERO)
    work_days = sum(1 for _, b in days if b["labor_hours"] > 0)
    avg = (total_units / work_days).quantize(_CENT, rounding=ROUND_HALF_UP) if work_days else _ZERO
    return {
        "month": month,
        "total_labor_hours": float(total_units),
        "total_actual_hours": float(sum(b["actual_hours"] for _, b in days)),
        "total_overtime_hours": float(sum(b["overtime_hours"] for _, b in days)),
        "work_days": work_days,
        "absent_days": sum(1 for _, b in days if b["labor_hours"] <= 0),
        "average_labor_hours": float(avg),
        "days": [
            {"work_date": d.isoformat(), "color": attendance_color(b["labor_hours"]),
             "label": format_labor_hours(b["labor_hours"]), **b}
            for d, b in days
        ],
    }


def payroll_totals(actor: User, user_id: int, month: str, hourly_rate, overtime_rate,
                   site_id: Optional[int] = None) -> dict:
    """Hours beyond 8 in a day are paid at overtime_rate."""
    start, end = _month_bounds(month)
    records = _records(actor, user_id, start, end, site_id,
                       action=Action.VIEW_PAYROLL, capability=Capability.APPROVE_SITE)
    days = _day_rows(records)

    rate = _d(hourly_rate)
    ot_rate = _d(overtime_rate)
    overtime = sum((_d(b["overtime_hours"]) for _, b in days), _ZERO)
    regular = sum((_d(b["actual_hours"]) for _, b in days), _ZERO) - overtime
    regular_pay = regular * rate
    overtime_pay = overtime * ot_rate
    return {
        "user_id": user_id,
        "month": month,
        "regular_hours": float(regular),
        "overtime_hours": float(overtime),
        "total_hours": float(regular + overtime),
        "regular_pay": float(regular_pay),
        "overtime_pay": float(overtime_pay),
        "total_pay": float(regular_pay + overtime_pay),
        "total_labor_hours": float(sum((_d(b["labor_hours"]) for _, b in days), _ZERO)),
        "work_days": sum(1 for _, b in days if b["labor_hours"] > 0),
        "absent_days": sum(1 for _, b in days if b["labor_hours"] <= 0),
    }
