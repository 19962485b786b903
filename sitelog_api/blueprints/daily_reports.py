# sitelog_api/blueprints/daily_reports.py
from __future__ import annotations

from flask import Blueprint, request

from sitelog_api.common.auth import token_required
from sitelog_api.common.http import ok, fail
from sitelog_api.common.listing import as_int, parse_ymd
from sitelog_api.common.paging import paginate
from sitelog_api.models.daily_report import DailyReport, ReportTransition
from sitelog_api.services import labor_hours, report_workflow
from sitelog_api.services.report_workflow import EDITABLE_FIELDS

bp = Blueprint("daily_reports", __name__, url_prefix="/api/v1/daily-reports")


# ---------- helpers ----------

def _json():
    return request.get_json(silent=True) or {}


def _num(v):
    return float(v) if v is not None else None


def _row(r: DailyReport, detail: bool = False):
    out = {
        "id": r.id,
        "site_id": r.site_id,
        "work_date": r.work_date.isoformat(),
        "creator_id": r.creator_id,
        "status": r.status,
        "version": r.version,
        "work_content": r.work_content,
        "process_type": r.process_type,
        "member_name": r.member_name,
        "total_workers": r.total_workers,
        "npc1000_incoming": _num(r.npc1000_incoming),
        "npc1000_used": _num(r.npc1000_used),
        "npc1000_remaining": _num(r.npc1000_remaining),
        "issues": r.issues,
        "approver_id": r.approver_id,
        "submitted_at": r.submitted_at.isoformat() if r.submitted_at else None,
        "approved_at": r.approved_at.isoformat() if r.approved_at else None,
        "rejected_at": r.rejected_at.isoformat() if r.rejected_at else None,
        "rejection_reason": r.rejection_reason,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }
    if detail:
        out["attendance_ids"] = sorted(a.id for a in r.attendance)
        total = labor_hours.linked_total(r.id)
        out["labor_hours_total"] = total
        out["labor_hours_label"] = labor_hours.format_labor_hours(total)
    return out


def _transition_row(t: ReportTransition):
    return {
        "id": t.id,
        "from_status": t.from_status,
        "to_status": t.to_status,
        "actor_id": t.actor_id,
        "comment": t.comment,
        "created_at": t.created_at.isoformat() if t.created_at else None,
    }


# ---------- routes ----------

@bp.get("")
@token_required
def list_reports(actor):
    """
    GET /api/v1/daily-reports
      ?site_id=1&status=submitted&from=2024-03-01&to=2024-03-31&creator_id=7
      &page=1&size=20
    """
    try:
        site_id = as_int(request.args.get("site_id") or request.args.get("siteId"), "site_id")
        creator_id = as_int(request.args.get("creator_id"), "creator_id")
        date_from = parse_ymd(request.args.get("from"), "from")
        date_to = parse_ymd(request.args.get("to"), "to")
    except ValueError as ex:
        return fail(str(ex), 422)

    status = (request.args.get("status") or "").strip().lower() or None
    q = report_workflow.list_reports(actor, site_id=site_id, status=status,
                                     date_from=date_from, date_to=date_to, creator_id=creator_id)
    items, meta = paginate(q)
    return ok([_row(r) for r in items], **meta)


@bp.post("")
@token_required
def create_report(actor):
    """
    JSON: { "site_id": 1, "work_date": "2024-03-01", "work_content": "...", ... }
    """
    d = _json()
    try:
        site_id = as_int(d.get("site_id"), "site_id")
        work_date = parse_ymd(d.get("work_date"), "work_date")
    except ValueError as ex:
        return fail(str(ex), 422)
    if not (site_id and work_date):
        return fail("site_id and work_date are required", 422)

    fields = {k: d[k] for k in EDITABLE_FIELDS if k in d}
    report = report_workflow.create(actor, site_id, work_date, **fields)
    return ok(_row(report, detail=True), 201)


@bp.get("/<int:report_id>")
@token_required
def get_report(actor, report_id: int):
    return ok(_row(report_workflow.get(actor, report_id), detail=True))


@bp.patch("/<int:report_id>")
@token_required
def edit_report(actor, report_id: int):
    """
    JSON: any of the editable fields, plus optional "attendance_ids": [..]
    """
    d = _json()
    attendance_ids = d.pop("attendance_ids", None)
    if attendance_ids is not None and not isinstance(attendance_ids, list):
        return fail("attendance_ids must be a list", 422)
    try:
        attendance_ids = [as_int(i, "attendance_ids") for i in attendance_ids] if attendance_ids is not None else None
    except ValueError as ex:
        return fail(str(ex), 422)
    report = report_workflow.edit(actor, report_id, d, attendance_ids=attendance_ids)
    return ok(_row(report, detail=True))


@bp.post("/<int:report_id>/submit")
@token_required
def submit_report(actor, report_id: int):
    return ok(_row(report_workflow.submit(actor, report_id), detail=True))


@bp.post("/<int:report_id>/approve")
@token_required
def approve_report(actor, report_id: int):
    return ok(_row(report_workflow.approve(actor, report_id), detail=True))


@bp.post("/<int:report_id>/reject")
@token_required
def reject_report(actor, report_id: int):
    d = _json()
    reason = d.get("reason") or d.get("rejection_reason")
    return ok(_row(report_workflow.reject(actor, report_id, reason), detail=True))


@bp.post("/<int:report_id>/revise")
@token_required
def revise_report(actor, report_id: int):
    return ok(_row(report_workflow.revise(actor, report_id), detail=True))


@bp.get("/<int:report_id>/transitions")
@token_required
def report_transitions(actor, report_id: int):
    return ok([_transition_row(t) for t in report_workflow.transitions(actor, report_id)])
