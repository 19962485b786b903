# sitelog_api/services/report_workflow.py
"""
Daily report lifecycle.

    draft --submit--> submitted --approve--> approved   (terminal)
                           \\--reject---> rejected --revise--> draft
    draft --edit--> draft

Each call runs in this order:
  1. access check through the resolver; a denied caller never changes state
  2. retry detection: the report already sits in the target state and the
     last recorded transition into it was made by the same actor → the
     report is returned as-is and no event is emitted
  3. state check (WrongStateError / ImmutableReportError)
  4. conditional UPDATE on (id, status, version); zero rows means another
     writer got there first → ConcurrentModificationError
After commit one event goes to the notifier. A failing dispatcher is logged
and ignored; the transition stays committed.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from sitelog_api.common.errors import (
    AccessDenied,
    APIError,
    ConcurrentModificationError,
    DuplicateReportError,
    ImmutableReportError,
    IncompleteReportError,
    NotAssignedError,
    NotFoundError,
    WrongStateError,
)
from sitelog_api.common.timeutil import utcnow
from sitelog_api.extensions import db, notifier
from sitelog_api.models.attendance import AttendanceRecord
from sitelog_api.models.daily_report import DailyReport, ReportTransition, REPORT_STATUSES
from sitelog_api.models.master import Site
from sitelog_api.models.user import User
from sitelog_api.services import site_registry
from sitelog_api.services.access_resolver import (
    Action,
    DenyReason,
    authorize,
    report_visibility_clause,
    require,
)

log = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "work_content",
    "process_type",
    "member_name",
    "total_workers",
    "npc1000_incoming",
    "npc1000_used",
    "npc1000_remaining",
    "issues",
)


def _load(report_id: int) -> DailyReport:
    report = db.session.get(DailyReport, report_id)
    if not report:
        raise NotFoundError("Report not found")
    return report


def _clean_fields(fields: dict) -> dict:
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise APIError("VALIDATION", f"Unknown or read-only fields: {', '.join(unknown)}", status_code=422)
    return dict(fields)


def _deny(decision, action: Action, report: DailyReport):
    raise AccessDenied(decision.reason, action=action.value, site_id=report.site_id, report_id=report.id)


def _already_done(report: DailyReport, from_status: str, to_status: str, actor: User) -> bool:
    if report.status != to_status:
        return False
    last = (
        ReportTransition.query
        .filter_by(report_id=report.id)
        .order_by(ReportTransition.id.desc())
        .first()
    )
    return (
        last is not None
        and last.from_status == from_status
        and last.to_status == to_status
        and last.actor_id == actor.id
    )


def _transition(actor: User, report: DailyReport, to_status: str, values: Optional[dict] = None,
                comment: Optional[str] = None) -> DailyReport:
    from_status = report.status
    now = utcnow()
    res = db.session.execute(
        update(DailyReport)
        .where(
            DailyReport.id == report.id,
            DailyReport.status == from_status,
            DailyReport.version == report.version,
        )
        .values(status=to_status, version=DailyReport.version + 1, updated_at=now, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.session.rollback()
        raise ConcurrentModificationError(payload={"report_id": report.id, "expected_status": from_status})

    tr = ReportTransition(
        report_id=report.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor.id,
        comment=comment,
        created_at=now,
    )
    db.session.add(tr)
    db.session.commit()
    db.session.refresh(report)

    log.info("report %s %s -> %s by user=%s", report.id, from_status, to_status, actor.id)
    notifier.emit(tr.as_event())
    return report


# ---------- create / read ----------

def create(actor: User, site_id: int, work_date: date, **fields) -> DailyReport:
    if work_date is None:
        raise APIError("VALIDATION", "work_date is required", status_code=422)
    fields = _clean_fields(fields)

    site = db.session.get(Site, site_id)
    if not site:
        raise NotFoundError("Site not found")
    require(actor, Action.CREATE_REPORT, site)
    if not site.is_active:
        raise WrongStateError("Site is inactive", payload={"site_id": site_id})

    # creator must hold a current assignment on the site for the work date
    if site_registry.current_assignment(actor.id, site_id, work_date) is None:
        raise NotAssignedError(
            "Creator is not assigned to this site on the work date",
            payload={"site_id": site_id, "work_date": work_date.isoformat()},
        )

    existing = DailyReport.query.filter_by(site_id=site_id, work_date=work_date, creator_id=actor.id).first()
    if existing:
        raise DuplicateReportError(payload={"report_id": existing.id})

    report = DailyReport(site_id=site_id, work_date=work_date, creator_id=actor.id, status="draft", version=1, **fields)
    db.session.add(report)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateReportError()
    log.info("report %s created site=%s date=%s by user=%s", report.id, site_id, work_date, actor.id)
    return report


def get(actor: User, report_id: int) -> DailyReport:
    report = _load(report_id)
    require(actor, Action.VIEW_REPORT, report.site_id, report=report)
    return report


def list_reports(actor: User, site_id: Optional[int] = None, status: Optional[str] = None,
                 date_from: Optional[date] = None, date_to: Optional[date] = None,
                 creator_id: Optional[int] = None):
    """
    Reports visible to the actor. Naming a site the actor cannot see is an
    explicit AccessDenied, not an empty list.
    """
    q = DailyReport.query
    if site_id is not None:
        require(actor, Action.LIST_REPORTS, site_id)
        q = q.filter(DailyReport.site_id == site_id)
    if status:
        if status not in REPORT_STATUSES:
            raise APIError("VALIDATION", "invalid status", status_code=422)
        q = q.filter(DailyReport.status == status)
    if date_from:
        q = q.filter(DailyReport.work_date >= date_from)
    if date_to:
        q = q.filter(DailyReport.work_date <= date_to)
    if creator_id is not None:
        q = q.filter(DailyReport.creator_id == creator_id)
    q = q.filter(report_visibility_clause(actor))
    return q.order_by(DailyReport.work_date.desc(), DailyReport.id.desc())


def transitions(actor: User, report_id: int):
    report = get(actor, report_id)
    return (
        ReportTransition.query
        .filter_by(report_id=report.id)
        .order_by(ReportTransition.id.asc())
        .all()
    )


# ---------- transitions ----------

def _link_attendance(report: DailyReport, attendance_ids: Iterable[int]) -> None:
    ids = sorted({int(i) for i in attendance_ids})
    if not ids:
        return
    rows = AttendanceRecord.query.filter(AttendanceRecord.id.in_(ids)).all()
    found = {r.id for r in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"Attendance records not found: {', '.join(str(i) for i in missing)}")
    for r in rows:
        if r.site_id != report.site_id or r.work_date != report.work_date:
            raise APIError(
                "VALIDATION",
                "Attendance must belong to the report's site and work date",
                status_code=422,
                payload={"attendance_id": r.id},
            )
        r.daily_report_id = report.id


def edit(actor: User, report_id: int, fields: Optional[dict] = None,
         attendance_ids: Optional[Iterable[int]] = None) -> DailyReport:
    report = _load(report_id)
    decision = authorize(actor, Action.EDIT_REPORT, report.site_id, report=report)
    if not decision:
        if decision.reason is DenyReason.WRONG_STATE:
            raise ImmutableReportError(payload={"report_id": report.id, "status": report.status})
        _deny(decision, Action.EDIT_REPORT, report)

    values = _clean_fields(fields or {})
    if attendance_ids is not None:
        _link_attendance(report, attendance_ids)
    return _transition(actor, report, "draft", values, comment="edit")


def submit(actor: User, report_id: int) -> DailyReport:
    report = _load(report_id)
    decision = authorize(actor, Action.SUBMIT_REPORT, report.site_id, report=report)
    if not decision:
        if decision.reason is DenyReason.WRONG_STATE:
            if _already_done(report, "draft", "submitted", actor):
                return report
            raise WrongStateError(f"Cannot submit a {report.status} report", payload={"status": report.status})
        _deny(decision, Action.SUBMIT_REPORT, report)

    missing = []
    if not (report.work_content or "").strip():
        missing.append("work_content")
    linked = AttendanceRecord.query.filter_by(daily_report_id=report.id).count()
    if not linked:
        missing.append("attendance")
    if missing:
        raise IncompleteReportError(missing=missing)

    return _transition(actor, report, "submitted", {"submitted_at": utcnow()})


def approve(actor: User, report_id: int) -> DailyReport:
    report = _load(report_id)
    decision = authorize(actor, Action.APPROVE_REPORT, report.site_id, report=report)
    if not decision:
        if decision.reason is DenyReason.WRONG_STATE:
            if _already_done(report, "submitted", "approved", actor):
                return report
            raise WrongStateError(f"Cannot approve a {report.status} report", payload={"status": report.status})
        _deny(decision, Action.APPROVE_REPORT, report)

    return _transition(actor, report, "approved", {"approver_id": actor.id, "approved_at": utcnow()})


def reject(actor: User, report_id: int, reason: Optional[str]) -> DailyReport:
    report = _load(report_id)
    decision = authorize(actor, Action.REJECT_REPORT, report.site_id, report=report)
    if not decision:
        if decision.reason is DenyReason.WRONG_STATE:
            if _already_done(report, "submitted", "rejected", actor):
                return report
            raise WrongStateError(f"Cannot reject a {report.status} report", payload={"status": report.status})
        _deny(decision, Action.REJECT_REPORT, report)

    reason = (reason or "").strip()
    if not reason:
        raise IncompleteReportError("A rejection reason is required", missing=["reason"])

    return _transition(
        actor, report, "rejected",
        {"approver_id": actor.id, "rejected_at": utcnow(), "rejection_reason": reason},
        comment=reason,
    )


def revise(actor: User, report_id: int) -> DailyReport:
    """Back to draft. rejection_reason stays on the row for audit."""
    report = _load(report_id)
    decision = authorize(actor, Action.REVISE_REPORT, report.site_id, report=report)
    if not decision:
        if decision.reason is DenyReason.WRONG_STATE:
            if _already_done(report, "rejected", "draft", actor):
                return report
            raise WrongStateError(f"Cannot revise a {report.status} report", payload={"status": report.status})
        _deny(decision, Action.REVISE_REPORT, report)

    return _transition(actor, report, "draft")
