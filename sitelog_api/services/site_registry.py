# sitelog_api/services/site_registry.py
from __future__ import annotations

from datetime import date
from typing import Optional
import logging

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from sitelog_api.common.errors import (
    APIError,
    ConcurrentModificationError,
    InvalidIntervalError,
    NotAssignedError,
    NotFoundError,
    OverlapError,
    WrongStateError,
)
from sitelog_api.common.listing import LazyRows
from sitelog_api.common.timeutil import utcnow
from sitelog_api.extensions import db, notifier
from sitelog_api.models.master import Site, SITE_STATUSES
from sitelog_api.models.site_assignment import SiteAssignment, AssignmentAudit, LOCAL_ROLES
from sitelog_api.models.user import User

log = logging.getLogger(__name__)


def _today() -> date:
    return date.today()


def _get_site(site_id: int) -> Site:
    site = db.session.get(Site, site_id)
    if not site:
        raise NotFoundError("Site not found")
    return site


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def _require_manage(actor: User, site: Site) -> None:
    # late import: the resolver reads assignments from this module
    from sitelog_api.services.access_resolver import Action, require
    require(actor, Action.MANAGE_ASSIGNMENTS, site)


def _overlapping(user_id: int, site_id: int, start: date, end: Optional[date] = None) -> Optional[SiteAssignment]:
    """
    First stored interval for (user, site) that intersects [start, end).

    Overlap rule (half-open intervals, NULL end = infinity):
      existing.end   IS NULL OR existing.end > start
      existing.start < end   (only when end is given)
    """
    q = SiteAssignment.query.filter(
        SiteAssignment.user_id == user_id,
        SiteAssignment.site_id == site_id,
        or_(SiteAssignment.end_date.is_(None), SiteAssignment.end_date > start),
    )
    if end is not None:
        q = q.filter(SiteAssignment.start_date < end)
    return q.order_by(SiteAssignment.start_date.asc()).first()


def _audit(actor: User, a: SiteAssignment, action: str, effective_date: date) -> AssignmentAudit:
    row = AssignmentAudit(
        actor_id=actor.id,
        user_id=a.user_id,
        site_id=a.site_id,
        assignment_id=a.id,
        action=action,
        local_role=a.local_role,
        effective_date=effective_date,
        created_at=utcnow(),
    )
    db.session.add(row)
    return row


def _emit(audit: AssignmentAudit) -> None:
    notifier.emit({
        "type": "assignment.changed",
        "action": audit.action,
        "user_id": audit.user_id,
        "site_id": audit.site_id,
        "local_role": audit.local_role,
        "effective_date": audit.effective_date.isoformat(),
        "actor_id": audit.actor_id,
        "timestamp": audit.created_at.isoformat(),
    })


# ---------- writes ----------

def assign(actor: User, user_id: int, site_id: int, local_role: str, effective_date: date) -> SiteAssignment:
    """
    Open a new interval [effective_date, ∞) for (user, site).

    Never closes a prior interval; an existing interval that reaches
    effective_date is an OverlapError. Two concurrent calls for the same
    pair race on the open-interval unique index and the loser gets
    OverlapError too.
    """
    if local_role not in LOCAL_ROLES:
        raise APIError("VALIDATION", f"local_role must be one of {', '.join(LOCAL_ROLES)}", status_code=422)
    if effective_date is None:
        raise APIError("VALIDATION", "effective_date is required", status_code=422)

    site = _get_site(site_id)
    _require_manage(actor, site)
    if not site.is_active:
        raise WrongStateError("Cannot assign users to an inactive site", payload={"site_id": site.id})
    _get_user(user_id)

    clash = _overlapping(user_id, site_id, effective_date)
    if clash is not None:
        raise OverlapError(payload={
            "assignment_id": clash.id,
            "start_date": clash.start_date.isoformat(),
            "end_date": clash.end_date.isoformat() if clash.end_date else None,
        })

    a = SiteAssignment(
        user_id=user_id,
        site_id=site_id,
        local_role=local_role,
        start_date=effective_date,
        end_date=None,
        assigned_by=actor.id,
        created_at=utcnow(),
    )
    db.session.add(a)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise OverlapError(payload={"user_id": user_id, "site_id": site_id})

    audit = _audit(actor, a, "assign", effective_date)
    db.session.commit()

    log.info("assign actor=%s user=%s site=%s role=%s from=%s",
             actor.id, user_id, site_id, local_role, effective_date)
    _emit(audit)
    return a


def unassign(actor: User, user_id: int, site_id: int, effective_date: date) -> SiteAssignment:
    """
    Close the open interval at effective_date (exclusive end).

    Retrying with the same date after success returns the closed
    assignment without writing a second audit row.
    """
    if effective_date is None:
        raise APIError("VALIDATION", "effective_date is required", status_code=422)

    site = _get_site(site_id)
    _require_manage(actor, site)

    open_a = SiteAssignment.query.filter_by(user_id=user_id, site_id=site_id, end_date=None).first()

    # a retry: some interval already ends at effective_date and any open one
    # was opened on or after it (reassignment on the unassign date)
    if open_a is None or open_a.start_date >= effective_date:
        closed = (
            SiteAssignment.query
            .filter(
                SiteAssignment.user_id == user_id,
                SiteAssignment.site_id == site_id,
                SiteAssignment.end_date == effective_date,
                SiteAssignment.start_date < effective_date,
            )
            .order_by(SiteAssignment.id.desc())
            .first()
        )
        if closed is not None:
            return closed
    if open_a is None:
        raise NotAssignedError(payload={"user_id": user_id, "site_id": site_id})

    if effective_date <= open_a.start_date:
        raise InvalidIntervalError(
            "effective_date must be after the assignment start",
            payload={"start_date": open_a.start_date.isoformat(), "effective_date": effective_date.isoformat()},
        )

    res = db.session.execute(
        update(SiteAssignment)
        .where(SiteAssignment.id == open_a.id, SiteAssignment.end_date.is_(None))
        .values(end_date=effective_date)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.session.rollback()
        again = db.session.get(SiteAssignment, open_a.id)
        if again is not None and again.end_date == effective_date:
            return again
        raise ConcurrentModificationError(payload={"assignment_id": open_a.id})

    db.session.refresh(open_a)
    audit = _audit(actor, open_a, "unassign", effective_date)
    db.session.commit()

    log.info("unassign actor=%s user=%s site=%s until=%s", actor.id, user_id, site_id, effective_date)
    _emit(audit)
    return open_a


def create_site(actor: User, organization_id: int, code: str, name: str, address: Optional[str] = None) -> Site:
    from sitelog_api.services.access_resolver import require_org_admin
    require_org_admin(actor, organization_id)
    code = (code or "").strip()
    name = (name or "").strip()
    if not code or not name:
        raise APIError("VALIDATION", "code and name are required", status_code=422)
    site = Site(organization_id=organization_id, code=code, name=name, address=address, status="active")
    db.session.add(site)
    db.session.commit()
    log.info("site created actor=%s site=%s org=%s", actor.id, site.id, organization_id)
    return site


def set_site_status(actor: User, site_id: int, status: str) -> Site:
    """Deactivation is refused while anyone still holds an open assignment."""
    if status not in SITE_STATUSES:
        raise APIError("VALIDATION", f"status must be one of {', '.join(SITE_STATUSES)}", status_code=422)
    site = _get_site(site_id)
    from sitelog_api.services.access_resolver import require_org_admin
    require_org_admin(actor, site.organization_id)

    if status == "inactive":
        still_open = SiteAssignment.query.filter_by(site_id=site_id, end_date=None).count()
        if still_open:
            raise WrongStateError(
                "Site still has current assignments",
                payload={"site_id": site_id, "open_assignments": still_open},
            )
    site.status = status
    db.session.commit()
    log.info("site status actor=%s site=%s status=%s", actor.id, site_id, status)
    return site


# ---------- reads ----------

def current_assignment(user_id: int, site_id: int, as_of: Optional[date] = None) -> Optional[SiteAssignment]:
    """Assignment whose [start, end) contains as_of (default today), or None."""
    on = as_of or _today()
    return (
        SiteAssignment.query
        .filter(
            SiteAssignment.user_id == user_id,
            SiteAssignment.site_id == site_id,
            SiteAssignment.start_date <= on,
            or_(SiteAssignment.end_date.is_(None), SiteAssignment.end_date > on),
        )
        .first()
    )


def assignment_covering(user_id: int, site_id: int, on_date: date) -> Optional[SiteAssignment]:
    """Current or historical interval covering on_date (attendance linkage rule)."""
    return current_assignment(user_id, site_id, on_date)


def sites_for(user_id: int, as_of: Optional[date] = None) -> LazyRows:
    """Lazy (site_id, local_role) pairs active for the user as of a date."""
    on = as_of or _today()

    def _rows():
        q = (
            db.session.query(SiteAssignment.site_id, SiteAssignment.local_role)
            .filter(
                SiteAssignment.user_id == user_id,
                SiteAssignment.start_date <= on,
                or_(SiteAssignment.end_date.is_(None), SiteAssignment.end_date > on),
            )
            .order_by(SiteAssignment.site_id.asc())
        )
        for site_id, local_role in q:
            yield site_id, local_role

    return LazyRows(_rows)


def history_for(user_id: int) -> LazyRows:
    """Lazy sequence of every assignment of the user, newest start first."""
    def _rows():
        return (
            SiteAssignment.query
            .filter(SiteAssignment.user_id == user_id)
            .order_by(SiteAssignment.start_date.desc(), SiteAssignment.id.desc())
        )

    return LazyRows(_rows)


def site_members(site_id: int, as_of: Optional[date] = None):
    on = as_of or _today()
    return (
        SiteAssignment.query
        .filter(
            SiteAssignment.site_id == site_id,
            SiteAssignment.start_date <= on,
            or_(SiteAssignment.end_date.is_(None), SiteAssignment.end_date > on),
        )
        .order_by(SiteAssignment.local_role.asc(), SiteAssignment.user_id.asc())
    )


def audit_trail(user_id: Optional[int] = None, site_id: Optional[int] = None):
    q = AssignmentAudit.query
    if user_id is not None:
        q = q.filter(AssignmentAudit.user_id == user_id)
    if site_id is not None:
        q = q.filter(AssignmentAudit.site_id == site_id)
    return q.order_by(AssignmentAudit.created_at.desc(), AssignmentAudit.id.desc())
