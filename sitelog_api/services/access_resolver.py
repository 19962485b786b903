# sitelog_api/services/access_resolver.py
"""
One place that decides who may see or do what on a site.

Capabilities form a small lattice (``Capability`` flags). A user's
capabilities on a site are the meet (``&``) of the set granted by the
site-local assignment role and the ceiling of their global role, so a
global role widens visibility but never grants site access by itself.

Admins short-circuit: ``system_admin`` holds ``ADMIN_ALL`` everywhere,
``admin`` holds it everywhere except assignment management outside their
own organization.

Every list filter and mutation guard in the application goes through
``authorize`` (per object) or ``report_visibility_clause`` (per query). The
two must agree; tests check them against each other.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum, Flag
from typing import Dict, Optional, Set, Union

from sqlalchemy import and_, false, or_, true

from sitelog_api.common.errors import AccessDenied, NotFoundError
from sitelog_api.extensions import db
from sitelog_api.models.daily_report import DailyReport
from sitelog_api.models.master import Site
from sitelog_api.models.user import User
from sitelog_api.services import site_registry

log = logging.getLogger(__name__)


class Capability(Flag):
    NONE = 0
    VIEW_OWN = 1
    EDIT_OWN_DRAFT = 2
    VIEW_SITE = 4
    APPROVE_SITE = 8
    EDIT_ANY_DRAFT = 16
    MANAGE_ASSIGNMENTS = 32
    ADMIN_ALL = 63


class Action(str, Enum):
    LIST_REPORTS = "list_reports"
    VIEW_REPORT = "view_report"
    CREATE_REPORT = "create_report"
    EDIT_REPORT = "edit_report"
    SUBMIT_REPORT = "submit_report"
    APPROVE_REPORT = "approve_report"
    REJECT_REPORT = "reject_report"
    REVISE_REPORT = "revise_report"
    VIEW_ATTENDANCE = "view_attendance"
    RECORD_ATTENDANCE = "record_attendance"
    VIEW_PAYROLL = "view_payroll"
    LIST_ASSIGNMENTS = "list_assignments"
    MANAGE_ASSIGNMENTS = "manage_assignments"


class DenyReason(str, Enum):
    NOT_ASSIGNED = "NotAssigned"
    WRONG_STATE = "WrongState"
    NOT_OWNER = "NotOwner"
    INSUFFICIENT_ROLE = "InsufficientRole"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    capabilities: Capability = Capability.NONE

    def __bool__(self) -> bool:
        return self.allowed


def allow(caps: Capability = Capability.NONE) -> Decision:
    return Decision(True, None, caps)


def deny(reason: DenyReason, caps: Capability = Capability.NONE) -> Decision:
    return Decision(False, reason, caps)


_WORKER = Capability.VIEW_OWN | Capability.EDIT_OWN_DRAFT
_SITE_MANAGER = _WORKER | Capability.VIEW_SITE | Capability.APPROVE_SITE
_CUSTOMER_MANAGER = Capability.VIEW_SITE

LOCAL_ROLE_CAPS: Dict[str, Capability] = {
    "worker": _WORKER,
    "site_manager": _SITE_MANAGER,
    "customer_manager": _CUSTOMER_MANAGER,
}

GLOBAL_CEILING: Dict[str, Capability] = {
    "worker": _WORKER,
    "site_manager": _SITE_MANAGER,
    "customer_manager": _CUSTOMER_MANAGER,
    "admin": Capability.ADMIN_ALL,
    "system_admin": Capability.ADMIN_ALL,
}

SiteRef = Union[Site, int]


def _site(site: SiteRef) -> Site:
    if isinstance(site, Site):
        return site
    s = db.session.get(Site, site)
    if not s:
        raise NotFoundError("Site not found")
    return s


def _admin_caps(user: User, site: Site) -> Capability:
    if user.global_role == "system_admin":
        return Capability.ADMIN_ALL
    if user.organization_id is not None and user.organization_id == site.organization_id:
        return Capability.ADMIN_ALL
    return Capability.ADMIN_ALL & ~Capability.MANAGE_ASSIGNMENTS


def capabilities_for(user: User, site: SiteRef, as_of: Optional[date] = None) -> Decision:
    """Capability set of `user` on `site` as of a date, or deny(NotAssigned)."""
    site = _site(site)
    if user.is_admin:
        return allow(_admin_caps(user, site))

    a = site_registry.current_assignment(user.id, site.id, as_of)
    if a is None:
        return deny(DenyReason.NOT_ASSIGNED)

    caps = LOCAL_ROLE_CAPS.get(a.local_role, Capability.NONE) & GLOBAL_CEILING.get(user.global_role, Capability.NONE)
    return allow(caps)


def _owner_rule(user: User, report: DailyReport, required_status: str, caps: Capability) -> Decision:
    if report.creator_id != user.id:
        return deny(DenyReason.NOT_OWNER, caps)
    if report.status != required_status:
        return deny(DenyReason.WRONG_STATE, caps)
    return allow(caps)


def _check(user: User, action: Action, caps: Capability,
           report: Optional[DailyReport], subject_user_id: Optional[int]) -> Decision:
    C = Capability

    if action is Action.LIST_REPORTS:
        return allow(caps) if caps & (C.VIEW_SITE | C.VIEW_OWN) else deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.VIEW_REPORT:
        if caps & C.VIEW_SITE:
            return allow(caps)
        if caps & C.VIEW_OWN:
            return allow(caps) if report is not None and report.creator_id == user.id else deny(DenyReason.NOT_OWNER, caps)
        return deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.CREATE_REPORT:
        return allow(caps) if caps & (C.EDIT_OWN_DRAFT | C.EDIT_ANY_DRAFT) else deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action in (Action.EDIT_REPORT, Action.SUBMIT_REPORT):
        if caps & C.EDIT_ANY_DRAFT:
            if report is not None and report.status != "draft":
                return deny(DenyReason.WRONG_STATE, caps)
            return allow(caps)
        if caps & C.EDIT_OWN_DRAFT:
            if report is None:
                return allow(caps)
            return _owner_rule(user, report, "draft", caps)
        return deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.REVISE_REPORT:
        # creator only, even for admins
        if not caps & C.EDIT_OWN_DRAFT:
            return deny(DenyReason.INSUFFICIENT_ROLE, caps)
        if report is None:
            return allow(caps)
        return _owner_rule(user, report, "rejected", caps)

    if action in (Action.APPROVE_REPORT, Action.REJECT_REPORT):
        if not caps & C.APPROVE_SITE:
            return deny(DenyReason.INSUFFICIENT_ROLE, caps)
        if report is not None and report.status != "submitted":
            return deny(DenyReason.WRONG_STATE, caps)
        return allow(caps)

    if action is Action.VIEW_ATTENDANCE:
        if caps & C.VIEW_SITE:
            return allow(caps)
        if caps & C.VIEW_OWN:
            return allow(caps) if subject_user_id == user.id else deny(DenyReason.NOT_OWNER, caps)
        return deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.RECORD_ATTENDANCE:
        if caps & C.APPROVE_SITE:
            return allow(caps)
        if caps & C.EDIT_OWN_DRAFT:
            return allow(caps) if subject_user_id == user.id else deny(DenyReason.NOT_OWNER, caps)
        return deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.VIEW_PAYROLL:
        if caps & C.APPROVE_SITE:
            return allow(caps)
        if caps & C.VIEW_OWN:
            return allow(caps) if subject_user_id == user.id else deny(DenyReason.NOT_OWNER, caps)
        return deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.LIST_ASSIGNMENTS:
        return allow(caps) if caps & (C.VIEW_SITE | C.MANAGE_ASSIGNMENTS) else deny(DenyReason.INSUFFICIENT_ROLE, caps)

    if action is Action.MANAGE_ASSIGNMENTS:
        return allow(caps) if caps & C.MANAGE_ASSIGNMENTS else deny(DenyReason.INSUFFICIENT_ROLE, caps)

    return deny(DenyReason.INSUFFICIENT_ROLE, caps)


def authorize(
    user: User,
    action: Action,
    site: SiteRef,
    report: Optional[DailyReport] = None,
    subject_user_id: Optional[int] = None,
    as_of: Optional[date] = None,
) -> Decision:
    """
    Decide `action` for `user` on `site`.

    `report` enables the object-level rules (ownership, required status);
    `subject_user_id` names whose attendance/payroll rows are targeted.
    Ownership is checked before status, so a non-owner sees NotOwner even
    when the report is also in the wrong state.
    """
    site = _site(site)
    base = capabilities_for(user, site, as_of)
    if not base:
        decision = base
    else:
        decision = _check(user, action, base.capabilities, report, subject_user_id)

    if not decision:
        log.info(
            "access deny user=%s role=%s action=%s site=%s report=%s reason=%s",
            user.id, user.global_role, action.value, site.id,
            getattr(report, "id", None), decision.reason.value,
        )
    return decision


def require(user: User, action: Action, site: SiteRef, report: Optional[DailyReport] = None,
            subject_user_id: Optional[int] = None, as_of: Optional[date] = None) -> Decision:
    """Same as `authorize` but raises AccessDenied(reason) on deny."""
    decision = authorize(user, action, site, report=report, subject_user_id=subject_user_id, as_of=as_of)
    if not decision:
        raise AccessDenied(
            decision.reason,
            action=action.value,
            site_id=site.id if isinstance(site, Site) else site,
            report_id=getattr(report, "id", None),
        )
    return decision


def require_org_admin(user: User, organization_id: int) -> None:
    """Site lifecycle management: system_admin anywhere, admin in own organization."""
    if user.global_role == "system_admin":
        return
    if user.global_role == "admin" and user.organization_id == organization_id:
        return
    log.info("access deny user=%s role=%s org=%s action=manage_sites", user.id, user.global_role, organization_id)
    raise AccessDenied(DenyReason.INSUFFICIENT_ROLE, action="manage_sites", organization_id=organization_id)


# ---------- set / query level ----------

def site_capabilities(user: User, as_of: Optional[date] = None) -> Dict[int, Capability]:
    """
    {site_id: capabilities} for every site the user can act on as of a date.
    Admins get every site.
    """
    if user.is_admin:
        return {s.id: _admin_caps(user, s) for s in Site.query.all()}

    ceiling = GLOBAL_CEILING.get(user.global_role, Capability.NONE)
    out: Dict[int, Capability] = {}
    for site_id, local_role in site_registry.sites_for(user.id, as_of):
        caps = LOCAL_ROLE_CAPS.get(local_role, Capability.NONE) & ceiling
        if caps:
            out[site_id] = caps
    return out


def visible_site_ids(user: User, capability: Capability, as_of: Optional[date] = None) -> Set[int]:
    """Site ids where the user holds every bit of `capability`."""
    return {sid for sid, caps in site_capabilities(user, as_of).items() if (caps & capability) == capability}


def scope_deny_reason(user: User, as_of: Optional[date] = None) -> DenyReason:
    """Reason to report when a set-level request finds no permitted site at all."""
    caps = site_capabilities(user, as_of)
    if not caps:
        return DenyReason.NOT_ASSIGNED
    union = Capability.NONE
    for c in caps.values():
        union |= c
    return DenyReason.NOT_OWNER if union & Capability.VIEW_OWN else DenyReason.INSUFFICIENT_ROLE


def report_visibility_clause(user: User, as_of: Optional[date] = None):
    """
    SQL filter over DailyReport equivalent to authorize(VIEW_REPORT) per row:
      VIEW_SITE sites → every report on the site
      VIEW_OWN sites  → only the user's own reports there
    """
    if user.is_admin:
        return true()

    caps = site_capabilities(user, as_of)
    site_wide = [sid for sid, c in caps.items() if c & Capability.VIEW_SITE]
    own_only = [sid for sid, c in caps.items() if c & Capability.VIEW_OWN and not c & Capability.VIEW_SITE]

    clauses = []
    if site_wide:
        clauses.append(DailyReport.site_id.in_(site_wide))
    if own_only:
        clauses.append(and_(DailyReport.site_id.in_(own_only), DailyReport.creator_id == user.id))
    if not clauses:
        return false()
    return or_(*clauses)
