# sitelog_api/blueprints/sites.py
from __future__ import annotations

from flask import Blueprint, request

from sitelog_api.common.auth import token_required, requires_roles
from sitelog_api.common.http import ok, fail
from sitelog_api.common.listing import as_int, parse_ymd
from sitelog_api.common.paging import paginate
from sitelog_api.extensions import db
from sitelog_api.models.master import Site
from sitelog_api.models.site_assignment import SiteAssignment, AssignmentAudit
from sitelog_api.services import site_registry
from sitelog_api.services.access_resolver import Action, require, site_capabilities

bp = Blueprint("sites", __name__, url_prefix="/api/v1/sites")


# ---------- helpers ----------

def _json():
    return request.get_json(silent=True) or {}


def _site_row(s: Site):
    return {
        "id": s.id,
        "organization_id": s.organization_id,
        "code": s.code,
        "name": s.name,
        "address": s.address,
        "status": s.status,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


def _assignment_row(a: SiteAssignment):
    return {
        "id": a.id,
        "user_id": a.user_id,
        "site_id": a.site_id,
        "local_role": a.local_role,
        "start_date": a.start_date.isoformat() if a.start_date else None,
        "end_date": a.end_date.isoformat() if a.end_date else None,
        "is_current": a.end_date is None,
        "assigned_by": a.assigned_by,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


def _audit_row(x: AssignmentAudit):
    return {
        "id": x.id,
        "actor_id": x.actor_id,
        "user_id": x.user_id,
        "site_id": x.site_id,
        "assignment_id": x.assignment_id,
        "action": x.action,
        "local_role": x.local_role,
        "effective_date": x.effective_date.isoformat(),
        "created_at": x.created_at.isoformat() if x.created_at else None,
    }


def _self_or_admin(actor, user_id: int):
    if actor.id != user_id and not actor.is_admin:
        return fail("Not authorized", status=403, code="ACCESS_DENIED", detail={"reason": "NotOwner"})
    return None


# ---------- sites ----------

@bp.get("")
@token_required
def list_sites(actor):
    """Sites the acting user can act on today (admins: all)."""
    caps = site_capabilities(actor)
    q = Site.query.filter(Site.id.in_(list(caps) or [-1])).order_by(Site.name.asc())
    st = (request.args.get("status") or "").strip().lower()
    if st:
        q = q.filter(Site.status == st)
    items, meta = paginate(q)
    return ok([_site_row(s) for s in items], **meta)


@bp.post("")
@token_required
@requires_roles("admin")
def create_site(actor):
    """
    JSON: { "organization_id": 1, "code": "S-001", "name": "Tower A", "address": "..." }
    organization_id defaults to the admin's own organization.
    """
    d = _json()
    try:
        org_id = as_int(d.get("organization_id"), "organization_id") or actor.organization_id
    except ValueError as ex:
        return fail(str(ex), 422)
    if not org_id:
        return fail("organization_id is required", 422)
    site = site_registry.create_site(actor, org_id, d.get("code"), d.get("name"), d.get("address"))
    return ok(_site_row(site), 201)


@bp.post("/<int:site_id>/status")
@token_required
@requires_roles("admin")
def set_site_status(actor, site_id: int):
    d = _json()
    status = (d.get("status") or "").strip().lower()
    site = site_registry.set_site_status(actor, site_id, status)
    return ok(_site_row(site))


# ---------- assignments ----------

@bp.get("/<int:site_id>/assignments")
@token_required
def list_site_assignments(actor, site_id: int):
    """
    GET /api/v1/sites/<id>/assignments?active_on=2024-03-01
    """
    try:
        active_on = parse_ymd(request.args.get("active_on"), "active_on")
    except ValueError as ex:
        return fail(str(ex), 422)
    require(actor, Action.LIST_ASSIGNMENTS, site_id)
    items, meta = paginate(site_registry.site_members(site_id, active_on))
    return ok([_assignment_row(a) for a in items], **meta)


@bp.post("/<int:site_id>/assignments")
@token_required
def assign_user(actor, site_id: int):
    """
    JSON: { "user_id": 7, "local_role": "worker", "effective_date": "2024-01-01" }
    """
    d = _json()
    try:
        user_id = as_int(d.get("user_id"), "user_id")
        effective_date = parse_ymd(d.get("effective_date"), "effective_date")
    except ValueError as ex:
        return fail(str(ex), 422)
    if not (user_id and effective_date):
        return fail("user_id and effective_date are required", 422)
    local_role = (d.get("local_role") or "").strip().lower()
    a = site_registry.assign(actor, user_id, site_id, local_role, effective_date)
    return ok(_assignment_row(a), 201)


@bp.post("/<int:site_id>/assignments/unassign")
@token_required
def unassign_user(actor, site_id: int):
    """
    JSON: { "user_id": 7, "effective_date": "2024-06-30" }
    """
    d = _json()
    try:
        user_id = as_int(d.get("user_id"), "user_id")
        effective_date = parse_ymd(d.get("effective_date"), "effective_date")
    except ValueError as ex:
        return fail(str(ex), 422)
    if not (user_id and effective_date):
        return fail("user_id and effective_date are required", 422)
    a = site_registry.unassign(actor, user_id, site_id, effective_date)
    return ok(_assignment_row(a))


@bp.get("/users/<int:user_id>/sites")
@token_required
def user_sites(actor, user_id: int):
    denied = _self_or_admin(actor, user_id)
    if denied:
        return denied
    try:
        as_of = parse_ymd(request.args.get("as_of"), "as_of")
    except ValueError as ex:
        return fail(str(ex), 422)
    rows = [{"site_id": sid, "local_role": role} for sid, role in site_registry.sites_for(user_id, as_of)]
    return ok(rows)


@bp.get("/users/<int:user_id>/assignment-history")
@token_required
def user_history(actor, user_id: int):
    denied = _self_or_admin(actor, user_id)
    if denied:
        return denied
    return ok([_assignment_row(a) for a in site_registry.history_for(user_id)])


@bp.get("/assignments/audit")
@token_required
@requires_roles("admin")
def assignment_audit(actor):
    try:
        user_id = as_int(request.args.get("user_id"), "user_id")
        site_id = as_int(request.args.get("site_id"), "site_id")
    except ValueError as ex:
        return fail(str(ex), 422)
    if site_id is not None:
        site = db.session.get(Site, site_id)
        if not site:
            return fail("Site not found", 404)
    items, meta = paginate(site_registry.audit_trail(user_id=user_id, site_id=site_id))
    return ok([_audit_row(x) for x in items], **meta)
