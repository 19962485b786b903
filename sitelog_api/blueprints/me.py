# sitelog_api/blueprints/me.py
from __future__ import annotations

from flask import Blueprint, request

from sitelog_api.common.auth import token_required
from sitelog_api.common.http import ok, fail
from sitelog_api.common.listing import as_int, parse_ymd
from sitelog_api.services.access_resolver import Capability, capabilities_for, site_capabilities

bp = Blueprint("me", __name__, url_prefix="/api/v1/me")

_NAMED = [c for c in Capability if c not in (Capability.NONE, Capability.ADMIN_ALL)]


def _cap_names(caps: Capability):
    return [c.name for c in _NAMED if c in caps]


@bp.get("")
@token_required
def me(actor):
    return ok({
        "id": actor.id,
        "email": actor.email,
        "full_name": actor.full_name,
        "global_role": actor.global_role,
        "organization_id": actor.organization_id,
        "status": actor.status,
    })


@bp.get("/capabilities")
@token_required
def my_capabilities(actor):
    """
    ?site_id=1 → capabilities on that site (or the deny reason)
    no site_id → every site the caller can act on
    """
    try:
        site_id = as_int(request.args.get("site_id"), "site_id")
        as_of = parse_ymd(request.args.get("as_of"), "as_of")
    except ValueError as ex:
        return fail(str(ex), 422)

    if site_id is not None:
        decision = capabilities_for(actor, site_id, as_of)
        return ok({
            "site_id": site_id,
            "allowed": decision.allowed,
            "reason": decision.reason.value if decision.reason else None,
            "capabilities": _cap_names(decision.capabilities),
        })

    rows = [
        {"site_id": sid, "capabilities": _cap_names(caps)}
        for sid, caps in sorted(site_capabilities(actor, as_of).items())
    ]
    return ok(rows)
