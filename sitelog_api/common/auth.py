# sitelog_api/common/auth.py
from __future__ import annotations

from functools import wraps

from flask import g
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity

from sitelog_api.common.http import fail
from sitelog_api.extensions import db
from sitelog_api.models.user import User


def _load_actor():
    """
    Credentials are verified upstream; the token only carries the user id.
    Role and organization are always read fresh from the users table.
    """
    uid = get_jwt_identity()
    try:
        user_id = int(uid) if uid is not None else None
    except (TypeError, ValueError):
        return None
    if not user_id:
        return None
    user = db.session.get(User, user_id)
    if not user or user.status != "active":
        return None
    return user


def token_required(f):
    """
    Usage:
      @bp.get("/something")
      @token_required
      def handler(actor): ...
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        verify_jwt_in_request()
        actor = _load_actor()
        if actor is None:
            return fail("Unauthorized", status=401, code="auth.unknown_user")
        g.actor = actor
        return f(actor, *args, **kwargs)
    return decorated


def requires_roles(*codes: str):
    """
    Require that the acting user's global role is one of `codes`.
    'system_admin' always passes. Must be stacked under @token_required.
    """
    def outer(fn):
        @wraps(fn)
        def inner(actor, *args, **kwargs):
            if actor.global_role == "system_admin" or actor.global_role in codes:
                return fn(actor, *args, **kwargs)
            return fail("Forbidden", status=403, code="auth.forbidden",
                        detail={"reason": "InsufficientRole"})
        return inner
    return outer
