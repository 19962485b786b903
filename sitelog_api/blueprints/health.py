from flask import Blueprint
from sqlalchemy import text

from sitelog_api.common.http import ok, fail
from sitelog_api.extensions import db

bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@bp.get("")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except Exception as e:
        return fail("Database unavailable", status=503, detail=str(e))
    return ok({"status": "ok"})
