# sitelog_api/common/http.py
from flask import jsonify


def ok(data=None, status=200, **meta):
    """{"success": true, "data": ..., "meta": {...}}; meta only when paging/extra info is given."""
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def fail(message="Bad Request", status=400, code=None, detail=None):
    """{"success": false, "error": {"message", "code"?, "detail"?}}; deny reasons go in detail.reason."""
    err = {"message": message}
    if code:
        err["code"] = code
    if detail:
        err["detail"] = detail
    return jsonify({"success": False, "error": err}), status
