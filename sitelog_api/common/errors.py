# sitelog_api/common/errors.py
from flask import Blueprint, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from sitelog_api.common.http import fail

bp_errors = Blueprint("errors", __name__)

@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)

@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, detail=str(e.orig) if getattr(e, "orig", None) else str(e))

@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    current_app.logger.exception(e)
    return fail(message="Internal Server Error", status=500, detail=str(e))

class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload

@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)


# ---------- domain taxonomy ----------
# All of these are local to the single operation that raised them.
# Only ConcurrentModificationError is worth retrying (after a fresh read).

class AccessDenied(APIError):
    def __init__(self, reason, message="Not authorized", **detail):
        self.reason = reason
        payload = {"reason": getattr(reason, "value", reason)}
        payload.update({k: v for k, v in detail.items() if v is not None})
        super().__init__("ACCESS_DENIED", message, status_code=403, payload=payload)


class NotFoundError(APIError):
    def __init__(self, message="Not found"):
        super().__init__("NOT_FOUND", message, status_code=404)


class NotAssignedError(APIError):
    def __init__(self, message="User is not assigned to this site", payload=None):
        super().__init__("NOT_ASSIGNED", message, status_code=409, payload=payload)


class OverlapError(APIError):
    def __init__(self, message="An assignment already covers this date", payload=None):
        super().__init__("ASSIGNMENT_OVERLAP", message, status_code=409, payload=payload)


class WrongStateError(APIError):
    def __init__(self, message="Operation not allowed in the current state", payload=None):
        super().__init__("WRONG_STATE", message, status_code=409, payload=payload)


class ImmutableReportError(APIError):
    def __init__(self, message="Only draft reports can be edited", payload=None):
        super().__init__("REPORT_IMMUTABLE", message, status_code=409, payload=payload)


class IncompleteReportError(APIError):
    def __init__(self, message="Report is incomplete", missing=None):
        super().__init__("REPORT_INCOMPLETE", message, status_code=422,
                         payload={"missing": missing} if missing else None)


class InvalidIntervalError(APIError):
    def __init__(self, message="End must be after start", payload=None):
        super().__init__("INVALID_INTERVAL", message, status_code=422, payload=payload)


class OutOfRangeError(APIError):
    def __init__(self, message="Value out of range", payload=None):
        super().__init__("OUT_OF_RANGE", message, status_code=422, payload=payload)


class ConcurrentModificationError(APIError):
    def __init__(self, message="Record was changed by another request; reload and retry", payload=None):
        super().__init__("CONCURRENT_MODIFICATION", message, status_code=409, payload=payload)


class DuplicateReportError(APIError):
    def __init__(self, message="Report already exists for this date", payload=None):
        super().__init__("REPORT_EXISTS", message, status_code=409, payload=payload)


class DuplicateAttendanceError(APIError):
    def __init__(self, message="Attendance already recorded", payload=None):
        super().__init__("ATTENDANCE_EXISTS", message, status_code=409, payload=payload)
