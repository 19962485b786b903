# sitelog_api/common/timeutil.py
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now, the form every audit/created_at column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_wall_clock(ts: Optional[datetime]) -> Optional[datetime]:
    """
    Punch times are stored naive in server-local time (what datetime.now()
    gives for a punch without a timestamp). Aware values are converted to
    that clock so stored and incoming values always compare.
    """
    if ts is None or ts.tzinfo is None:
        return ts
    return ts.astimezone().replace(tzinfo=None)
