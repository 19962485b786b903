from datetime import datetime, date
from typing import Callable, Iterable, Iterator, Optional

from sitelog_api.common.timeutil import to_wall_clock


class LazyRows:
    """
    Finite, restartable sequence over a query. Nothing is loaded until
    iteration, and every new iteration re-runs the query.
    """

    def __init__(self, factory: Callable[[], Iterable]):
        self._factory = factory

    def __iter__(self) -> Iterator:
        return iter(self._factory())

    def all(self) -> list:
        return list(self)


def parse_ymd(raw, field: str) -> Optional[date]:
    """
    Accepts:
      - 'YYYY-MM-DD'  (canonical)
      - 'DD-MM-YYYY'  (legacy support)
      - a full ISO timestamp (date part is used)
    Raises ValueError with a field-specific message.
    """
    if raw in (None, ""):
        return None
    if isinstance(raw, date):
        return raw
    s = str(raw).strip()
    for f in ("%Y-%m-%d", "%d-%m-%Y"):
        try:
            return datetime.strptime(s[:10], f).date()
        except ValueError:
            pass
    raise ValueError(f"{field} must be YYYY-MM-DD")


def parse_ts(raw, field: str) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return to_wall_clock(raw)
    s = str(raw).strip().replace(" ", "T")
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        return to_wall_clock(datetime.fromisoformat(s))
    except ValueError:
        raise ValueError(f"{field} must be an ISO timestamp (YYYY-MM-DDTHH:MM[:SS])")


def as_int(val, field) -> Optional[int]:
    if val in (None, "", "null"):
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be integer")
