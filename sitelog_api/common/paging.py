# sitelog_api/common/paging.py
from flask import request

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20
MAX_SIZE = 100

def page_limit():
    try:
        page = max(int(request.args.get("page", DEFAULT_PAGE)), 1)
    except Exception:
        page = DEFAULT_PAGE
    raw = request.args.get("size", request.args.get("limit", DEFAULT_SIZE))
    try:
        size = max(1, min(int(raw), MAX_SIZE))
    except Exception:
        size = DEFAULT_SIZE
    return page, size

def paginate(query):
    """Returns (items, meta) for a SQLAlchemy query using ?page=&size=."""
    page, size = page_limit()
    total = query.count()
    items = query.offset((page - 1) * size).limit(size).all()
    return items, {"page": page, "size": size, "total": total}
