"""
Request-level helpers shared by the blueprints: the current user id, JSON
body parsing, pagination and spreadsheet-style rounding.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from flask import request
from flask_login import current_user

from errors import ValidationError


def current_user_id() -> str:
    """Return the authenticated user's ID. Only call behind @login_required."""
    return current_user.id


def optional_user_id() -> str | None:
    """Viewer id for routes that work with or without a session."""
    if current_user.is_authenticated:
        return current_user.id
    return None


def round_half_up(value: float, digits: int = 0) -> float | int:
    """Round like a spreadsheet (2.5 -> 3), not like round() (2.5 -> 2)."""
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if digits == 0 else float(rounded)


def json_body() -> dict[str, Any]:
    """Parsed JSON object from the request body, or a 400."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


# ── Pagination ──────────────────────────────────────────────

def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (ValueError, TypeError):
        return default


def paginate_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """(page, limit) from the query string: page is 1-based, limit is clamped to [1, max_limit]."""
    page = max(1, _int_arg("page", 1))
    limit = min(max_limit, max(1, _int_arg("limit", default_limit)))
    return page, limit


def paginated_response(items: list, total: int, page: int, limit: int, key: str = "items") -> dict:
    """{key: items, "pagination": {...}}. An empty result still reports one page."""
    pages = max(1, -(-total // limit))
    return {key: items, "pagination": {"page": page, "limit": limit, "total": total, "pages": pages}}
