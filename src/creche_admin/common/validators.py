from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional

from ..core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..core.exceptions import ValidationError


def require_non_empty(value: str, field_name: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


def require_min_length(value: str, field_name: str, min_len: int) -> str:
    if value is None or len(value) < min_len:
        raise ValidationError(f"{field_name} must be at least {min_len} characters")
    return value


def optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_id(value: Any, field_name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")
    if parsed <= 0:
        raise ValidationError(f"{field_name} must be positive")
    return parsed


def parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)")


def parse_optional_date(value: Any, field_name: str) -> Optional[date]:
    if value in (None, ""):
        return None
    return parse_date(value, field_name)


def parse_optional_time(value: Any, field_name: str) -> Optional[time]:
    if value in (None, ""):
        return None
    if isinstance(value, time):
        return value
    v = str(value).strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(v, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"{field_name} must be a time (HH:MM)")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_paging(page: Any, limit: Any) -> tuple[int, int]:
    """Return (page, limit) clamped to sane bounds."""

    try:
        page_num = max(1, int(page or 1))
    except (TypeError, ValueError):
        page_num = 1
    try:
        limit_num = int(limit or DEFAULT_PAGE_SIZE)
    except (TypeError, ValueError):
        limit_num = DEFAULT_PAGE_SIZE
    return page_num, max(1, min(MAX_PAGE_SIZE, limit_num))
