from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import inspect as sa_inspect

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: str, max_length: int = 120) -> str:
    """ASCII, lowercase, dash-separated slug ("Q3 Roll-out!" -> "q3-roll-out")."""
    normalized = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_STRIP_RE.sub("-", normalized.lower()).strip("-")
    return slug[:max_length].strip("-")


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_date(s: Any) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if isinstance(s, datetime):
        return s.date()
    if s is None or isinstance(s, date):
        return s
    s = str(s).strip()
    if not s:
        return None
    if len(s) > 10:
        return parse_datetime(s).date()  # type: ignore[union-attr]
    return date.fromisoformat(s)


def parse_datetime(s: Any) -> datetime | None:
    """Parse an ISO timestamp. Naive UTC is stored, so offsets are dropped after conversion."""
    if s is None or isinstance(s, datetime):
        return s
    s = str(s).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_int(s: Any) -> int | None:
    if s is None or isinstance(s, bool):
        return None
    if isinstance(s, int):
        return s
    s = str(s).strip()
    if not s:
        return None
    return int(s)


def parse_decimal(s: Any) -> Decimal | None:
    if s is None:
        return None
    s = str(s).strip()
    if not s:
        return None
    try:
        return Decimal(s)
    except InvalidOperation as e:
        raise ValueError(f"Invalid number: {s}") from e


def parse_bool(s: Any, default: bool = False) -> bool:
    if s is None:
        return default
    if isinstance(s, bool):
        return s
    return str(s).strip().lower() in ("1", "true", "yes", "on")


def json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_value(v) for v in value]
    return value


def row_to_dict(obj: Any, *, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict."""
    mapper = sa_inspect(obj).mapper
    data: dict[str, Any] = {}
    for attr in mapper.column_attrs:
        if attr.key in exclude:
            continue
        data[attr.key] = json_value(getattr(obj, attr.key))
    return data
