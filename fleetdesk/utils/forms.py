from __future__ import annotations

import math
from datetime import date, datetime, timezone

from bson import ObjectId


# -----------------------------
# tiny utils shared by the blueprints
# -----------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_iso() -> str:
    return date.today().isoformat()


def oid(v) -> ObjectId | None:
    if not v:
        return None
    try:
        return ObjectId(str(v))
    except Exception:
        return None


def clean(v) -> str:
    if v is None:
        return ""
    return str(v).strip()


def to_int(v, default: int | None = None) -> int | None:
    s = clean(v)
    if not s:
        return default
    try:
        return int(float(s))
    except (ValueError, OverflowError):
        return default


def to_float(v, default: float | None = None) -> float | None:
    s = clean(v).replace(",", ".")
    if not s:
        return default
    try:
        f = float(s)
    except ValueError:
        return default
    # nan/inf never reach a stored amount
    if not math.isfinite(f):
        return default
    return f


def parse_iso_date(v) -> str | None:
    """
    'YYYY-MM-DD' -> same string if valid, else None.
    Dates are stored as ISO strings so range queries sort lexically.
    """
    s = clean(v)
    if not s:
        return None
    try:
        return date.fromisoformat(s).isoformat()
    except ValueError:
        return None
