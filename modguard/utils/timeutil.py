"""Timestamp helpers.

All timestamps are stored as timezone-aware UTC ISO-8601 strings and parsed
back into datetimes before any comparison.
"""

from __future__ import annotations

import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def now_iso() -> str:
    return to_iso(utcnow())


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO string; naive values are taken as UTC. Empty -> None."""
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_past(value: str | None, now: datetime) -> bool:
    """True when *value* is set and strictly before *now*."""
    dt = parse_iso(value)
    return dt is not None and dt < now


def add_hours(dt: datetime, hours: float) -> str:
    return to_iso(dt + timedelta(hours=hours))


def add_days(dt: datetime, days: float) -> str:
    return to_iso(dt + timedelta(days=days))


def stamped_id(prefix: str) -> str:
    """Human-readable unique id, e.g. ``CASE_1718000000000_9f2c1a0b``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_id() -> str:
    return uuid.uuid4().hex[:16]
