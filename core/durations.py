"""
core/durations.py -- Duration expressions ("15m", "7d") for token windows.

Every expiry window in setu-auth is configured as one of these expressions.
The same expression feeds the JWT exp claim and the persisted expires_at of
the matching token record, so the two can never drift apart.

Grammar: <positive integer><unit>, unit one of s, m, h, d. No whitespace,
no compound forms ("1h30m" is rejected).
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def parse_duration(expr: str) -> timedelta:
    """Parse a duration expression. Raises ValueError on anything malformed."""
    match = _DURATION_RE.match(expr or "")
    if match is None:
        raise ValueError(f"Invalid duration expression: {expr!r} (expected e.g. '15m', '7d')")
    value, unit = match.groups()
    return timedelta(seconds=int(value) * _UNIT_SECONDS[unit])


def duration_seconds(expr: str) -> int:
    """Return the window length in whole seconds ("15m" -> 900)."""
    return int(parse_duration(expr).total_seconds())


def expires_at(expr: str, now: datetime) -> datetime:
    """Return now + the window described by expr."""
    return now + parse_duration(expr)
