"""
core/clock.py -- Injectable time source.

Everything that compares against "now" (token expiry, session expiry, row
timestamps) takes a Clock so tests can substitute a frozen or stepped clock.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(timezone.utc)
