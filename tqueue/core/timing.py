"""Clock helpers shared by the queue managers."""

from __future__ import annotations

import math
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def seconds_to(target: datetime, relative_to: datetime) -> int:
    """
    Whole seconds from relative_to until target, rounded up, at least 1.

    The floor of one second keeps messages published a few milliseconds
    before their target from becoming visible immediately.
    """
    delta = math.ceil((target - relative_to).total_seconds())
    return max(delta, 1)
