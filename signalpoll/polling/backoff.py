"""Next-poll-time calculation with capped exponential backoff.

A source that keeps failing is polled progressively less often:

    interval = min(base * 2 ** consecutive_errors, max_interval)

On success the caller resets ``consecutive_errors`` to 0, so the interval
collapses back to the base cadence. Optional jitter spreads sources that
share a cadence so they are not all due in the same run.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta

# 2**20 base intervals already exceeds any sensible cap
_MAX_EXPONENT = 20


def calculate_backoff_interval(
    base_interval_minutes: int,
    consecutive_errors: int,
    max_interval_minutes: int,
) -> timedelta:
    """Calculate the poll interval for a source.

    Args:
        base_interval_minutes: The source's normal cadence. Must be positive.
        consecutive_errors: Failures since the last success (0 after success).
        max_interval_minutes: Cap on the interval. Must be >= the base.

    Returns:
        timedelta: How long to wait before the next attempt.

    Raises:
        ValueError: If any argument is out of range.
    """
    if base_interval_minutes <= 0:
        raise ValueError("base_interval_minutes must be positive")
    if consecutive_errors < 0:
        raise ValueError("consecutive_errors cannot be negative")
    if max_interval_minutes < base_interval_minutes:
        raise ValueError("max_interval_minutes must be >= base_interval_minutes")

    multiplier = 2 ** min(consecutive_errors, _MAX_EXPONENT)
    minutes = min(base_interval_minutes * multiplier, max_interval_minutes)
    return timedelta(minutes=minutes)


def calculate_next_poll(
    now: datetime,
    base_interval_minutes: int,
    consecutive_errors: int,
    max_interval_minutes: int,
    jitter_minutes: int = 0,
) -> datetime:
    """Calculate when a source should next be polled.

    The result is always strictly after ``now``: the interval is at least one
    base period and jitter only ever adds to it.

    Args:
        now: Time of the poll attempt.
        base_interval_minutes: The source's normal cadence.
        consecutive_errors: Failures since the last success.
        max_interval_minutes: Cap on the backoff interval.
        jitter_minutes: Maximum random offset added after the cap.

    Returns:
        datetime: The next poll time.
    """
    interval = calculate_backoff_interval(
        base_interval_minutes,
        consecutive_errors,
        max_interval_minutes,
    )
    if jitter_minutes > 0:
        interval += timedelta(minutes=random.randint(0, jitter_minutes))
    return now + interval
