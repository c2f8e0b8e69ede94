from __future__ import annotations

from datetime import timedelta

COST_LABEL = "The total current cost of this meeting is $"

SECONDS_PER_HOUR = 3600.0


def cost(rate: float, elapsed: float | timedelta) -> float:
    """Running cost of a meeting.

    `rate` is currency per hour; `elapsed` is seconds (fractions allowed) or a
    timedelta. The result is not rounded: anything under a cent only shows up
    as 0.00 once formatted.
    """
    if isinstance(elapsed, timedelta):
        elapsed = elapsed.total_seconds()
    return rate / SECONDS_PER_HOUR * elapsed


def format_cost(amount: float) -> str:
    return f"{COST_LABEL}{amount:.2f}"
