from __future__ import annotations

import re
import time
from contextlib import contextmanager
from typing import Callable

from .logger import get_logger, log_debug

Clock = Callable[[], float]

# Units accepted by Go-style duration strings, e.g. "1h30m", "2.5h", "250ms".
_UNIT_SECONDS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART_RE = re.compile(r"(?P<value>\d+(?:\.\d*)?|\.\d+)(?P<unit>ns|us|µs|ms|s|m|h)")


def monotonic() -> float:
    """Monotonic clock in seconds; immune to wall-clock adjustments."""
    return time.monotonic()


def parse_duration(text: str) -> float:
    """Parse a Go-style duration string into seconds.

    Accepts a sequence of ``<number><unit>`` parts (``"1h"``, ``"150m"``,
    ``"2.5h"``, ``"1h30m"``, ``"250ms"``) or a bare ``"0"``. Signs and
    unit-less numbers other than zero are rejected.
    """
    s = str(text).strip()
    if s == "0":
        return 0.0
    if not s:
        raise ValueError("Invalid duration: empty string")

    total = 0.0
    pos = 0
    for m in _DURATION_PART_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group("value")) * _UNIT_SECONDS[m.group("unit")]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"Invalid duration format: {text!r}")
    return total


def format_duration(seconds: float) -> str:
    """Render seconds back into a compact duration string, e.g. ``1h30m0s``."""
    if seconds < 1.0:
        return f"{seconds * 1000:g}ms"
    hours, rem = divmod(float(seconds), 3600.0)
    minutes, secs = divmod(rem, 60.0)
    out = ""
    if hours:
        out += f"{int(hours)}h"
    if hours or minutes:
        out += f"{int(minutes)}m"
    return out + f"{secs:g}s"


@contextmanager
def timed_block(name: str, clock: Clock = monotonic):
    """Profile execution time of a code block."""
    logger = get_logger()

    start = clock()
    try:
        yield
    finally:
        elapsed = (clock() - start) * 1000  # ms
        log_debug(logger, f"[TIMER] {name}", elapsed_ms=round(elapsed, 3))
