from __future__ import annotations

from enum import Enum
from dataclasses import dataclass


class MeterMode(Enum):
    """
    How a run presents cost.

    TICKER prints a running cost every interval until the meeting ends.
    PROJECTION prints the total cost of the whole duration once.
    """

    TICKER = "ticker"
    PROJECTION = "projection"


class TickerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class TickerSpec:
    """
    Immutable parameters of one ticker run.

    Responsibilities:
      - Carry the rate and timing of a run from configuration to the Ticker.
      - Decide nothing: validation belongs to the Ticker constructor.
    """

    rate: float              # currency per hour
    interval_seconds: float  # e.g. 1.0, 60.0
    duration_seconds: float | None = None  # None: stop on sentinel input only
    sentinel: str = "q"

    @property
    def open_ended(self) -> bool:
        return not self.duration_seconds
