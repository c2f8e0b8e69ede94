from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TextIO
import threading

from meeting_meter.exceptions.core import ConfigError
from meeting_meter.utils.logger import get_logger, log_debug, log_info
from meeting_meter.utils.timer import Clock


class TerminationStrategy(ABC):
    """
    A watcher that decides when a ticker run ends.

    Semantics:
      - `watch` blocks on the strategy's own condition.
      - Returning True requests termination; False means the watch ended
        without firing (the run was already stopped elsewhere).
      - Strategies never stop the ticker themselves; the Ticker owns the
        single check-then-set on its stop event.
    """

    name: str = "strategy"

    @abstractmethod
    def watch(self, *, started_at: float, clock: Clock, stop_event: threading.Event) -> bool:
        raise NotImplementedError


class FixedDuration(TerminationStrategy):
    """Fires once `seconds` have elapsed since the run started."""

    name = "duration"

    def __init__(self, seconds: float) -> None:
        if seconds <= 0:
            raise ConfigError(f"target duration must be positive, got {seconds!r}")
        self.seconds = float(seconds)

    def watch(self, *, started_at: float, clock: Clock, stop_event: threading.Event) -> bool:
        deadline = started_at + self.seconds
        # Event.wait may return early on some platforms; re-check the clock.
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                return not stop_event.is_set()
            if stop_event.wait(timeout=remaining):
                return False

    def __repr__(self) -> str:
        return f"FixedDuration(seconds={self.seconds!r})"


class SentinelInput(TerminationStrategy):
    """
    Fires when a line equal to `sentinel` is read from `stream`.

    Matching ignores surrounding whitespace and case. Any other line is
    ignored. At end of input the watch keeps polling every
    `poll_interval` seconds, so a source that is appended to later (or a
    closed stdin) never ends the run by itself.

    The blocking `readline` cannot be interrupted, so the Ticker runs this
    watch on a daemon thread and never joins it.
    """

    name = "sentinel"

    def __init__(self, stream: TextIO, sentinel: str = "q", *, poll_interval: float = 0.1) -> None:
        if not sentinel or not sentinel.strip():
            raise ConfigError("sentinel must be a non-empty token")
        if poll_interval <= 0:
            raise ConfigError(f"poll interval must be positive, got {poll_interval!r}")
        self.stream = stream
        self.sentinel = sentinel.strip()
        self.poll_interval = float(poll_interval)
        self._logger = get_logger(f"meeting_meter.termination.{self.__class__.__name__}")

    def matches(self, line: str) -> bool:
        return line.strip().casefold() == self.sentinel.casefold()

    def watch(self, *, started_at: float, clock: Clock, stop_event: threading.Event) -> bool:
        at_eof = False
        while not stop_event.is_set():
            line = self.stream.readline()
            if line == "":
                if not at_eof:
                    at_eof = True
                    log_info(self._logger, "termination.input_exhausted", elapsed_s=round(clock() - started_at, 3))
                stop_event.wait(timeout=self.poll_interval)
                continue
            at_eof = False
            if stop_event.is_set():
                return False
            if self.matches(line):
                return True
            log_debug(self._logger, "termination.input_ignored", line=line.rstrip("\n"))
        return False

    def __repr__(self) -> str:
        return f"SentinelInput(sentinel={self.sentinel!r})"
