from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, TextIO
import asyncio
import sys
import threading

from meeting_meter.cost import cost, format_cost
from meeting_meter.exceptions.core import ConfigError, TickerStateError
from meeting_meter.runtime.modes import TickerSpec, TickerState
from meeting_meter.runtime.termination import FixedDuration, SentinelInput, TerminationStrategy
from meeting_meter.utils.logger import (
    get_logger,
    log_debug,
    log_exception,
    log_lifecycle,
    log_termination,
)
from meeting_meter.utils.timer import Clock, format_duration, monotonic


@dataclass(frozen=True)
class CostSnapshot:
    """One emitted running-cost value."""

    seq: int          # 1-based tick number
    elapsed_s: float  # monotonic seconds since start
    amount: float


class Ticker:
    """
    Periodic running-cost emitter with first-signal-wins termination.

    Responsibilities:
      - Own one emission thread and one watcher thread per termination strategy.
      - Write one formatted cost line per tick to the injected output.
      - Stop exactly once, whichever strategy (or `stop()`) fires first.

    Lifecycle:
      IDLE -> RUNNING on start(); RUNNING -> FINISHED when the emission
      loop exits. A Ticker runs once; build a new one per meeting.
    """

    def __init__(
        self,
        *,
        rate: float,
        interval: float,
        duration: float | None = None,
        output: TextIO | None = None,
        input: TextIO | None = None,
        sentinel: str = "q",
        strategies: Iterable[TerminationStrategy] | None = None,
        clock: Clock = monotonic,
    ):
        if interval is None or interval <= 0:
            raise ConfigError(f"tick interval must be positive, got {interval!r}")
        if rate < 0:
            raise ConfigError(f"hourly rate must not be negative, got {rate!r}")
        if duration is not None and duration < 0:
            raise ConfigError(f"target duration must not be negative, got {duration!r}")

        if strategies is None:
            if duration:
                strategies = [FixedDuration(duration)]
            else:
                strategies = [SentinelInput(input if input is not None else sys.stdin, sentinel)]
        self._strategies: List[TerminationStrategy] = list(strategies)
        if not self._strategies:
            raise ConfigError("at least one termination strategy is required")

        self.rate = float(rate)
        self.interval = float(interval)
        self.duration = duration
        self._output = output if output is not None else sys.stdout
        self._clock = clock
        self._logger = get_logger(f"meeting_meter.runtime.{self.__class__.__name__}")

        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._finished_event = threading.Event()
        self._state = TickerState.IDLE
        self._started_at: Optional[float] = None
        self._stopped_at: Optional[float] = None
        self._stop_reason: Optional[str] = None
        self._threads: List[threading.Thread] = []

        # Written only by the emission thread.
        self._snapshots: List[CostSnapshot] = []

    @classmethod
    def from_spec(
        cls,
        spec: TickerSpec,
        *,
        output: TextIO | None = None,
        input: TextIO | None = None,
        clock: Clock = monotonic,
    ) -> "Ticker":
        return cls(
            rate=spec.rate,
            interval=spec.interval_seconds,
            duration=spec.duration_seconds,
            output=output,
            input=input,
            sentinel=spec.sentinel,
            clock=clock,
        )

    # -------------------------------------------------
    # Observers
    # -------------------------------------------------

    @property
    def state(self) -> TickerState:
        with self._state_lock:
            return self._state

    @property
    def finished(self) -> bool:
        return self._finished_event.is_set()

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    @property
    def strategies(self) -> List[TerminationStrategy]:
        return list(self._strategies)

    @property
    def snapshots(self) -> List[CostSnapshot]:
        """
        Snapshots written so far, in emission order.

        Stable once `finished` is True.
        """
        return list(self._snapshots)

    @property
    def emissions(self) -> int:
        return len(self._snapshots)

    # -------------------------------------------------
    # Control
    # -------------------------------------------------

    def start(self) -> None:
        with self._state_lock:
            if self._state is not TickerState.IDLE:
                raise TickerStateError(f"ticker cannot be started from state {self._state.value!r}")
            self._state = TickerState.RUNNING
            self._started_at = self._clock()

        log_lifecycle(
            self._logger,
            "ticker.start",
            state=TickerState.RUNNING,
            rate=self.rate,
            interval=format_duration(self.interval),
            duration=format_duration(self.duration) if self.duration else None,
            strategies=[s.name for s in self._strategies],
        )

        self._threads.append(threading.Thread(target=self._emit_loop, name="ticker-emit", daemon=True))
        for strategy in self._strategies:
            self._threads.append(
                threading.Thread(
                    target=self._watch,
                    args=(strategy,),
                    name=f"ticker-watch-{strategy.name}",
                    daemon=True,
                )
            )
        for t in self._threads:
            t.start()

    def stop(self, reason: str = "manual") -> bool:
        """
        Request termination. Safe from any thread.

        Returns True only for the call that actually stopped the run.
        """
        with self._state_lock:
            if self._state is TickerState.IDLE:
                raise TickerStateError("ticker has not been started")
            if self._stop_event.is_set():
                return False
            self._stopped_at = self._clock()
            self._stop_reason = reason
            self._stop_event.set()
        log_lifecycle(self._logger, "ticker.stop_requested", reason=reason)
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the run has finished. Returns False on timeout."""
        if self.state is TickerState.IDLE:
            raise TickerStateError("ticker has not been started")
        return self._finished_event.wait(timeout)

    async def wait_async(self, timeout: float | None = None) -> bool:
        return await asyncio.to_thread(self.wait, timeout)

    def run(self) -> int:
        """Start, block until finished, and return the number of emissions."""
        self.start()
        self.wait()
        return self.emissions

    # -------------------------------------------------
    # Threads
    # -------------------------------------------------

    def _watch(self, strategy: TerminationStrategy) -> None:
        assert self._started_at is not None
        try:
            fired = strategy.watch(
                started_at=self._started_at,
                clock=self._clock,
                stop_event=self._stop_event,
            )
            reason = strategy.name
        except Exception:
            # A broken watcher must not leave the run without an end.
            log_exception(self._logger, "termination.watch_error", strategy=strategy.name)
            fired = True
            reason = f"{strategy.name}.error"

        if not fired:
            return
        won = self.stop(reason=reason)
        log_termination(
            self._logger,
            "termination.fired",
            strategy=strategy.name,
            elapsed_s=round(self._clock() - self._started_at, 3),
            won=won,
        )

    def _emit_loop(self) -> None:
        assert self._started_at is not None
        started_at = self._started_at
        seq = 0
        try:
            while True:
                fire_at = started_at + (seq + 1) * self.interval
                if not self._due(fire_at):
                    break
                seq += 1
                elapsed = self._clock() - started_at
                self._emit(CostSnapshot(seq=seq, elapsed_s=elapsed, amount=cost(self.rate, elapsed)))
        finally:
            with self._state_lock:
                self._state = TickerState.FINISHED
                self._finished_event.set()
            log_lifecycle(
                self._logger,
                "ticker.finished",
                state=TickerState.FINISHED,
                reason=self._stop_reason,
                emissions=len(self._snapshots),
            )

    def _due(self, fire_at: float) -> bool:
        """
        Sleep until `fire_at` or a stop request.

        A tick scheduled no later than the stop request is still emitted, so
        a 3s meeting at 1s ticks always yields the tick at 3s.
        """
        while not self._stop_event.is_set():
            remaining = fire_at - self._clock()
            if remaining <= 0:
                return True
            self._stop_event.wait(timeout=remaining)
        return self._stopped_at is not None and self._stopped_at >= fire_at

    def _emit(self, snapshot: CostSnapshot) -> None:
        try:
            self._output.write(format_cost(snapshot.amount) + "\n")
            self._output.flush()
        except Exception:
            log_exception(self._logger, "ticker.emit_error", seq=snapshot.seq)
            return
        self._snapshots.append(snapshot)
        log_debug(
            self._logger,
            "ticker.emit",
            seq=snapshot.seq,
            elapsed_s=round(snapshot.elapsed_s, 3),
            amount=round(snapshot.amount, 2),
        )
