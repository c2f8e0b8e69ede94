from __future__ import annotations

import io
import logging
import threading
import time

import pytest

from meeting_meter.cost import COST_LABEL
from meeting_meter.exceptions.core import ConfigError, TickerStateError
from meeting_meter.runtime.modes import TickerSpec, TickerState
from meeting_meter.runtime.termination import FixedDuration, SentinelInput, TerminationStrategy
from meeting_meter.runtime.ticker import Ticker
from tests.helpers.streams import BrokenOutput, GrowingInput, PipeInput


class _ExplodingStrategy(TerminationStrategy):
    name = "boom"

    def watch(self, *, started_at, clock, stop_event):
        raise RuntimeError("watcher failed")


class _NeverStrategy(TerminationStrategy):
    name = "never"

    def watch(self, *, started_at, clock, stop_event):
        stop_event.wait()
        return False


def _lines(out: io.StringIO) -> list[str]:
    return [line for line in out.getvalue().splitlines() if line]


def test_three_second_meeting_with_one_second_ticks_emits_three_lines():
    out = io.StringIO()
    ticker = Ticker(rate=10000.0, interval=1.0, duration=3.0, output=out)

    assert ticker.run() == 3
    assert ticker.finished
    assert ticker.state is TickerState.FINISHED
    assert ticker.stop_reason == "duration"

    amounts = [s.amount for s in ticker.snapshots]
    assert amounts == pytest.approx([2.78, 5.56, 8.34], abs=0.01)

    lines = _lines(out)
    assert len(lines) == 3
    assert all(line.startswith(COST_LABEL) for line in lines)


def test_unstarted_ticker_is_not_finished():
    ticker = Ticker(rate=100.0, interval=1.0, duration=1.0, output=io.StringIO())
    assert not ticker.finished
    assert ticker.state is TickerState.IDLE
    assert ticker.emissions == 0
    with pytest.raises(TickerStateError):
        ticker.wait(timeout=0.01)
    with pytest.raises(TickerStateError):
        ticker.stop()


@pytest.mark.parametrize("interval", [0, 0.0, -1.0])
def test_non_positive_interval_is_rejected_before_start(interval):
    before = {t.name for t in threading.enumerate()}
    with pytest.raises(ConfigError):
        Ticker(rate=100.0, interval=interval, duration=1.0, output=io.StringIO())
    after = {t.name for t in threading.enumerate()}
    assert not {name for name in after - before if name.startswith("ticker-")}


def test_negative_rate_and_duration_are_rejected():
    with pytest.raises(ConfigError):
        Ticker(rate=-1.0, interval=1.0, duration=1.0, output=io.StringIO())
    with pytest.raises(ConfigError):
        Ticker(rate=1.0, interval=1.0, duration=-1.0, output=io.StringIO())
    with pytest.raises(ConfigError):
        Ticker(rate=1.0, interval=1.0, strategies=[], output=io.StringIO())


def test_duration_shorter_than_interval_emits_nothing():
    out = io.StringIO()
    ticker = Ticker(rate=3600.0, interval=1.0, duration=0.1, output=out)
    assert ticker.run() == 0
    assert ticker.finished
    assert out.getvalue() == ""


def test_restart_is_rejected():
    ticker = Ticker(rate=3600.0, interval=0.05, duration=0.1, output=io.StringIO())
    ticker.run()
    with pytest.raises(TickerStateError):
        ticker.start()


def test_sentinel_input_ends_open_ended_run():
    out = io.StringIO()
    pipe = PipeInput()
    ticker = Ticker(rate=100_000_000.0, interval=0.05, output=out, input=pipe.reader)
    try:
        ticker.start()
        pipe.send("not yet")
        assert not ticker.wait(timeout=0.3)
        assert not ticker.finished

        pipe.send("q")
        assert ticker.wait(timeout=0.5)
        assert ticker.finished
        assert ticker.stop_reason == "sentinel"
        assert ticker.emissions >= 1
    finally:
        pipe.close()


def test_sentinel_match_ignores_case():
    pipe = PipeInput()
    ticker = Ticker(rate=60.0, interval=0.05, output=io.StringIO(), input=pipe.reader, sentinel="done")
    try:
        ticker.start()
        pipe.send("  DONE ")
        assert ticker.wait(timeout=0.5)
    finally:
        pipe.close()


def test_open_ended_run_waits_for_sentinel_after_empty_input():
    source = GrowingInput("")
    ticker = Ticker(rate=3600.0, interval=0.05, output=io.StringIO(), input=source, sentinel="!")
    ticker.start()
    assert not ticker.wait(timeout=0.3)
    assert not ticker.finished

    source.write("!\n")
    assert ticker.wait(timeout=1.0)
    assert ticker.stop_reason == "sentinel"


def test_closed_input_does_not_end_open_ended_run():
    pipe = PipeInput()
    ticker = Ticker(rate=60.0, interval=0.05, output=io.StringIO(), input=pipe.reader)
    ticker.start()
    pipe.close_writer()
    assert not ticker.wait(timeout=0.3)
    assert not ticker.finished

    assert ticker.stop(reason="caller")
    assert ticker.wait(timeout=1.0)
    assert ticker.stop_reason == "caller"


def test_no_output_after_finish():
    out = io.StringIO()
    ticker = Ticker(rate=3600.0, interval=0.05, duration=0.2, output=out)
    ticker.run()
    written = out.getvalue()
    count = ticker.emissions

    time.sleep(0.2)
    assert out.getvalue() == written
    assert ticker.emissions == count
    assert len(_lines(out)) == count


def test_emissions_are_ordered_and_non_decreasing():
    ticker = Ticker(rate=7200.0, interval=0.02, duration=0.3, output=io.StringIO())
    ticker.run()
    snaps = ticker.snapshots

    assert len(snaps) >= 5
    assert [s.seq for s in snaps] == list(range(1, len(snaps) + 1))
    elapsed = [s.elapsed_s for s in snaps]
    amounts = [s.amount for s in snaps]
    assert elapsed == sorted(elapsed)
    assert amounts == sorted(amounts)


def test_first_strategy_to_fire_wins_and_loser_exits_quietly():
    pipe = PipeInput()
    ticker = Ticker(
        rate=3600.0,
        interval=0.05,
        output=io.StringIO(),
        strategies=[FixedDuration(0.15), SentinelInput(pipe.reader)],
    )
    try:
        ticker.run()
        assert ticker.stop_reason == "duration"

        # The sentinel watcher is still blocked on input; releasing it must
        # not reopen or re-stop the run.
        pipe.send("q")
        time.sleep(0.05)
        assert ticker.stop_reason == "duration"
        assert ticker.state is TickerState.FINISHED
    finally:
        pipe.close()


def test_manual_stop_is_idempotent():
    ticker = Ticker(rate=60.0, interval=0.05, output=io.StringIO(), strategies=[_NeverStrategy()])
    ticker.start()
    assert ticker.stop(reason="caller") is True
    assert ticker.stop(reason="again") is False
    assert ticker.wait(timeout=0.5)
    assert ticker.stop_reason == "caller"


def test_concurrent_stops_have_a_single_winner():
    ticker = Ticker(rate=60.0, interval=0.05, output=io.StringIO(), strategies=[_NeverStrategy()])
    ticker.start()
    results: list[bool] = []
    lock = threading.Lock()

    def _stop(i: int) -> None:
        won = ticker.stop(reason=f"thread-{i}")
        with lock:
            results.append(won)

    threads = [threading.Thread(target=_stop, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert ticker.wait(timeout=0.5)


def test_failing_output_still_finishes(caplog):
    sink = BrokenOutput()
    ticker = Ticker(rate=3600.0, interval=0.05, duration=0.2, output=sink)
    with caplog.at_level(logging.ERROR):
        assert ticker.run() == 0
    assert ticker.finished
    assert sink.attempts >= 1
    assert any(rec.getMessage() == "ticker.emit_error" for rec in caplog.records)


def test_failing_watcher_still_finishes(caplog):
    ticker = Ticker(rate=60.0, interval=0.05, output=io.StringIO(), strategies=[_ExplodingStrategy()])
    with caplog.at_level(logging.ERROR):
        ticker.start()
        assert ticker.wait(timeout=0.5)
    assert ticker.stop_reason == "boom.error"
    assert any(rec.getMessage() == "termination.watch_error" for rec in caplog.records)


def test_from_spec_picks_strategy():
    timed = Ticker.from_spec(TickerSpec(rate=1.0, interval_seconds=1.0, duration_seconds=5.0), output=io.StringIO())
    assert [s.name for s in timed.strategies] == ["duration"]

    open_ended = Ticker.from_spec(
        TickerSpec(rate=1.0, interval_seconds=1.0),
        output=io.StringIO(),
        input=io.StringIO(""),
    )
    assert [s.name for s in open_ended.strategies] == ["sentinel"]


@pytest.mark.asyncio
async def test_wait_async_resolves_when_finished():
    ticker = Ticker(rate=3600.0, interval=0.05, duration=0.1, output=io.StringIO())
    ticker.start()
    assert await ticker.wait_async(timeout=1.0)
    assert ticker.finished
