from __future__ import annotations

import argparse
import logging
import math
import sys
import uuid
from typing import List, Optional, Sequence, TextIO

from meeting_meter.cost import cost, format_cost
from meeting_meter.exceptions.core import ConfigError, RateParseError
from meeting_meter.runtime.modes import MeterMode
from meeting_meter.runtime.ticker import Ticker
from meeting_meter.utils.config import MeterConfig
from meeting_meter.utils.logger import get_logger, init_logging, log_error, log_user_input
from meeting_meter.utils.timer import parse_duration, timed_block

logger = get_logger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """argparse that reports problems as ConfigError instead of exiting."""

    def error(self, message: str):  # type: ignore[override]
        raise ConfigError(f"{message}\n{self.format_usage().rstrip()}")


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="meeting-meter",
        description="Show what a meeting costs while it happens.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "-rate", "--rate",
        type=float,
        default=0.0,
        help="Optional: the combined charge-out rate per hour.\n"
             "Prompted for interactively when omitted.\n"
             "Examples:\n    -rate=100 OR -rate=9.95",
    )
    parser.add_argument(
        "-duration", "--duration",
        type=_duration,
        default=0.0,
        help="The expected meeting duration. Required unless -ticks is given.\n"
             "Examples:\n    -duration=1h OR -duration=150m",
    )
    parser.add_argument(
        "-ticks", "--ticks",
        type=_duration,
        default=0.0,
        help="Optional: show the running cost at this interval.\n"
             "Without -duration the meeting ends when the sentinel is entered.\n"
             "Examples:\n    -ticks=2s OR -ticks=5m",
    )
    parser.add_argument(
        "--sentinel",
        default="q",
        help="Input line that ends rate entry and open-ended meetings (default: q).",
    )
    parser.add_argument(
        "--log-config",
        default=None,
        help="Path to a logging profile JSON file, e.g. configs/logging.json.",
    )
    parser.add_argument(
        "--log-profile",
        default=None,
        help="Profile to use from the logging config (default: its active_profile).",
    )
    return parser


def parse_flags(args: Sequence[str]) -> MeterConfig:
    """Parse command-line arguments into a validated MeterConfig."""
    ns = build_parser().parse_args(list(args))
    if ns.log_profile and not ns.log_config:
        raise ConfigError("--log-profile needs --log-config")
    return MeterConfig.build(
        hourly_rate=ns.rate,
        duration=ns.duration,
        ticks=ns.ticks,
        sentinel=ns.sentinel,
        log_config=ns.log_config,
        log_profile=ns.log_profile,
    )


def parse_rate_entry(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise RateParseError(raw) from None
    if not math.isfinite(value) or value < 0:
        raise RateParseError(raw)
    return value


def collect_rate(input: TextIO, output: TextIO, sentinel: str = "q") -> float:
    """
    Sum participants' hourly rates entered one per line.

    Stops at the sentinel line or end of input. Malformed entries are
    reported and skipped.
    """
    total = 0.0
    entries = 0
    output.write("Please enter the hourly rates of all participants, one at a time. ie. 150 OR 1000.50\n")
    while True:
        output.write("Please enter the hourly rate of the next participant\n")
        output.write(f"If all meeting participants accounted for, type {sentinel.upper()} and enter to move on.\n")
        output.flush()
        line = input.readline()
        if line == "":
            break
        entry = line.strip()
        if entry.casefold() == sentinel.casefold():
            break
        try:
            total += parse_rate_entry(entry)
            entries += 1
        except RateParseError as exc:
            log_user_input(logger, "cli.rate_rejected", level=logging.WARNING, raw=exc.raw)
            output.write(f"Sorry, didn't understand {entry}. Please try again.\n")
    log_user_input(logger, "cli.rate_collected", rate=total, entries=entries)
    return total


def run_cli(config: MeterConfig, *, input: TextIO | None = None, output: TextIO | None = None) -> float:
    """
    Run one meter session and return the hourly rate used.

    TICKER mode prints a running cost every `ticks` until the meeting ends.
    PROJECTION mode prints the cost of the whole `duration` once.
    """
    input = input if input is not None else sys.stdin
    output = output if output is not None else sys.stdout

    if config.mode is MeterMode.PROJECTION and not config.duration:
        raise ConfigError("a meeting duration is required unless -ticks is given")

    if config.hourly_rate == 0:
        config = config.with_rate(collect_rate(input, output, config.sentinel))

    if config.mode is MeterMode.TICKER:
        spec = config.to_spec()
        ticker = Ticker.from_spec(spec, output=output, input=input)
        if spec.open_ended:
            output.write(f"Meeting started. Type {spec.sentinel.upper()} and enter to end it.\n")
            output.flush()
        with timed_block("ticker.run"):
            ticker.run()
    else:
        output.write(format_cost(cost(config.hourly_rate, config.duration)) + "\n")
        output.flush()
    return config.hourly_rate


def main(
    argv: Optional[List[str]] = None,
    *,
    input: TextIO | None = None,
    output: TextIO | None = None,
    error: TextIO | None = None,
) -> int:
    error = error if error is not None else sys.stderr
    try:
        config = parse_flags(sys.argv[1:] if argv is None else argv)
    except ConfigError as exc:
        print(exc, file=error)
        return 1

    try:
        init_logging(config.log_config, run_id=uuid.uuid4().hex[:12], mode=config.log_profile)
    except (OSError, ValueError, KeyError, TypeError) as exc:
        print(f"cannot load logging config: {exc}", file=error)
        return 1

    try:
        run_cli(config, input=input, output=output)
    except ConfigError as exc:
        log_error(logger, "cli.config_error", err=str(exc))
        print(exc, file=error)
        return 1
    except KeyboardInterrupt:
        print(file=error)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
