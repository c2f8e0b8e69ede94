class MeterError(Exception):
    pass

class ConfigError(MeterError):
    """Invalid run configuration; raised before any ticker thread starts."""

class TickerStateError(MeterError):
    """Lifecycle misuse, e.g. starting a ticker twice."""


class RateParseError(MeterError):
    """A single malformed rate entry; recovered by re-prompting the user."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"unparsable rate entry: {raw!r}")
        self.raw = raw
