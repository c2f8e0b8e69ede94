from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from meeting_meter.exceptions.core import ConfigError
from meeting_meter.runtime.modes import MeterMode, TickerSpec


class MeterConfig(BaseModel):
    """Validated inputs for one meter run. Durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    hourly_rate: float = Field(0.0, ge=0, description="Collective charge-out rate per hour.")
    duration: float = Field(0.0, ge=0, description="Expected meeting duration.")
    ticks: float = Field(0.0, ge=0, description="Interval between running-cost updates; 0 disables the ticker.")
    sentinel: str = Field("q", min_length=1, description="Input line that ends interactive steps.")
    log_config: Optional[str] = Field(None, description="Path to a logging profile JSON file.")
    log_profile: Optional[str] = Field(None, description="Profile name inside the logging config.")

    @classmethod
    def build(cls, **values: Any) -> "MeterConfig":
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(_summarize(exc)) from exc

    @property
    def mode(self) -> MeterMode:
        return MeterMode.TICKER if self.ticks > 0 else MeterMode.PROJECTION

    def with_rate(self, hourly_rate: float) -> "MeterConfig":
        return self.build(**{**self.model_dump(), "hourly_rate": hourly_rate})

    def to_spec(self) -> TickerSpec:
        return TickerSpec(
            rate=self.hourly_rate,
            interval_seconds=self.ticks,
            duration_seconds=self.duration or None,
            sentinel=self.sentinel,
        )


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)
