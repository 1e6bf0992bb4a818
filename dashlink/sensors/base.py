from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol

# DHT22 / BME280 operating ranges.
TEMPERATURE_RANGE_C = (-40.0, 80.0)
HUMIDITY_RANGE_PCT = (0.0, 100.0)


@dataclass(frozen=True)
class SensorReading:
    temperature_c: float
    humidity_pct: float


class SensorBackend(Protocol):
    """Small internal sensor interface used by the agent loop."""

    def read(self) -> SensorReading: ...


def reading_problem(reading: SensorReading | None) -> str | None:
    """Return why a reading must not be transmitted, or None when it is usable."""

    if reading is None:
        return "sensor read failed"
    for name, value, (low, high) in (
        ("temperature_c", reading.temperature_c, TEMPERATURE_RANGE_C),
        ("humidity_pct", reading.humidity_pct, HUMIDITY_RANGE_PCT),
    ):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"{name} is not numeric ({value!r})"
        if not math.isfinite(value):
            return f"{name} is not finite ({value!r})"
        if value < low or value > high:
            return f"{name}={value} outside {low}..{high}"
    return None


@dataclass
class SafeSensorBackend:
    """Wraps a backend to guarantee no read exceptions escape the loop."""

    backend_name: str
    backend: SensorBackend
    _last_error: str | None = field(default=None, init=False, repr=False)

    def read(self) -> SensorReading | None:
        try:
            reading = self.backend.read()
        except Exception as exc:
            signature = f"{type(exc).__name__}:{exc}"
            if signature != self._last_error:
                print(
                    f"[dashlink-agent] sensor backend '{self.backend_name}' read failed: "
                    f"{type(exc).__name__}: {exc}"
                )
                self._last_error = signature
            return None
        self._last_error = None
        return reading
