from __future__ import annotations

import hashlib
import math
import random
import time
from dataclasses import dataclass, field
from typing import Callable

from ..base import SensorReading


def _rng_for(device_id: str) -> random.Random:
    seed_bytes = hashlib.sha256(device_id.encode("utf-8")).digest()[:8]
    return random.Random(int.from_bytes(seed_bytes, "big", signed=False))


@dataclass
class MockSensorBackend:
    """Simulated ambient conditions for bench runs without hardware."""

    device_id: str
    clock: Callable[[], float] = time.time
    _rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._rng = _rng_for(self.device_id)

    def read(self) -> SensorReading:
        t = self.clock()
        temperature_c = 21.0 + 4.0 * math.sin(t / 300.0) + self._rng.uniform(-0.4, 0.4)
        humidity_pct = 50.0 + 15.0 * math.sin(t / 420.0) + self._rng.uniform(-1.5, 1.5)
        humidity_pct = max(0.0, min(100.0, humidity_pct))
        return SensorReading(
            temperature_c=round(temperature_c, 1),
            humidity_pct=round(humidity_pct, 1),
        )
