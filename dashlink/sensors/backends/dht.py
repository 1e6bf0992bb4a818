from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from ..base import SensorReading


class DHTDevice(Protocol):
    temperature: float | None
    humidity: float | None


def open_dht22(pin: int) -> DHTDevice:
    try:
        import adafruit_dht  # type: ignore[import-not-found]
        import board  # type: ignore[import-not-found]
    except ImportError as exc:
        raise RuntimeError(
            "SENSOR_BACKEND=dht22 requires adafruit-circuitpython-dht "
            "(install on Pi: pip install 'dashlink-agent[rpi]')"
        ) from exc
    board_pin: Any = getattr(board, f"D{pin}", None)
    if board_pin is None:
        raise RuntimeError(f"board has no GPIO pin D{pin}")
    return adafruit_dht.DHT22(board_pin, use_pulseio=False)


@dataclass
class DhtSensorBackend:
    """DHT22 single-wire temperature/humidity sensor on a GPIO pin."""

    pin: int = 4
    device_factory: Callable[[int], DHTDevice] = open_dht22
    _device: DHTDevice | None = field(default=None, init=False, repr=False)

    def read(self) -> SensorReading:
        if self._device is None:
            self._device = self.device_factory(self.pin)

        # The driver raises RuntimeError on checksum/timing misses; let the
        # safe wrapper report it and try again next tick.
        temperature = self._device.temperature
        humidity = self._device.humidity
        if temperature is None or humidity is None:
            raise RuntimeError(f"DHT22 on D{self.pin} returned no data")
        return SensorReading(temperature_c=float(temperature), humidity_pct=float(humidity))
