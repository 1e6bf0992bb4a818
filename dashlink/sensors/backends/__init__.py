from .dht import DhtSensorBackend
from .mock import MockSensorBackend
from .rpi_i2c import RpiI2CSensorBackend

__all__ = [
    "DhtSensorBackend",
    "MockSensorBackend",
    "RpiI2CSensorBackend",
]
