from .base import SafeSensorBackend, SensorBackend, SensorReading, reading_problem
from .config import SensorConfig, SensorConfigError, build_sensor_backend, load_sensor_config_from_env

__all__ = [
    "SafeSensorBackend",
    "SensorBackend",
    "SensorConfig",
    "SensorConfigError",
    "SensorReading",
    "build_sensor_backend",
    "load_sensor_config_from_env",
    "reading_problem",
]
