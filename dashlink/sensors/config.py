from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .backends import DhtSensorBackend, MockSensorBackend, RpiI2CSensorBackend
from .base import SafeSensorBackend, SensorBackend

_VALID_BACKENDS = {"mock", "dht22", "rpi_i2c"}


class SensorConfigError(ValueError):
    """Invalid sensor configuration."""


@dataclass(frozen=True)
class SensorConfig:
    backend: str
    backend_settings: Mapping[str, Any] = field(default_factory=dict)


def load_sensor_config_from_env() -> SensorConfig:
    config_path = os.getenv("SENSOR_CONFIG_PATH")
    override_backend = os.getenv("SENSOR_BACKEND")

    raw: dict[str, Any]
    origin = "env defaults"
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise SensorConfigError(f"SENSOR_CONFIG_PATH does not exist: {path}")
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise SensorConfigError(f"failed to parse sensor config at {path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise SensorConfigError(f"sensor config at {path} must be a YAML object")
        raw = dict(loaded)
        origin = str(path)
    else:
        raw = {"backend": "mock"}

    if override_backend:
        raw["backend"] = override_backend

    return parse_sensor_config(raw, origin=origin)


def parse_sensor_config(raw: Mapping[str, Any], *, origin: str) -> SensorConfig:
    value = raw.get("backend")
    if not isinstance(value, str) or not value.strip():
        raise SensorConfigError(f"{origin}: missing required 'backend' string")
    backend = value.strip()
    if backend not in _VALID_BACKENDS:
        allowed = ", ".join(sorted(_VALID_BACKENDS))
        raise SensorConfigError(f"{origin}: unsupported backend '{backend}' (allowed: {allowed})")
    return SensorConfig(
        backend=backend,
        backend_settings={k: v for k, v in raw.items() if k != "backend"},
    )


def build_sensor_backend(*, device_id: str, config: SensorConfig) -> SafeSensorBackend:
    backend: SensorBackend
    if config.backend == "dht22":
        backend = _build_dht_backend(config=config)
    elif config.backend == "rpi_i2c":
        backend = _build_rpi_i2c_backend(config=config)
    else:
        backend = MockSensorBackend(device_id=device_id)
    return SafeSensorBackend(backend_name=config.backend, backend=backend)


def _build_dht_backend(*, config: SensorConfig) -> DhtSensorBackend:
    dht_config = _mapping_value(config.backend_settings.get("dht22"))
    pin = _as_int(
        config.backend_settings.get("pin", dht_config.get("pin", 4)),
        message="dht22 pin must be an integer",
    )
    if pin < 0:
        raise SensorConfigError("dht22 pin must be >= 0")
    return DhtSensorBackend(pin=pin)


def _build_rpi_i2c_backend(*, config: SensorConfig) -> RpiI2CSensorBackend:
    i2c_config = _mapping_value(config.backend_settings.get("rpi_i2c"))

    bus_number = _as_int(
        config.backend_settings.get("bus", i2c_config.get("bus", 1)),
        message="rpi_i2c bus must be an integer",
    )
    if bus_number < 0:
        raise SensorConfigError("rpi_i2c bus must be >= 0")

    address = _parse_i2c_address(config.backend_settings.get("address", i2c_config.get("address", 0x76)))
    return RpiI2CSensorBackend(bus_number=bus_number, address=address)


def _parse_i2c_address(value: Any) -> int:
    if isinstance(value, bool):
        raise SensorConfigError("rpi_i2c address must be an integer or hex string")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip().lower()
        try:
            parsed = int(raw, 16) if raw.startswith("0x") else int(raw, 10)
        except ValueError as exc:
            raise SensorConfigError("rpi_i2c address must be an integer or hex string") from exc
    else:
        raise SensorConfigError("rpi_i2c address must be an integer or hex string")

    if parsed < 0 or parsed > 0x7F:
        raise SensorConfigError("rpi_i2c address must be between 0x00 and 0x7f")
    return parsed


def _as_int(value: Any, *, message: str) -> int:
    if isinstance(value, bool):
        raise SensorConfigError(message)
    if isinstance(value, int):
        return value
    raise SensorConfigError(message)


def _mapping_value(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    return {}
