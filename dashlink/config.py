from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}
_LINK_DRIVERS = {"reachability", "nmcli"}


class AgentConfigError(ValueError):
    """Raised when agent env configuration is invalid."""


class ReregisterPolicy(str, Enum):
    # Keep the template for the life of the process once registered.
    NEVER = "never"
    # Drop the template whenever the link is observed lost and renegotiate.
    AFTER_LINK_LOSS = "after_link_loss"


@dataclass(frozen=True)
class AgentConfig:
    host: str
    api_key: str
    send_auth_header: bool
    http_timeout_s: float
    tick_interval_s: float
    reregister_policy: ReregisterPolicy

    wifi_ssid: str
    wifi_password: str
    link_driver: str
    link_max_attempts: int
    link_attempt_delay_s: float
    status_led: str | None

    sensor_warmup_s: float


def load_agent_config_from_env() -> AgentConfig:
    host = os.getenv("DASHLINK_HOST", "http://localhost:8080/v1").strip().rstrip("/")
    if not host:
        raise AgentConfigError("DASHLINK_HOST must be non-empty")

    api_key = os.getenv("DASHLINK_API_KEY", "dev-api-key-001").strip()
    if not api_key:
        raise AgentConfigError("DASHLINK_API_KEY must be non-empty")

    policy_raw = os.getenv("REREGISTER_POLICY", ReregisterPolicy.NEVER.value).strip().lower()
    try:
        reregister_policy = ReregisterPolicy(policy_raw)
    except ValueError as exc:
        allowed = ", ".join(p.value for p in ReregisterPolicy)
        raise AgentConfigError(f"REREGISTER_POLICY must be one of: {allowed}") from exc

    link_driver = os.getenv("LINK_DRIVER", "reachability").strip().lower()
    if link_driver not in _LINK_DRIVERS:
        raise AgentConfigError(f"LINK_DRIVER must be one of: {sorted(_LINK_DRIVERS)}")

    wifi_ssid = os.getenv("WIFI_SSID", "").strip()
    if link_driver == "nmcli" and not wifi_ssid:
        raise AgentConfigError("LINK_DRIVER=nmcli requires WIFI_SSID")

    return AgentConfig(
        host=host,
        api_key=api_key,
        send_auth_header=_parse_bool_env("DASHLINK_SEND_AUTH_HEADER", default=False),
        http_timeout_s=_parse_positive_float_env("DASHLINK_HTTP_TIMEOUT_S", default=10.0),
        tick_interval_s=_parse_positive_int_env("TICK_INTERVAL_MS", default=10_000) / 1000.0,
        reregister_policy=reregister_policy,
        wifi_ssid=wifi_ssid,
        wifi_password=os.getenv("WIFI_PASSWORD", ""),
        link_driver=link_driver,
        link_max_attempts=_parse_positive_int_env("LINK_MAX_ATTEMPTS", default=20),
        link_attempt_delay_s=_parse_positive_int_env("LINK_ATTEMPT_DELAY_MS", default=500) / 1000.0,
        status_led=os.getenv("STATUS_LED", "").strip() or None,
        sensor_warmup_s=_parse_nonnegative_float_env("SENSOR_WARMUP_S", default=2.0),
    )


def _parse_bool_env(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    norm = raw.strip().lower()
    if norm in _TRUE_VALUES:
        return True
    if norm in _FALSE_VALUES:
        return False
    raise AgentConfigError(f"{name} must be one of: {sorted(_TRUE_VALUES | _FALSE_VALUES)}")


def _parse_positive_int_env(name: str, *, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return int(default)
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise AgentConfigError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise AgentConfigError(f"{name} must be > 0")
    return parsed


def _parse_positive_float_env(name: str, *, default: float) -> float:
    parsed = _parse_nonnegative_float_env(name, default=default)
    if parsed <= 0:
        raise AgentConfigError(f"{name} must be > 0")
    return parsed


def _parse_nonnegative_float_env(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise AgentConfigError(f"{name} must be a number") from exc
    if parsed < 0:
        raise AgentConfigError(f"{name} must be >= 0")
    return parsed
