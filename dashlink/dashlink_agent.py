from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import requests
from dotenv import load_dotenv

from .config import AgentConfig, AgentConfigError, ReregisterPolicy, load_agent_config_from_env
from .connectivity import ConnectivityManager, LinkState, build_connectivity_manager
from .identity import device_serial
from .registration import PayloadTemplate, RegistrationError, negotiate
from .sensors import (
    SafeSensorBackend,
    SensorConfig,
    SensorConfigError,
    SensorReading,
    build_sensor_backend,
    load_sensor_config_from_env,
    reading_problem,
)
from .telemetry import encode, submit


class Phase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED_UNREGISTERED = "connected_unregistered"
    CONNECTED_REGISTERED = "connected_registered"


@dataclass(frozen=True)
class AgentState:
    """Everything the control loop carries from one tick to the next.

    ``template`` is the registration state: None means unregistered. It is
    kept while disconnected unless the re-registration policy says otherwise,
    so ``phase`` and ``template`` are tracked separately.
    """

    phase: Phase = Phase.DISCONNECTED
    template: Optional[PayloadTemplate] = None
    # Link generation the template was negotiated on.
    template_generation: int = 0
    last_tick_at: float = 0.0

    registration_failures: int = 0
    last_post_status: Optional[int] = None

    @property
    def registered(self) -> bool:
        return self.template is not None


@dataclass
class AgentRuntime:
    config: AgentConfig
    serial: str
    connectivity: ConnectivityManager
    sensor: SafeSensorBackend
    session: requests.Session
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep


def _log_reading(reading: Optional[SensorReading]) -> None:
    if reading is None:
        return
    print(
        f"[dashlink-agent] temperature={reading.temperature_c}°C humidity={reading.humidity_pct}%"
    )


def _on_link_lost(state: AgentState, policy: ReregisterPolicy) -> AgentState:
    if state.phase is not Phase.DISCONNECTED:
        print("[dashlink-agent] network down; skipping network actions")
    if policy is ReregisterPolicy.AFTER_LINK_LOSS and state.template is not None:
        print("[dashlink-agent] dropping payload template (re-register after link loss)")
        return replace(state, phase=Phase.DISCONNECTED, template=None)
    return replace(state, phase=Phase.DISCONNECTED)


def _apply_reregister_policy(state: AgentState, runtime: AgentRuntime) -> AgentState:
    """Drop a template negotiated on an earlier link when the policy asks for it."""

    if runtime.config.reregister_policy is not ReregisterPolicy.AFTER_LINK_LOSS:
        return state
    if state.template is None or state.template_generation == runtime.connectivity.generation:
        return state
    print("[dashlink-agent] link re-established since registration; renegotiating")
    return replace(state, phase=Phase.CONNECTED_UNREGISTERED, template=None)


def _register(state: AgentState, runtime: AgentRuntime) -> AgentState:
    cfg = runtime.config
    print("[dashlink-agent] connecting to server...")
    try:
        template = negotiate(
            runtime.session,
            server_url=cfg.host,
            identity=runtime.serial,
            credential=cfg.api_key,
            send_auth_header=cfg.send_auth_header,
            timeout_s=cfg.http_timeout_s,
        )
    except RegistrationError as exc:
        failures = state.registration_failures + 1
        print(f"[dashlink-agent] registration failed ({exc.reason}); attempt={failures}, retrying next tick")
        return replace(state, phase=Phase.CONNECTED_UNREGISTERED, registration_failures=failures)

    print(f"[dashlink-agent] registered serial={template.serial} sensors={list(template.sensor_ids)}")
    return replace(
        state,
        phase=Phase.CONNECTED_REGISTERED,
        template=template,
        template_generation=runtime.connectivity.generation,
        registration_failures=0,
    )


def _transmit(
    state: AgentState,
    runtime: AgentRuntime,
    template: PayloadTemplate,
    reading: Optional[SensorReading],
) -> AgentState:
    cfg = runtime.config
    problem = reading_problem(reading)
    if problem is not None or reading is None:
        print(f"[dashlink-agent] not sending this tick: {problem}")
        return replace(state, phase=Phase.CONNECTED_REGISTERED)

    body = encode(template, reading)
    try:
        resp = submit(
            runtime.session,
            cfg.host,
            body,
            credential=cfg.api_key if cfg.send_auth_header else None,
            timeout_s=cfg.http_timeout_s,
        )
    except requests.RequestException as exc:
        # At-most-once delivery: the point is dropped, the next tick sends a fresh one.
        print(f"[dashlink-agent] HTTP POST failed: {exc!r} (reading dropped)")
        return replace(state, phase=Phase.CONNECTED_REGISTERED, last_post_status=None)

    if resp.status_code == 200:
        print(f"[dashlink-agent] HTTP POST code={resp.status_code}")
    else:
        print(f"[dashlink-agent] HTTP POST code={resp.status_code} (reading dropped)")
    return replace(state, phase=Phase.CONNECTED_REGISTERED, last_post_status=resp.status_code)


def tick(state: AgentState, runtime: AgentRuntime) -> AgentState:
    """Evaluate one step of the state machine and return the next state."""

    link = runtime.connectivity.ensure_link()

    # Read every tick, even offline, so the sensor cadence stays live.
    reading = runtime.sensor.read()
    _log_reading(reading)

    if link is LinkState.DISCONNECTED:
        return _on_link_lost(state, runtime.config.reregister_policy)

    state = _apply_reregister_policy(state, runtime)
    if state.template is None:
        return _register(state, runtime)
    return _transmit(state, runtime, state.template, reading)


def run_forever(runtime: AgentRuntime, state: AgentState, *, max_ticks: Optional[int] = None) -> AgentState:
    """Drive ticks on a fixed interval. Ticks run back to back, never overlapping."""

    interval_s = runtime.config.tick_interval_s
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        now = runtime.clock()
        wait_s = interval_s - (now - state.last_tick_at)
        if wait_s > 0:
            runtime.sleep(wait_s)
            continue

        state = replace(state, last_tick_at=now)
        try:
            state = tick(state, runtime)
        except Exception as exc:
            print(f"[dashlink-agent] tick failed: {exc!r}")
        ticks += 1
    return state


def setup(
    config: AgentConfig,
    sensor_config: SensorConfig,
    *,
    session: Optional[requests.Session] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> AgentRuntime:
    print("[dashlink-agent] starting...")
    serial = device_serial()
    print(f"[dashlink-agent] serial id: {serial}")

    sensor = build_sensor_backend(device_id=serial, config=sensor_config)
    if config.sensor_warmup_s > 0:
        sleep(config.sensor_warmup_s)

    connectivity = build_connectivity_manager(config, sleep=sleep)
    print(
        "[dashlink-agent] host=%s sensors=%s link=%s interval=%.1fs reregister=%s"
        % (
            config.host,
            sensor_config.backend,
            config.link_driver,
            config.tick_interval_s,
            config.reregister_policy.value,
        )
    )
    connectivity.ensure_link()

    return AgentRuntime(
        config=config,
        serial=serial,
        connectivity=connectivity,
        sensor=sensor,
        session=session or requests.Session(),
        clock=clock,
        sleep=sleep,
    )


def main() -> None:
    # Load working-directory .env (if present), then package-local overrides.
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent / ".env")

    try:
        config = load_agent_config_from_env()
    except AgentConfigError as exc:
        raise SystemExit(f"[dashlink-agent] invalid agent config: {exc}") from exc

    try:
        sensor_config = load_sensor_config_from_env()
    except SensorConfigError as exc:
        raise SystemExit(f"[dashlink-agent] invalid sensor config: {exc}") from exc

    try:
        runtime = setup(config, sensor_config)
    except (RuntimeError, AgentConfigError) as exc:
        raise SystemExit(f"[dashlink-agent] setup failed: {exc}") from exc

    run_forever(runtime, AgentState(last_tick_at=runtime.clock()))


if __name__ == "__main__":
    main()
