from __future__ import annotations

import socket
from pathlib import Path

import pytest

from dashlink.config import AgentConfig, ReregisterPolicy
from dashlink.connectivity import (
    ConnectivityManager,
    LinkState,
    NmcliLinkDriver,
    NullIndicator,
    ReachabilityLinkDriver,
    SysfsLedIndicator,
    build_connectivity_manager,
)


class _ScriptedDriver:
    """Reports disconnected for ``down_polls`` status checks, then connected."""

    def __init__(self, down_polls: int) -> None:
        self.down_polls = down_polls
        self.status_checks = 0
        self.begins: list[tuple[str, str]] = []

    def is_connected(self) -> bool:
        self.status_checks += 1
        return self.status_checks > self.down_polls

    def begin(self, ssid: str, password: str) -> None:
        self.begins.append((ssid, password))


class _RecordingIndicator:
    def __init__(self) -> None:
        self.states: list[bool] = []

    def set(self, on: bool) -> None:
        self.states.append(on)


def _manager(driver: object, **kwargs: object) -> tuple[ConnectivityManager, list[float], _RecordingIndicator]:
    sleeps: list[float] = []
    indicator = _RecordingIndicator()
    manager = ConnectivityManager(
        driver,  # type: ignore[arg-type]
        ssid="office",
        password="hunter2",
        indicator=indicator,
        sleep=sleeps.append,
        **kwargs,  # type: ignore[arg-type]
    )
    return manager, sleeps, indicator


def test_ensure_link_returns_immediately_when_already_connected() -> None:
    driver = _ScriptedDriver(down_polls=0)
    manager, sleeps, indicator = _manager(driver)

    assert manager.ensure_link() is LinkState.CONNECTED
    assert driver.begins == []
    assert sleeps == []
    assert indicator.states == [True]


def test_ensure_link_associates_and_polls_until_connected() -> None:
    # First check is the "already up?" test; then 3 failed polls before success.
    driver = _ScriptedDriver(down_polls=4)
    manager, sleeps, indicator = _manager(driver)

    assert manager.ensure_link() is LinkState.CONNECTED
    assert driver.begins == [("office", "hunter2")]
    assert sleeps == [0.5, 0.5, 0.5]
    assert indicator.states == [True, False, True, True]


def test_ensure_link_gives_up_after_bounded_attempts() -> None:
    driver = _ScriptedDriver(down_polls=10_000)
    manager, sleeps, indicator = _manager(driver)

    assert manager.ensure_link() is LinkState.DISCONNECTED
    assert len(sleeps) == 20
    assert set(sleeps) == {0.5}
    assert indicator.states[-1] is False


def test_ensure_link_respects_configured_attempt_cap() -> None:
    driver = _ScriptedDriver(down_polls=10_000)
    manager, sleeps, _ = _manager(driver, max_attempts=3, attempt_delay_s=0.1)

    assert manager.ensure_link() is LinkState.DISCONNECTED
    assert sleeps == [0.1, 0.1, 0.1]


def test_driver_exceptions_count_as_link_down() -> None:
    class _Broken:
        def is_connected(self) -> bool:
            raise OSError("radio missing")

        def begin(self, ssid: str, password: str) -> None:
            raise OSError("radio missing")

    manager, sleeps, _ = _manager(_Broken(), max_attempts=2)

    assert manager.ensure_link() is LinkState.DISCONNECTED
    assert len(sleeps) == 2


def test_generation_increments_on_each_reconnect() -> None:
    class _Toggle:
        def __init__(self) -> None:
            self.up = True

        def is_connected(self) -> bool:
            return self.up

        def begin(self, ssid: str, password: str) -> None:
            return None

    driver = _Toggle()
    manager, _, _ = _manager(driver, max_attempts=1)

    assert manager.generation == 0
    manager.ensure_link()
    manager.ensure_link()
    assert manager.generation == 1

    driver.up = False
    assert manager.ensure_link() is LinkState.DISCONNECTED
    assert manager.generation == 1

    driver.up = True
    manager.ensure_link()
    assert manager.generation == 2


def test_is_link_up_does_not_associate() -> None:
    driver = _ScriptedDriver(down_polls=10)
    manager, sleeps, _ = _manager(driver)

    assert manager.is_link_up() is False
    assert driver.begins == []
    assert sleeps == []


def test_reachability_driver_connects_to_collector_port() -> None:
    seen: list[tuple[str, int, float]] = []

    def _check(host: str, port: int, timeout_s: float) -> bool:
        seen.append((host, port, timeout_s))
        return True

    driver = ReachabilityLinkDriver(host="collector.example", port=8443, timeout_s=1.5, connect_check=_check)
    assert driver.is_connected() is True
    assert seen == [("collector.example", 8443, 1.5)]


def _closed_local_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_reachability_driver_reports_down_for_unreachable_literal_address() -> None:
    driver = ReachabilityLinkDriver(host="127.0.0.1", port=_closed_local_port(), timeout_s=0.5)
    assert driver.is_connected() is False


def test_ensure_link_gives_up_when_collector_unreachable() -> None:
    driver = ReachabilityLinkDriver(host="127.0.0.1", port=_closed_local_port(), timeout_s=0.5)
    manager, sleeps, _ = _manager(driver, max_attempts=2)

    assert manager.ensure_link() is LinkState.DISCONNECTED
    assert sleeps == [0.5, 0.5]
    assert manager.generation == 0


def test_nmcli_driver_activates_saved_profile_without_password_on_argv() -> None:
    commands: list[list[str]] = []

    def _runner(command: list[str], timeout_s: float) -> str | None:
        commands.append(command)
        if command[:3] == ["nmcli", "-t", "-f"]:
            return "connected"
        return ""

    driver = NmcliLinkDriver(command_runner=_runner)
    assert driver.is_connected() is True
    driver.begin("office", "hunter2")

    assert commands[-1] == ["nmcli", "--wait", "0", "connection", "up", "id", "office"]
    assert all("hunter2" not in command for command in commands)


def test_nmcli_driver_creates_profile_when_none_saved() -> None:
    commands: list[list[str]] = []

    def _runner(command: list[str], timeout_s: float) -> str | None:
        commands.append(command)
        if command[3:5] == ["connection", "up"]:
            return None
        return ""

    NmcliLinkDriver(command_runner=_runner).begin("office", "hunter2")

    assert commands == [
        ["nmcli", "--wait", "0", "connection", "up", "id", "office"],
        ["nmcli", "--wait", "0", "device", "wifi", "connect", "office", "password", "hunter2"],
    ]


@pytest.mark.parametrize("output", [None, "", "disconnected", "connecting", "connected (site only)"])
def test_nmcli_driver_treats_other_states_as_down(output: str | None) -> None:
    driver = NmcliLinkDriver(command_runner=lambda _cmd, _t: output)
    assert driver.is_connected() is False


def test_sysfs_led_indicator_writes_brightness(tmp_path: Path) -> None:
    (tmp_path / "led0").mkdir()
    led = SysfsLedIndicator("led0", root=tmp_path)

    led.set(True)
    assert (tmp_path / "led0" / "brightness").read_text(encoding="utf-8") == "1"
    led.set(False)
    assert (tmp_path / "led0" / "brightness").read_text(encoding="utf-8") == "0"


def test_sysfs_led_indicator_warns_once_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr("builtins.print", lambda message: calls.append(str(message)))
    led = SysfsLedIndicator("nope", root=tmp_path)

    led.set(True)
    led.set(False)

    assert len(calls) == 1
    assert "status LED 'nope'" in calls[0]


def _config(**overrides: object) -> AgentConfig:
    values: dict[str, object] = dict(
        host="https://collector.example/v1",
        api_key="key",
        send_auth_header=False,
        http_timeout_s=5.0,
        tick_interval_s=10.0,
        reregister_policy=ReregisterPolicy.NEVER,
        wifi_ssid="",
        wifi_password="",
        link_driver="reachability",
        link_max_attempts=20,
        link_attempt_delay_s=0.5,
        status_led=None,
        sensor_warmup_s=0.0,
    )
    values.update(overrides)
    return AgentConfig(**values)  # type: ignore[arg-type]


def test_build_connectivity_manager_targets_collector_host_and_port() -> None:
    manager = build_connectivity_manager(_config())

    assert isinstance(manager._driver, ReachabilityLinkDriver)
    assert (manager._driver.host, manager._driver.port) == ("collector.example", 443)
    assert isinstance(manager._indicator, NullIndicator)


@pytest.mark.parametrize(
    ("host", "expected"),
    [
        ("http://localhost:8080/v1", ("localhost", 8080)),
        ("http://10.0.0.5/v1", ("10.0.0.5", 80)),
        ("https://collector.example:9443", ("collector.example", 9443)),
    ],
)
def test_build_connectivity_manager_derives_port_from_host_url(host: str, expected: tuple[str, int]) -> None:
    driver = build_connectivity_manager(_config(host=host))._driver

    assert isinstance(driver, ReachabilityLinkDriver)
    assert (driver.host, driver.port) == expected


def test_build_connectivity_manager_nmcli_with_led() -> None:
    manager = build_connectivity_manager(_config(link_driver="nmcli", wifi_ssid="office", status_led="led0"))

    assert isinstance(manager._driver, NmcliLinkDriver)
    assert isinstance(manager._indicator, SysfsLedIndicator)
