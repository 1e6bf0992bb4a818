from __future__ import annotations

import socket
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol
from urllib.parse import urlparse

from .config import AgentConfig

CommandRunner = Callable[[list[str], float], str | None]
ConnectCheck = Callable[[str, int, float], bool]
SleepFn = Callable[[float], None]


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class LinkDriver(Protocol):
    def is_connected(self) -> bool: ...

    def begin(self, ssid: str, password: str) -> None: ...


class Indicator(Protocol):
    def set(self, on: bool) -> None: ...


class NullIndicator:
    def set(self, on: bool) -> None:
        return None


@dataclass
class SysfsLedIndicator:
    """Drives an on-board LED through /sys/class/leds/<name>/brightness."""

    name: str
    root: Path = Path("/sys/class/leds")
    _warned: bool = field(default=False, init=False, repr=False)

    def set(self, on: bool) -> None:
        path = self.root / self.name / "brightness"
        try:
            path.write_text("1" if on else "0", encoding="utf-8")
        except OSError as exc:
            if not self._warned:
                print(f"[dashlink-agent] status LED '{self.name}' unavailable: {exc}")
                self._warned = True


@dataclass
class ReachabilityLinkDriver:
    """Link managed by the OS; "up" means the collector accepts a TCP connection."""

    host: str
    port: int
    timeout_s: float = 2.0
    connect_check: ConnectCheck | None = None

    def is_connected(self) -> bool:
        check = self.connect_check or _default_connect_check
        try:
            return bool(check(self.host, self.port, self.timeout_s))
        except Exception:
            return False

    def begin(self, ssid: str, password: str) -> None:
        return None


@dataclass
class NmcliLinkDriver:
    """Wi-Fi association through NetworkManager.

    ``begin`` activates the saved connection profile named after the SSID, so
    the passphrase stays in NetworkManager's store. Only when no profile exists
    yet does it fall back to ``nmcli device wifi connect ... password``, which
    creates the profile but puts the passphrase on the nmcli argv (visible in
    ``ps``) for that one command. Provision the profile ahead of time
    (``nmcli connection add``) to avoid that.
    """

    command_timeout_s: float = 15.0
    command_runner: CommandRunner | None = None

    def _run(self, command: list[str]) -> str | None:
        runner = self.command_runner or _run_command
        return runner(command, self.command_timeout_s)

    def is_connected(self) -> bool:
        out = self._run(["nmcli", "-t", "-f", "STATE", "general"])
        if not out:
            return False
        return out.splitlines()[0].strip().lower() == "connected"

    def begin(self, ssid: str, password: str) -> None:
        # --wait 0 returns immediately; the manager polls status afterwards.
        if self._run(["nmcli", "--wait", "0", "connection", "up", "id", ssid]) is not None:
            return
        command = ["nmcli", "--wait", "0", "device", "wifi", "connect", ssid]
        if password:
            command += ["password", password]
        self._run(command)


class ConnectivityManager:
    """Owns "network available" for the agent loop.

    ``ensure_link`` starts association when the link is down and polls a
    bounded number of times at a fixed interval. Giving up is an ordinary
    outcome: the caller simply tries again on its next tick.
    """

    def __init__(
        self,
        driver: LinkDriver,
        *,
        ssid: str = "",
        password: str = "",
        indicator: Indicator | None = None,
        max_attempts: int = 20,
        attempt_delay_s: float = 0.5,
        sleep: SleepFn | None = None,
    ) -> None:
        self._driver = driver
        self._ssid = ssid
        self._password = password
        self._indicator = indicator or NullIndicator()
        self._max_attempts = max_attempts
        self._attempt_delay_s = attempt_delay_s
        self._sleep = sleep or time.sleep

        self._last_state: LinkState | None = None
        self.generation = 0

    def is_link_up(self) -> bool:
        try:
            return bool(self._driver.is_connected())
        except Exception as exc:
            print(f"[dashlink-agent] link status check failed: {exc!r}")
            return False

    def ensure_link(self) -> LinkState:
        if self.is_link_up():
            return self._settle(LinkState.CONNECTED)

        print("[dashlink-agent] connecting to network...")
        try:
            self._driver.begin(self._ssid, self._password)
        except Exception as exc:
            print(f"[dashlink-agent] network association failed to start: {exc!r}")

        blink = False
        attempt = 0
        while not self.is_link_up():
            attempt += 1
            if attempt > self._max_attempts:
                print(f"[dashlink-agent] network unavailable after {self._max_attempts} attempts")
                return self._settle(LinkState.DISCONNECTED)
            blink = not blink
            self._indicator.set(blink)
            self._sleep(self._attempt_delay_s)

        print("[dashlink-agent] network connected")
        return self._settle(LinkState.CONNECTED)

    def _settle(self, state: LinkState) -> LinkState:
        if state is LinkState.CONNECTED and self._last_state is not LinkState.CONNECTED:
            self.generation += 1
        self._last_state = state
        self._indicator.set(state is LinkState.CONNECTED)
        return state


def build_connectivity_manager(config: AgentConfig, *, sleep: SleepFn | None = None) -> ConnectivityManager:
    driver: LinkDriver
    if config.link_driver == "nmcli":
        driver = NmcliLinkDriver()
    else:
        parsed = urlparse(config.host)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        driver = ReachabilityLinkDriver(host=parsed.hostname or config.host, port=port)

    indicator: Indicator = SysfsLedIndicator(config.status_led) if config.status_led else NullIndicator()
    return ConnectivityManager(
        driver,
        ssid=config.wifi_ssid,
        password=config.wifi_password,
        indicator=indicator,
        max_attempts=config.link_max_attempts,
        attempt_delay_s=config.link_attempt_delay_s,
        sleep=sleep,
    )


def _run_command(command: list[str], timeout_s: float) -> str | None:
    try:
        proc = subprocess.run(
            command,
            check=False,
            capture_output=True,
            text=True,
            timeout=max(0.1, float(timeout_s)),
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None

    if proc.returncode != 0:
        return None
    return proc.stdout.strip()


def _default_connect_check(host: str, port: int, timeout_s: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            return True
    except OSError:
        return False
