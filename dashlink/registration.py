from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import requests


@dataclass(frozen=True)
class TemplateEntry:
    sensor_id: str
    value: Optional[int] = None


@dataclass(frozen=True)
class PayloadTemplate:
    """Skeleton of every telemetry body for one registered session.

    ``entries`` keeps the order the collector declared its sensors in. Values
    are assigned by slot index, never by sensor id.
    """

    serial: str
    credential: str
    entries: Tuple[TemplateEntry, ...]

    @property
    def sensor_ids(self) -> Tuple[str, ...]:
        return tuple(e.sensor_id for e in self.entries)


class RegistrationError(RuntimeError):
    """The handshake did not produce a template; retry on a later tick."""

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


def parse_sensor_ids(payload: Any) -> Tuple[str, ...]:
    """Extract ``stations[0].sensors[*].sensorId`` in server order."""

    if not isinstance(payload, Mapping):
        raise ValueError("registration response was not a JSON object")
    stations = payload.get("stations")
    if not isinstance(stations, list) or not stations:
        raise ValueError("'stations' must be a non-empty list")
    station = stations[0]
    if not isinstance(station, Mapping):
        raise ValueError("'stations[0]' must be an object")
    sensors = station.get("sensors")
    if not isinstance(sensors, list) or not sensors:
        raise ValueError("'stations[0].sensors' must be a non-empty list")

    ids: list[str] = []
    for idx, sensor in enumerate(sensors):
        sensor_id = sensor.get("sensorId") if isinstance(sensor, Mapping) else None
        if not isinstance(sensor_id, str) or not sensor_id:
            raise ValueError(f"'stations[0].sensors[{idx}].sensorId' must be a non-empty string")
        ids.append(sensor_id)
    return tuple(ids)


def build_template(payload: Any, *, serial: str, credential: str) -> PayloadTemplate:
    return PayloadTemplate(
        serial=serial,
        credential=credential,
        entries=tuple(TemplateEntry(sensor_id=s) for s in parse_sensor_ids(payload)),
    )


def registration_url(server_url: str, credential: str) -> str:
    return f"{server_url.rstrip('/')}/network/access/{credential}"


def negotiate(
    session: requests.Session,
    *,
    server_url: str,
    identity: str,
    credential: str,
    send_auth_header: bool = False,
    timeout_s: float = 10.0,
) -> PayloadTemplate:
    """Run the registration handshake.

    Only HTTP 200 with a well-formed body succeeds. Everything else raises
    RegistrationError.
    """

    headers = {"Content-Type": "application/json"}
    if send_auth_header:
        headers["Authorization"] = credential

    try:
        resp = session.get(registration_url(server_url, credential), headers=headers, timeout=timeout_s)
    except requests.RequestException as exc:
        raise RegistrationError(f"HTTP GET failed: {exc}") from exc

    print(f"[dashlink-agent] HTTP GET code={resp.status_code}")
    if resp.status_code != 200:
        raise RegistrationError(
            f"registration refused: {resp.status_code} {resp.text[:200]}",
            status_code=resp.status_code,
        )

    try:
        return build_template(resp.json(), serial=identity, credential=credential)
    except ValueError as exc:
        raise RegistrationError(f"malformed registration response: {exc}", status_code=200) from exc
