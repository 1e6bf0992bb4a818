from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Mapping

import requests

from .registration import PayloadTemplate
from .sensors.base import SensorReading

# Template slot index -> SensorReading field. The collector declares sensors in
# the order this device class reports them: temperature first, then humidity.
SLOT_MAPPING: Mapping[int, str] = {
    0: "temperature_c",
    1: "humidity_pct",
}


def slot_values(template: PayloadTemplate, reading: SensorReading) -> List[int | None]:
    values: List[int | None] = [entry.value for entry in template.entries]
    for slot, field_name in SLOT_MAPPING.items():
        if slot < len(values):
            values[slot] = math.trunc(getattr(reading, field_name))
    return values


def build_body(template: PayloadTemplate, reading: SensorReading) -> Dict[str, Any]:
    payloads: List[Dict[str, Any]] = []
    for entry, value in zip(template.entries, slot_values(template, reading)):
        item: Dict[str, Any] = {"sensorId": entry.sensor_id}
        if value is not None:
            item["value"] = value
        payloads.append(item)
    return {
        "serial": template.serial,
        "apiKey": template.credential,
        "payloads": payloads,
    }


def encode(template: PayloadTemplate, reading: SensorReading) -> bytes:
    """Return the wire-ready JSON body for one reading. ``template`` is not modified."""

    blob = json.dumps(build_body(template, reading), separators=(",", ":"), ensure_ascii=False)
    return blob.encode("utf-8")


def submit(
    session: requests.Session,
    host: str,
    body: bytes,
    *,
    credential: str | None = None,
    timeout_s: float = 10.0,
) -> requests.Response:
    headers = {"Content-Type": "application/json"}
    if credential:
        headers["Authorization"] = credential
    return session.post(host, data=body, headers=headers, timeout=timeout_s)
