from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Callable, Sequence

from .config import AgentConfigError

_DEVICE_TREE_SERIALS = (
    Path("/sys/firmware/devicetree/base/serial-number"),
    Path("/proc/device-tree/serial-number"),
)
_MACHINE_ID = Path("/etc/machine-id")


def _read_hex(path: Path, *, digits: int | None = None) -> str | None:
    try:
        raw = path.read_bytes().decode("ascii", errors="ignore")
    except OSError:
        return None
    cleaned = raw.strip().strip("\x00").strip().lower()
    if digits is not None:
        cleaned = cleaned[:digits]
    if not cleaned:
        return None
    try:
        value = int(cleaned, 16)
    except ValueError:
        return None
    return str(value) if value else None


def _hardware_mac(getnode: Callable[[], int]) -> str | None:
    node = getnode()
    # uuid.getnode() falls back to a random number with the multicast bit set.
    if (node >> 40) & 0x01:
        return None
    return str(node)


def device_serial(
    *,
    device_tree_paths: Sequence[Path] = _DEVICE_TREE_SERIALS,
    machine_id_path: Path = _MACHINE_ID,
    getnode: Callable[[], int] = uuid.getnode,
) -> str:
    """Return a stable numeric serial string for this device.

    Sources, first match wins: ``DEVICE_SERIAL``, the device-tree serial number,
    /etc/machine-id, then the primary network MAC.
    """

    override = os.getenv("DEVICE_SERIAL", "").strip()
    if override:
        if not (override.isascii() and override.isdigit()):
            raise AgentConfigError("DEVICE_SERIAL must be a decimal number")
        return override

    for path in device_tree_paths:
        serial = _read_hex(path)
        if serial:
            return serial

    serial = _read_hex(machine_id_path, digits=12)
    if serial:
        return serial

    serial = _hardware_mac(getnode)
    if serial:
        return serial
    raise RuntimeError("no hardware-unique identity source found; set DEVICE_SERIAL")
