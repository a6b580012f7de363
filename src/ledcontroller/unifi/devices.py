"""Access point records and the mapping from raw controller device records."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .utils import normalize_mac

ACCESS_POINT_TYPE = "uap"
ACCESS_POINT_MODEL_PREFIX = "U"
STATE_CONNECTED = 1
EPOCH = datetime.fromtimestamp(0, tz=UTC)


@dataclass(frozen=True)
class AccessPoint:
    """Represents a managed access point as last reported by the controller."""

    device_id: str
    name: str
    ip_address: str
    mac_address: str
    led_enabled: bool
    last_seen: datetime
    is_online: bool
    tags: tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "name": self.name,
            "ip_address": self.ip_address,
            "mac_address": self.mac_address,
            "led_enabled": self.led_enabled,
            "last_seen": self.last_seen,
            "is_online": self.is_online,
            "tags": list(self.tags),
        }


class RawDevice(BaseModel):
    """Subset of a ``stat/device`` record the LED controller cares about."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, alias="_id")
    name: str | None = None
    ip: str | None = None
    mac: str
    type: str | None = None
    model: str | None = None
    led_override: str | None = None
    led_enabled: bool | None = None
    last_seen: float | None = None
    state: int | None = None


class DeviceEnvelope(BaseModel):
    data: list[RawDevice]


def is_access_point(device: RawDevice) -> bool:
    if device.type == ACCESS_POINT_TYPE:
        return True
    return bool(device.model and device.model.startswith(ACCESS_POINT_MODEL_PREFIX))


def derive_led_enabled(led_override: str | None, led_enabled: bool | None) -> bool:
    """Resolve the effective LED state from the override and the native flag.

    ``"on"`` and ``"off"`` overrides win; anything else (absent, ``"default"``)
    falls back to the device flag, which itself defaults to on.
    """
    if led_override == "on":
        return True
    if led_override == "off":
        return False
    return True if led_enabled is None else led_enabled


def _last_seen(timestamp: float | None) -> datetime:
    try:
        return datetime.fromtimestamp(timestamp or 0, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return EPOCH


def access_point_from_record(device: RawDevice) -> AccessPoint | None:
    """Map a raw record to an AccessPoint, or None for non-AP/unaddressable devices."""
    if not is_access_point(device):
        return None
    if not device.id:
        return None

    return AccessPoint(
        device_id=device.id,
        name=device.name or device.model or device.mac,
        ip_address=device.ip or "",
        mac_address=normalize_mac(device.mac),
        led_enabled=derive_led_enabled(device.led_override, device.led_enabled),
        last_seen=_last_seen(device.last_seen),
        is_online=(device.state or 0) == STATE_CONNECTED,
    )


def access_points_from_records(devices: Iterable[RawDevice]) -> list[AccessPoint]:
    return [
        access_point
        for access_point in (access_point_from_record(device) for device in devices)
        if access_point is not None
    ]


def find_by_mac(
    access_points: Iterable[AccessPoint], macs: Iterable[str]
) -> list[AccessPoint]:
    """Return the access points whose MAC address is in ``macs``."""
    wanted = {normalize_mac(mac) for mac in macs}
    wanted.discard("")
    return [ap for ap in access_points if normalize_mac(ap.mac_address) in wanted]


__all__ = [
    "ACCESS_POINT_TYPE",
    "ACCESS_POINT_MODEL_PREFIX",
    "AccessPoint",
    "RawDevice",
    "DeviceEnvelope",
    "is_access_point",
    "derive_led_enabled",
    "access_point_from_record",
    "access_points_from_records",
    "find_by_mac",
]
