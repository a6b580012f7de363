"""Pydantic models for controller configuration, schedules and the HTTP API."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SECONDS_PER_DAY = 24 * 60 * 60


def _to_camel(string: str) -> str:
    first, *rest = string.split("_")
    return first + "".join(word.capitalize() for word in rest)


def _new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Controller configuration


class ControllerConfig(CamelModel):
    """Connection descriptor for one controller and site.

    The password is held in memory only; it is excluded from every dump so
    the persisted config document never carries it.
    """

    base_url: str | None = Field(default=None, alias="baseURL")
    site: str = "default"
    username: str = ""
    password: str = Field(default="", exclude=True, repr=False)
    token: str | None = None
    accept_invalid_certificates: bool = False

    @field_validator("base_url")
    @classmethod
    def _blank_url_is_unset(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("site")
    @classmethod
    def _default_site(cls, value: str) -> str:
        return value.strip() or "default"

    @property
    def is_configured(self) -> bool:
        return self.base_url is not None

    @property
    def session_key(self) -> str:
        """Identity shared by the session cache and the credential vault."""
        return f"{self.base_url or ''}_{self.username}"


# ---------------------------------------------------------------------------
# Schedules


class DayOfWeek(str, Enum):
    SUNDAY = "sunday"
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"

    @property
    def weekday(self) -> int:
        """Index matching ``datetime.weekday()`` (Monday is 0)."""
        return _WEEKDAY_INDEX[self]


_WEEKDAY_INDEX = {
    DayOfWeek.MONDAY: 0,
    DayOfWeek.TUESDAY: 1,
    DayOfWeek.WEDNESDAY: 2,
    DayOfWeek.THURSDAY: 3,
    DayOfWeek.FRIDAY: 4,
    DayOfWeek.SATURDAY: 5,
    DayOfWeek.SUNDAY: 6,
}


class ScheduleRule(CamelModel):
    """One weekly directive; times are seconds since local midnight."""

    id: str = Field(default_factory=_new_id)
    day: DayOfWeek
    on_time: float
    off_time: float

    @field_validator("on_time", "off_time")
    @classmethod
    def _within_day(cls, value: float) -> float:
        if not 0 <= value < SECONDS_PER_DAY:
            raise ValueError(
                f"time must be within [0, {SECONDS_PER_DAY}) seconds, got {value}"
            )
        return value


class Schedule(CamelModel):
    id: str = Field(default_factory=_new_id)
    name: str
    enabled: bool = True
    assignments: list[str] = Field(default_factory=list)
    rules: list[ScheduleRule] = Field(default_factory=list)

    @field_validator("assignments")
    @classmethod
    def _normalize_macs(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for mac in value:
            mac = mac.strip().lower()
            if mac and mac not in normalized:
                normalized.append(mac)
        return normalized


class ScheduleCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    enabled: bool = True
    assignments: list[str] = Field(default_factory=list)
    rules: list[ScheduleRule] = Field(default_factory=list)


class ScheduleUpdateRequest(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    enabled: bool | None = None
    assignments: list[str] | None = None
    rules: list[ScheduleRule] | None = None

    @field_validator("name", "enabled", "assignments", "rules")
    @classmethod
    def _omit_rather_than_null(cls, value: object) -> object:
        # Defaults are not validated, so this only sees explicit nulls.
        if value is None:
            raise ValueError("field may be omitted but not set to null")
        return value


class ScheduleListResponse(CamelModel):
    schedules: list[Schedule]


# ---------------------------------------------------------------------------
# Devices and LED control


class AccessPointStatus(CamelModel):
    id: str
    device_id: str
    name: str
    ip_address: str
    mac_address: str
    led_enabled: bool
    last_seen: datetime
    is_online: bool
    tags: list[str] = Field(default_factory=list)


class DeviceListResponse(CamelModel):
    devices: list[AccessPointStatus]
    refreshed: bool | None = None


class LEDToggleRequest(CamelModel):
    enabled: bool


class LEDToggleResponse(CamelModel):
    target: str
    enabled: bool
    status: Literal["success", "error"]
    message: str | None = None


class EnabledRequest(CamelModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Configuration and scheduler introspection


class ControllerConfigUpdate(CamelModel):
    base_url: str | None = Field(default=None, alias="baseURL")
    site: str = "default"
    username: str = ""
    password: str | None = Field(default=None, repr=False)
    accept_invalid_certificates: bool = False


class ControllerConfigResponse(CamelModel):
    base_url: str | None = Field(default=None, alias="baseURL")
    site: str
    username: str
    accept_invalid_certificates: bool
    configured: bool
    has_password: bool


class ArmedTimerInfo(CamelModel):
    schedule_id: str
    rule_id: str
    edge: Literal["on", "off"]
    fire_at: datetime


class TimerListResponse(CamelModel):
    timers: list[ArmedTimerInfo]


class WakeResponse(CamelModel):
    rebuilt: bool
    armed: int = 0


__all__ = [
    "SECONDS_PER_DAY",
    "CamelModel",
    "ControllerConfig",
    "DayOfWeek",
    "ScheduleRule",
    "Schedule",
    "ScheduleCreateRequest",
    "ScheduleUpdateRequest",
    "ScheduleListResponse",
    "AccessPointStatus",
    "DeviceListResponse",
    "LEDToggleRequest",
    "LEDToggleResponse",
    "EnabledRequest",
    "ControllerConfigUpdate",
    "ControllerConfigResponse",
    "ArmedTimerInfo",
    "TimerListResponse",
    "WakeResponse",
]
