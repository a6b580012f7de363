"""Public package interface for the UniFi controller client."""

from __future__ import annotations

from .config import Settings, settings
from .devices import AccessPoint
from .led import LEDController
from .network import DeviceDirectory
from .unifi import (
    AuthenticationFailedError,
    InvalidConfigurationError,
    RequestFailedError,
    SessionState,
    UniFiAPIError,
    UniFiClient,
)
from .utils import suppress_insecure_request_warning

__all__ = [
    "Settings",
    "settings",
    "AccessPoint",
    "DeviceDirectory",
    "LEDController",
    "UniFiAPIError",
    "InvalidConfigurationError",
    "AuthenticationFailedError",
    "RequestFailedError",
    "SessionState",
    "UniFiClient",
    "suppress_insecure_request_warning",
]
