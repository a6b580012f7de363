"""LED control commands for individual access points and the whole site."""

from __future__ import annotations

from ..schemas import ControllerConfig
from .unifi import UniFiClient, api_paths
from .utils import logger


class LEDController:
    """Issues LED commands through a shared :class:`UniFiClient`."""

    def __init__(self, client: UniFiClient) -> None:
        self._client = client

    def toggle_led(self, config: ControllerConfig, enable: bool) -> None:
        """Set the site-wide LED setting."""
        self._client.send(
            config,
            "post",
            api_paths(f"s/{config.site}/set/setting/mgmt"),
            payload={"led_enabled": enable},
            operation="toggle site LEDs",
        )
        logger.bind(site=config.site, enable=enable).info("Updated site LED setting")

    def toggle_device_led(
        self, config: ControllerConfig, device_id: str, enable: bool
    ) -> None:
        """Set one device's LED override, leaving the site setting untouched."""
        self._client.send(
            config,
            "put",
            api_paths(f"s/{config.site}/rest/device/{device_id}"),
            payload={"led_override": "on" if enable else "off"},
            operation="toggle device LED",
        )
        logger.bind(device_id=device_id, enable=enable).info(
            "Updated device LED override"
        )


__all__ = ["LEDController"]
