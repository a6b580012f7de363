"""Helpers for querying the controller's device inventory."""

from __future__ import annotations

from requests import Response  # type: ignore[import-untyped]

from ..schemas import ControllerConfig
from .devices import AccessPoint, DeviceEnvelope, access_points_from_records
from .unifi import UniFiClient, api_paths
from .utils import logger


class DeviceDirectory:
    """Fetches the access-point inventory for a controller site."""

    def __init__(self, client: UniFiClient) -> None:
        self._client = client

    def fetch_devices(self, config: ControllerConfig) -> list[AccessPoint]:
        """Return all access points on the config's site.

        An unconfigured controller yields an empty list rather than an error.
        """
        if not config.is_configured:
            logger.warning("No controller base URL configured; skipping device fetch")
            return []

        access_points = self._client.send(
            config,
            "get",
            self._paths(config),
            parse=self._decode,
            operation="fetch devices",
        )
        logger.bind(site=config.site, device_count=len(access_points)).info(
            "Fetched UniFi access points"
        )
        return access_points

    @staticmethod
    def _paths(config: ControllerConfig) -> list[str]:
        return api_paths(f"s/{config.site}/stat/device")

    @staticmethod
    def _decode(response: Response) -> list[AccessPoint]:
        envelope = DeviceEnvelope.model_validate(response.json())
        access_points = access_points_from_records(envelope.data)
        logger.bind(
            record_count=len(envelope.data), access_point_count=len(access_points)
        ).debug("Decoded device envelope")
        return access_points


__all__ = ["DeviceDirectory"]
