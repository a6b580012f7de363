"""Top-level state owner: config, device list, schedules and their scheduler."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .persistence import PersistenceController, PersistenceError, get_persistence
from .scheduler import RecurringScheduler
from .schemas import (
    ControllerConfig,
    ControllerConfigUpdate,
    Schedule,
    ScheduleCreateRequest,
    ScheduleUpdateRequest,
)
from .unifi.config import settings
from .unifi.devices import AccessPoint
from .unifi.led import LEDController
from .unifi.network import DeviceDirectory
from .unifi.unifi import (
    AuthenticationFailedError,
    InvalidConfigurationError,
    RequestFailedError,
    UniFiAPIError,
    UniFiClient,
)
from .unifi.utils import logger
from .vault import CredentialVault, VaultError, get_vault
from .wake import WakeMonitor


def config_from_settings() -> ControllerConfig:
    return ControllerConfig(
        base_url=settings.unifi_base_url,
        site=settings.unifi_site,
        username=settings.unifi_username,
        password=settings.unifi_password,
        accept_invalid_certificates=settings.accept_invalid_certificates,
    )


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Return the configured zone, or None for the system local zone."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.bind(timezone=name).warning(
            "Invalid LEDCTL_TIMEZONE; using the system local zone."
        )
        return None


class AppState:
    """Single owner of all mutable application state.

    Every mutating method runs on one asyncio event loop; controller calls are
    pushed to worker threads and their results applied back on the loop.
    """

    def __init__(
        self,
        *,
        client: UniFiClient | None = None,
        directory: DeviceDirectory | None = None,
        led: LEDController | None = None,
        persistence: PersistenceController | None = None,
        vault: CredentialVault | None = None,
        wake_monitor: WakeMonitor | None = None,
        config: ControllerConfig | None = None,
        refresh_delay: float | None = None,
        timezone: tzinfo | None = None,
        scheduler: RecurringScheduler | None = None,
    ) -> None:
        self.client = client or UniFiClient()
        self.directory = directory or DeviceDirectory(self.client)
        self._led = led or LEDController(self.client)
        self.persistence = persistence or get_persistence()
        self.vault = vault or get_vault()
        self.wake_monitor = wake_monitor
        self.refresh_delay = (
            settings.refresh_delay if refresh_delay is None else refresh_delay
        )
        self._config = config or config_from_settings()
        self._config_generation = 0
        self._devices: list[AccessPoint] = []
        self._schedules: list[Schedule] = []
        self._refresh_task: asyncio.Task[None] | None = None
        self.scheduler = scheduler or RecurringScheduler(
            self,
            wake_source=wake_monitor,
            timezone=timezone,
        )

    # -- snapshots -----------------------------------------------------------

    @property
    def config(self) -> ControllerConfig:
        return self._config

    @property
    def devices(self) -> list[AccessPoint]:
        return list(self._devices)

    @property
    def schedules(self) -> list[Schedule]:
        return list(self._schedules)

    @property
    def led(self) -> LEDController:
        return self._led

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self.load_persisted_state()
        self.scheduler.configure()
        if self.wake_monitor is not None:
            await self.wake_monitor.start()
        loop = asyncio.get_running_loop()
        self._refresh_task = loop.create_task(self._initial_refresh())
        logger.info("Application state started.")

    async def _initial_refresh(self) -> None:
        await asyncio.sleep(self.refresh_delay)
        await self.refresh_devices()

    async def close(self) -> None:
        if self._refresh_task:
            self._refresh_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None
        self.scheduler.close()
        if self.wake_monitor is not None:
            await self.wake_monitor.stop()
        self.client.close()
        logger.info("Application state closed.")

    # -- persistence ---------------------------------------------------------

    def load_persisted_state(self) -> None:
        logger.info("Loading persisted state...")
        try:
            stored = self.persistence.load_controller_config()
            schedules = self.persistence.load_schedules()
        except PersistenceError as exc:
            logger.error("Failed to load persisted state: {}", exc)
            return

        if stored is not None:
            self._set_config(self._with_password(stored))
        self._schedules = schedules
        logger.bind(
            configured=self._config.is_configured, schedule_count=len(schedules)
        ).info("Loaded persisted state")

    def _with_password(self, config: ControllerConfig) -> ControllerConfig:
        try:
            password = self.vault.get(config.session_key)
        except VaultError as exc:
            logger.error("Failed to read controller password from vault: {}", exc)
            password = None
        if password is None and (
            config.base_url == settings.unifi_base_url
            and config.username == settings.unifi_username
        ):
            password = settings.unifi_password
        return config.model_copy(update={"password": password or ""})

    def save_state(self) -> bool:
        logger.info("Saving state...")
        try:
            self.persistence.save_controller_config(self._config)
            self.persistence.save_schedules(self._schedules)
        except PersistenceError as exc:
            logger.error("Failed to save state: {}", exc)
            return False
        return True

    def _save_schedules(self) -> None:
        try:
            self.persistence.save_schedules(self._schedules)
        except PersistenceError as exc:
            logger.error("Failed to save schedules: {}", exc)

    def _set_config(self, config: ControllerConfig) -> None:
        self._config = config
        self._config_generation += 1

    # -- devices -------------------------------------------------------------

    async def refresh_devices(self) -> bool:
        """Replace the device list from the controller; keep it on failure."""
        config = self._config
        generation = self._config_generation
        log = logger.bind(base_url=config.base_url, site=config.site)
        log.info("Starting device refresh...")
        try:
            fetched = await asyncio.to_thread(self.directory.fetch_devices, config)
        except InvalidConfigurationError:
            log.error("Failed to refresh devices: invalid configuration.")
            return False
        except AuthenticationFailedError as exc:
            log.error("Failed to refresh devices: authentication failed ({})", exc)
            return False
        except RequestFailedError as exc:
            log.error("Failed to refresh devices: request failed ({})", exc)
            return False

        if generation != self._config_generation:
            log.info("Discarding device list fetched with a superseded config")
            return False
        self._devices = fetched
        log.bind(device_count=len(fetched)).info("Refreshed devices")
        return True

    async def toggle_device_led(self, device_id: str, enable: bool) -> None:
        try:
            await asyncio.to_thread(
                self._led.toggle_device_led, self._config, device_id, enable
            )
        except UniFiAPIError as exc:
            logger.bind(device_id=device_id).error(
                "Failed to toggle device LED: {}", exc
            )
            raise
        await self.refresh_devices()

    async def toggle_all_leds(self, enable: bool) -> None:
        try:
            await asyncio.to_thread(self._led.toggle_led, self._config, enable)
        except UniFiAPIError as exc:
            logger.error("Failed to toggle all LEDs: {}", exc)
            raise
        await self.refresh_devices()

    # -- configuration -------------------------------------------------------

    async def update_config(self, update: ControllerConfigUpdate) -> ControllerConfig:
        previous = self._config
        config = ControllerConfig(
            base_url=update.base_url,
            site=update.site,
            username=update.username,
            token=previous.token,
            accept_invalid_certificates=update.accept_invalid_certificates,
        )
        identity_changed = config.session_key != previous.session_key

        try:
            if update.password is not None:
                self.vault.save(update.password, config.session_key)
                if identity_changed:
                    self.vault.delete(previous.session_key)
        except VaultError as exc:
            logger.error("Failed to store controller password: {}", exc)

        if update.password is not None:
            password = update.password
        elif not identity_changed:
            password = previous.password
        else:
            password = self._with_password(config).password
        config = config.model_copy(update={"password": password})

        self.client.invalidate(previous)
        self.client.invalidate(config)
        self._set_config(config)
        try:
            self.persistence.save_controller_config(config)
        except PersistenceError as exc:
            logger.error("Failed to save controller config: {}", exc)
        logger.bind(base_url=config.base_url, site=config.site).info(
            "Controller configuration updated"
        )
        await self.refresh_devices()
        return config

    # -- schedules -----------------------------------------------------------

    def get_schedule(self, schedule_id: str) -> Schedule:
        for schedule in self._schedules:
            if schedule.id == schedule_id:
                return schedule
        raise KeyError(schedule_id)

    def _commit_schedules(self, schedules: list[Schedule]) -> None:
        self._schedules = schedules
        self._save_schedules()
        self.scheduler.rebuild_timers()

    async def create_schedule(self, payload: ScheduleCreateRequest) -> Schedule:
        schedule = Schedule(
            name=payload.name,
            enabled=payload.enabled,
            assignments=payload.assignments,
            rules=payload.rules,
        )
        self._commit_schedules([*self._schedules, schedule])
        logger.bind(schedule_id=schedule.id).info("Schedule created")
        return schedule

    async def update_schedule(
        self, schedule_id: str, payload: ScheduleUpdateRequest
    ) -> Schedule:
        current = self.get_schedule(schedule_id)
        changes = payload.model_dump(exclude_unset=True)
        updated = Schedule.model_validate(
            {**current.model_dump(), **changes, "id": current.id}
        )
        self._commit_schedules(
            [updated if item.id == schedule_id else item for item in self._schedules]
        )
        logger.bind(schedule_id=schedule_id, fields=sorted(changes)).info(
            "Schedule updated"
        )
        return updated

    async def delete_schedule(self, schedule_id: str) -> None:
        self.get_schedule(schedule_id)
        self._commit_schedules(
            [item for item in self._schedules if item.id != schedule_id]
        )
        logger.bind(schedule_id=schedule_id).info("Schedule deleted")

    async def set_schedule_enabled(self, schedule_id: str, enabled: bool) -> Schedule:
        current = self.get_schedule(schedule_id)
        updated = current.model_copy(update={"enabled": enabled})
        self._commit_schedules(
            [updated if item.id == schedule_id else item for item in self._schedules]
        )
        logger.bind(schedule_id=schedule_id, enabled=enabled).info(
            "Schedule enabled state changed"
        )
        return updated


def build_app_state() -> AppState:
    """Create the state owner wired to the configured backends."""
    wake_monitor = WakeMonitor(
        poll_interval=settings.wake_poll_interval,
        threshold=settings.wake_threshold,
    )
    return AppState(
        wake_monitor=wake_monitor,
        timezone=resolve_timezone(settings.timezone),
    )


__all__ = ["AppState", "build_app_state", "config_from_settings", "resolve_timezone"]
