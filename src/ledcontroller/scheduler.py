"""Weekly recurring scheduler that drives per-device LED overrides."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Protocol

from .schemas import ControllerConfig, DayOfWeek, Schedule
from .unifi.devices import AccessPoint, find_by_mac
from .unifi.led import LEDController
from .unifi.unifi import UniFiAPIError
from .unifi.utils import logger
from .wake import WakeNotificationSource

WEEK = timedelta(days=7)


class Edge(str, Enum):
    ON = "on"
    OFF = "off"

    @property
    def enable(self) -> bool:
        return self is Edge.ON


class ScheduleHost(Protocol):
    """The state owner the scheduler reads snapshots from and calls back into."""

    @property
    def config(self) -> ControllerConfig:
        ...

    @property
    def devices(self) -> Sequence[AccessPoint]:
        ...

    @property
    def schedules(self) -> Sequence[Schedule]:
        ...

    @property
    def led(self) -> LEDController:
        ...

    async def refresh_devices(self) -> bool:
        ...


def next_fire_time(day: DayOfWeek, seconds: float, *, now: datetime) -> datetime:
    """Return the first instant strictly after ``now`` matching day + time of day.

    ``seconds`` counts from local midnight. A time that has already passed
    today rolls over to the same weekday next week.
    """
    offset = (day.weekday - now.weekday()) % 7
    target = now.date() + timedelta(days=offset)
    fire_at = datetime.combine(target, time.min, tzinfo=now.tzinfo) + timedelta(
        seconds=seconds
    )
    if fire_at <= now:
        fire_at += WEEK
    return fire_at


def _to_utc(value: datetime) -> datetime:
    # Naive values are local wall-clock time.
    return value.astimezone(UTC)


@dataclass
class ArmedTimer:
    schedule_id: str
    rule_id: str
    edge: Edge
    fire_at: datetime
    interval: timedelta = WEEK
    task: asyncio.Task[None] | None = field(default=None, repr=False, compare=False)

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()


class RecurringScheduler:
    """Owns one armed timer per (rule, edge) for every enabled schedule.

    All methods other than the wake callback must run on the owner's event
    loop; timers and fire actions are tasks on that loop.
    """

    def __init__(
        self,
        host: ScheduleHost,
        *,
        wake_source: WakeNotificationSource | None = None,
        timezone: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._host = host
        self._wake_source = wake_source
        self._timezone = timezone
        self._clock = clock
        self._timers: list[ArmedTimer] = []
        self._actions: set[asyncio.Task[int]] = set()
        self._wake_token: int | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        if self._timezone is not None:
            return datetime.now(self._timezone)
        return datetime.now()

    @property
    def timers(self) -> list[ArmedTimer]:
        return [replace(timer, task=None) for timer in self._timers]

    @property
    def pending_actions(self) -> int:
        return len(self._actions)

    def configure(self) -> list[ArmedTimer]:
        """Arm timers for the current schedules and listen for wake events."""
        self._loop = asyncio.get_running_loop()
        self._closed = False
        timers = self.rebuild_timers()
        if self._wake_source is not None and self._wake_token is None:
            self._wake_token = self._wake_source.subscribe(self._on_wake)
        return timers

    def rebuild_timers(self) -> list[ArmedTimer]:
        """Cancel every armed timer and arm a fresh set from the host's schedules."""
        loop = asyncio.get_running_loop()
        self._cancel_timers()
        if self._closed:
            return []

        now = self.now()
        timers: list[ArmedTimer] = []
        for schedule in self._host.schedules:
            if not schedule.enabled:
                continue
            for rule in schedule.rules:
                for edge, seconds in ((Edge.ON, rule.on_time), (Edge.OFF, rule.off_time)):
                    timer = ArmedTimer(
                        schedule_id=schedule.id,
                        rule_id=rule.id,
                        edge=edge,
                        fire_at=_to_utc(next_fire_time(rule.day, seconds, now=now)),
                    )
                    timer.task = loop.create_task(self._run_timer(timer, schedule))
                    timers.append(timer)

        self._timers = timers
        logger.bind(timer_count=len(timers)).info("Scheduler timers rebuilt")
        return self.timers

    async def _run_timer(self, timer: ArmedTimer, schedule: Schedule) -> None:
        while True:
            delay = (timer.fire_at - _to_utc(self.now())).total_seconds()
            await asyncio.sleep(max(delay, 0.0))
            logger.bind(
                schedule_id=schedule.id, rule_id=timer.rule_id, edge=timer.edge.value
            ).info("Schedule timer fired")
            self._launch(schedule, timer.edge)
            timer.fire_at = timer.fire_at + timer.interval

    def _launch(self, schedule: Schedule, edge: Edge) -> None:
        task = asyncio.get_running_loop().create_task(self.fire(schedule, edge.enable))
        self._actions.add(task)
        task.add_done_callback(self._actions.discard)

    async def fire(self, schedule: Schedule, enable: bool) -> int:
        """Apply one edge to the schedule's devices, then refresh the directory.

        Returns the number of devices successfully updated.
        """
        log = logger.bind(schedule_id=schedule.id, schedule=schedule.name, enable=enable)
        devices = find_by_mac(self._host.devices, schedule.assignments)
        if not devices:
            log.warning("Schedule matches no current devices; nothing to do")
            return 0

        config = self._host.config
        updated = 0
        for device in devices:
            try:
                await asyncio.to_thread(
                    self._host.led.toggle_device_led, config, device.device_id, enable
                )
            except UniFiAPIError as exc:
                log.bind(device_id=device.device_id, device=device.name).error(
                    "Scheduled LED toggle failed: {}", exc
                )
                continue
            updated += 1

        log.bind(updated=updated, device_count=len(devices)).info(
            "Applied scheduled LED state"
        )
        await self._host.refresh_devices()
        return updated

    def _on_wake(self, reason: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._rebuild_after_wake, reason)

    def _rebuild_after_wake(self, reason: str) -> None:
        if self._closed:
            return
        logger.bind(reason=reason).info("Rebuilding timers after wake")
        self.rebuild_timers()

    def _cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    def close(self) -> None:
        """Cancel timers and in-flight actions and drop the wake subscription."""
        self._closed = True
        self._cancel_timers()
        for task in list(self._actions):
            task.cancel()
        self._actions.clear()
        if self._wake_source is not None and self._wake_token is not None:
            self._wake_source.unsubscribe(self._wake_token)
            self._wake_token = None
        logger.info("Scheduler stopped.")


__all__ = [
    "WEEK",
    "Edge",
    "ArmedTimer",
    "ScheduleHost",
    "RecurringScheduler",
    "next_fire_time",
]
