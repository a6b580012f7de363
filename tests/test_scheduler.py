from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from ledcontroller.scheduler import WEEK, Edge, RecurringScheduler, next_fire_time
from ledcontroller.schemas import ControllerConfig, DayOfWeek, Schedule, ScheduleRule
from ledcontroller.unifi.devices import AccessPoint
from ledcontroller.unifi.unifi import RequestFailedError
from ledcontroller.wake import WakeMonitor

SEVEN_AM = 7 * 3600
EIGHT_PM = 20 * 3600

# 2025-01-06 is a Monday.
MONDAY = datetime(2025, 1, 6, tzinfo=UTC)


def _device(device_id: str, mac: str) -> AccessPoint:
    return AccessPoint(
        device_id=device_id,
        name=device_id,
        ip_address="",
        mac_address=mac,
        led_enabled=True,
        last_seen=MONDAY,
        is_online=True,
    )


def _schedule(*rules: ScheduleRule, enabled: bool = True, macs=("aa:00:00:00:00:01",)):
    return Schedule(name="Night", enabled=enabled, assignments=list(macs), rules=list(rules))


class StubLED:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[str, bool]] = []

    def toggle_device_led(self, config, device_id: str, enable: bool) -> None:
        self.calls.append((device_id, enable))
        if device_id in self.failing:
            raise RequestFailedError(f"toggle {device_id} failed")


class StubHost:
    def __init__(self, schedules=(), devices=(), led: StubLED | None = None) -> None:
        self.config = ControllerConfig(base_url="https://controller.example")
        self.schedules = list(schedules)
        self.devices = list(devices)
        self.led = led or StubLED()
        self.refreshes = 0

    async def refresh_devices(self) -> bool:
        self.refreshes += 1
        return True


@pytest.mark.parametrize(
    ("now", "day", "seconds", "expected"),
    [
        # Wednesday 10:00 -> following Monday 07:00
        (
            datetime(2025, 1, 8, 10, 0, tzinfo=UTC),
            DayOfWeek.MONDAY,
            SEVEN_AM,
            datetime(2025, 1, 13, 7, 0, tzinfo=UTC),
        ),
        # Monday 06:00 -> today 07:00
        (
            datetime(2025, 1, 6, 6, 0, tzinfo=UTC),
            DayOfWeek.MONDAY,
            SEVEN_AM,
            datetime(2025, 1, 6, 7, 0, tzinfo=UTC),
        ),
        # Monday 08:00 -> next Monday 07:00
        (
            datetime(2025, 1, 6, 8, 0, tzinfo=UTC),
            DayOfWeek.MONDAY,
            SEVEN_AM,
            datetime(2025, 1, 13, 7, 0, tzinfo=UTC),
        ),
        # Exactly on time rolls to next week
        (
            datetime(2025, 1, 6, 7, 0, tzinfo=UTC),
            DayOfWeek.MONDAY,
            SEVEN_AM,
            datetime(2025, 1, 13, 7, 0, tzinfo=UTC),
        ),
        # Saturday -> Sunday
        (
            datetime(2025, 1, 11, 23, 0, tzinfo=UTC),
            DayOfWeek.SUNDAY,
            0,
            datetime(2025, 1, 12, 0, 0, tzinfo=UTC),
        ),
    ],
)
def test_next_fire_time(now, day, seconds, expected):
    assert next_fire_time(day, seconds, now=now) == expected


def test_next_fire_time_uses_local_wall_clock():
    tz = ZoneInfo("America/Chicago")
    now = datetime(2025, 1, 6, 6, 0, tzinfo=tz)

    fire_at = next_fire_time(DayOfWeek.MONDAY, SEVEN_AM, now=now)

    assert fire_at == datetime(2025, 1, 6, 7, 0, tzinfo=tz)
    assert fire_at.astimezone(UTC).hour == 13


def test_rebuild_arms_on_and_off_timers_per_rule():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    host = StubHost([_schedule(rule)])
    scheduler = RecurringScheduler(host, clock=lambda: MONDAY.replace(hour=8))

    async def scenario():
        timers = scheduler.rebuild_timers()
        scheduler.close()
        return timers

    timers = asyncio.run(scenario())

    assert [(timer.edge, timer.fire_at) for timer in timers] == [
        (Edge.ON, datetime(2025, 1, 13, 7, 0, tzinfo=UTC)),
        (Edge.OFF, datetime(2025, 1, 6, 20, 0, tzinfo=UTC)),
    ]
    assert all(timer.interval == WEEK for timer in timers)
    assert {timer.rule_id for timer in timers} == {rule.id}


def test_equal_on_and_off_times_arm_two_timers():
    rule = ScheduleRule(day=DayOfWeek.FRIDAY, on_time=SEVEN_AM, off_time=SEVEN_AM)
    host = StubHost([_schedule(rule)])
    scheduler = RecurringScheduler(host, clock=lambda: MONDAY)

    async def scenario():
        timers = scheduler.rebuild_timers()
        scheduler.close()
        return timers

    timers = asyncio.run(scenario())

    assert len(timers) == 2
    assert timers[0].fire_at == timers[1].fire_at


def test_disabled_and_ruleless_schedules_arm_nothing():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    host = StubHost([_schedule(rule, enabled=False), _schedule()])
    scheduler = RecurringScheduler(host, clock=lambda: MONDAY)

    async def scenario():
        timers = scheduler.rebuild_timers()
        scheduler.close()
        return timers

    assert asyncio.run(scenario()) == []


def test_rebuild_cancels_previous_timers():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    host = StubHost([_schedule(rule)])
    scheduler = RecurringScheduler(host, clock=lambda: MONDAY)

    async def scenario():
        scheduler.rebuild_timers()
        old_tasks = [timer.task for timer in scheduler._timers]
        host.schedules = []
        timers = scheduler.rebuild_timers()
        await asyncio.sleep(0)
        return old_tasks, timers

    old_tasks, timers = asyncio.run(scenario())

    assert timers == []
    assert all(task.cancelled() for task in old_tasks)


def test_due_timer_fires_and_rearms_one_week_later():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    device = _device("dev-1", "aa:00:00:00:00:01")
    host = StubHost([_schedule(rule)], devices=[device])
    just_before = MONDAY.replace(hour=6, minute=59, second=59, microsecond=950_000)
    scheduler = RecurringScheduler(host, clock=lambda: just_before)

    async def scenario():
        scheduler.rebuild_timers()
        await asyncio.sleep(0.3)
        timers = scheduler.timers
        scheduler.close()
        return timers

    timers = asyncio.run(scenario())

    assert host.led.calls == [("dev-1", True)]
    assert host.refreshes == 1
    on_timer = next(timer for timer in timers if timer.edge is Edge.ON)
    assert on_timer.fire_at == datetime(2025, 1, 13, 7, 0, tzinfo=UTC)


def test_fire_continues_past_failing_device_then_refreshes():
    devices = [
        _device("dev-1", "aa:00:00:00:00:01"),
        _device("dev-2", "aa:00:00:00:00:02"),
        _device("dev-3", "aa:00:00:00:00:03"),
    ]
    led = StubLED(failing={"dev-1"})
    host = StubHost(devices=devices, led=led)
    schedule = _schedule(macs=("AA:00:00:00:00:01", "aa:00:00:00:00:02"))
    scheduler = RecurringScheduler(host)

    updated = asyncio.run(scheduler.fire(schedule, False))

    assert updated == 1
    assert led.calls == [("dev-1", False), ("dev-2", False)]
    assert host.refreshes == 1


def test_fire_without_matching_devices_is_a_noop():
    host = StubHost(devices=[_device("dev-9", "ff:ff:ff:ff:ff:ff")])
    scheduler = RecurringScheduler(host)

    updated = asyncio.run(scheduler.fire(_schedule(), True))

    assert updated == 0
    assert host.led.calls == []
    assert host.refreshes == 0


def test_wake_notification_rebuilds_timers():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    host = StubHost([])
    monitor = WakeMonitor()
    scheduler = RecurringScheduler(host, wake_source=monitor, clock=lambda: MONDAY)

    async def scenario():
        scheduler.configure()
        assert scheduler.timers == []
        host.schedules = [_schedule(rule)]
        notified = monitor.notify("test")
        await asyncio.sleep(0)
        timers = scheduler.timers
        scheduler.close()
        return notified, timers

    notified, timers = asyncio.run(scenario())

    assert notified == 1
    assert len(timers) == 2


def test_close_cancels_timers_and_unsubscribes():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    host = StubHost([_schedule(rule)])
    monitor = WakeMonitor()
    scheduler = RecurringScheduler(host, wake_source=monitor, clock=lambda: MONDAY)

    async def scenario():
        scheduler.configure()
        tasks = [timer.task for timer in scheduler._timers]
        scheduler.close()
        await asyncio.sleep(0)
        return tasks

    tasks = asyncio.run(scenario())

    assert scheduler.timers == []
    assert monitor.subscriber_count == 0
    assert monitor.notify("late") == 0
    assert all(task.cancelled() for task in tasks)


def test_close_cancels_in_flight_actions():
    class SlowHost(StubHost):
        async def refresh_devices(self) -> bool:
            await asyncio.sleep(10)
            return True

    host = SlowHost(devices=[_device("dev-1", "aa:00:00:00:00:01")])
    scheduler = RecurringScheduler(host)

    async def scenario():
        scheduler._launch(_schedule(), Edge.OFF)
        await asyncio.sleep(0.1)
        pending = scheduler.pending_actions
        scheduler.close()
        await asyncio.sleep(0)
        return pending

    assert asyncio.run(scenario()) == 1
    assert scheduler.pending_actions == 0


def test_rebuild_after_close_arms_nothing():
    rule = ScheduleRule(day=DayOfWeek.MONDAY, on_time=SEVEN_AM, off_time=EIGHT_PM)
    scheduler = RecurringScheduler(StubHost([_schedule(rule)]), clock=lambda: MONDAY)

    async def scenario():
        scheduler.close()
        return scheduler.rebuild_timers()

    assert asyncio.run(scenario()) == []


def test_rebuild_requires_running_loop():
    scheduler = RecurringScheduler(StubHost())

    with pytest.raises(RuntimeError):
        scheduler.rebuild_timers()


def test_default_clock_honours_timezone():
    scheduler = RecurringScheduler(StubHost(), timezone=ZoneInfo("Europe/Berlin"))

    now = scheduler.now()

    assert now.tzinfo == ZoneInfo("Europe/Berlin")
    assert abs(now - datetime.now(UTC)) < timedelta(seconds=5)
