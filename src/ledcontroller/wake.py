"""Wake-from-sleep notifications.

The host is considered to have slept when wall-clock time advances faster
than the monotonic clock, which does not count suspended time on Linux.
Other sources (a systemd sleep hook, the HTTP API) call :meth:`notify`.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Callable
from contextlib import suppress
from threading import Lock
from typing import Protocol

from .unifi.utils import logger

WakeCallback = Callable[[str], None]


class WakeNotificationSource(Protocol):
    def subscribe(self, callback: WakeCallback) -> int:
        ...

    def unsubscribe(self, token: int) -> None:
        ...


class WakeMonitor(WakeNotificationSource):
    def __init__(
        self,
        *,
        poll_interval: float = 30.0,
        threshold: float = 5.0,
        wall_clock: Callable[[], float] = time.time,
        monotonic_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.poll_interval = poll_interval
        self.threshold = threshold
        self._wall_clock = wall_clock
        self._monotonic_clock = monotonic_clock
        self._subscribers: dict[int, WakeCallback] = {}
        self._tokens = itertools.count(1)
        self._lock = Lock()
        self._task: asyncio.Task[None] | None = None
        self._last_wall = 0.0
        self._last_monotonic = 0.0

    def subscribe(self, callback: WakeCallback) -> int:
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def notify(self, reason: str = "manual") -> int:
        """Deliver a wake event to every subscriber; returns the number notified."""
        with self._lock:
            callbacks = list(self._subscribers.values())
        logger.bind(reason=reason, subscribers=len(callbacks)).info(
            "Wake notification"
        )
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Wake subscriber failed")
        return len(callbacks)

    def _mark(self) -> None:
        self._last_wall = self._wall_clock()
        self._last_monotonic = self._monotonic_clock()

    def check(self) -> bool:
        """Compare both clocks since the previous check and notify on a jump."""
        wall = self._wall_clock()
        monotonic = self._monotonic_clock()
        drift = (wall - self._last_wall) - (monotonic - self._last_monotonic)
        self._last_wall = wall
        self._last_monotonic = monotonic
        if drift > self.threshold:
            logger.bind(drift_seconds=round(drift, 1)).info(
                "Clock jump detected; host likely resumed from sleep"
            )
            self.notify("resume")
            return True
        return False

    async def start(self) -> None:
        if self._task:
            return
        self._mark()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Wake monitor started.")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.debug("Wake monitor stopped.")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.check()


__all__ = ["WakeCallback", "WakeNotificationSource", "WakeMonitor"]
