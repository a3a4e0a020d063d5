import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Protocol

from config.settings import settings

log = logging.getLogger(__name__)

PeriodicCallback = Callable[[], Awaitable[object]]


class SchedulerStatus(StrEnum):
    """Whether the host lets the app run periodic work.

    RESTRICTED is for hosts whose own policy (e.g. an OS power-saving mode)
    blocks background work the user did not turn off. AsyncioScheduler runs
    inside this process, so it only ever reports AVAILABLE or DENIED.
    """

    AVAILABLE = "available"
    DENIED = "denied"
    RESTRICTED = "restricted"


class Scheduler(Protocol):
    """Host facility that wakes the app up periodically."""

    def register_periodic(self, min_interval_seconds: float, callback: PeriodicCallback) -> None: ...

    async def unregister(self) -> None: ...

    def status(self) -> SchedulerStatus: ...

    @property
    def is_registered(self) -> bool: ...


class AsyncioScheduler:
    """Periodic wake-ups on the running event loop.

    Intervals shorter than the minimum are raised to it. A failing callback
    is logged and the loop keeps going. Status is DENIED when background
    work is disabled in settings and AVAILABLE otherwise; nothing outside
    the process can restrict it.
    """

    def __init__(self, min_interval_seconds: float | None = None, enabled: bool | None = None):
        self.min_interval_seconds = (
            settings.background_min_interval_seconds
            if min_interval_seconds is None
            else min_interval_seconds
        )
        self.enabled = settings.background_enabled if enabled is None else enabled
        self.interval_seconds: float | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def is_registered(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus.AVAILABLE if self.enabled else SchedulerStatus.DENIED

    def register_periodic(self, min_interval_seconds: float, callback: PeriodicCallback) -> None:
        if not self.enabled:
            log.info("Background scheduling disabled; not registering")
            return
        if self.is_registered:
            log.warning("Periodic task already registered")
            return

        self.interval_seconds = max(min_interval_seconds, self.min_interval_seconds)
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(callback, self.interval_seconds))
        log.info(f"Background task registered (every {self.interval_seconds:.0f}s)")

    async def unregister(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=30.0)
        except TimeoutError:
            log.warning("Background task did not stop in time, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        log.info("Background task unregistered")

    async def _loop(self, callback: PeriodicCallback, interval: float):
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass

            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Background wake-up failed")
