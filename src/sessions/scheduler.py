"""Recurring timers for background maintenance such as the session sweep."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class IntervalScheduler(Protocol):
    """Runs a callback every ``period`` seconds until the handle is cancelled."""

    def every(self, period: float, callback: Callable[[], object]) -> Cancellable: ...


class _RepeatingHandle:
    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        period: float,
        callback: Callable[[], object],
    ) -> None:
        self._loop = loop
        self._period = period
        self._callback = callback
        self._timer: asyncio.TimerHandle | None = None
        self._cancelled = False
        self._arm()

    def _arm(self) -> None:
        self._timer = self._loop.call_later(self._period, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled callback %r failed", self._callback)
        if not self._cancelled:
            self._arm()

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioIntervalScheduler:
    """Event-loop timer scheduler.

    Timer handles are not tasks, so a pending tick never keeps the loop or
    the process alive on its own.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def every(self, period: float, callback: Callable[[], object]) -> _RepeatingHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _RepeatingHandle(loop, period, callback)
