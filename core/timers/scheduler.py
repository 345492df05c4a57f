"""
BLOOMFIT Scheduling Primitives

Clock and delayed-callback abstraction used by tracking sessions.
The service runs on the asyncio event loop clock; tests substitute a
manually advanced clock.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ScheduledCall(ABC):
    """Handle for a callback scheduled with a Scheduler."""

    @abstractmethod
    def cancel(self) -> None: ...

    @abstractmethod
    def cancelled(self) -> bool: ...


class Scheduler(ABC):
    """
    Time source plus delayed execution.

    `now()` returns monotonic seconds. `call_later()` runs `callback` once,
    `delay` seconds from now, unless the returned handle is cancelled first.
    """

    @abstractmethod
    def now(self) -> float: ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        # asyncio.TimerHandle already provides cancel()/cancelled()
        return self.loop.call_later(max(0.0, float(delay)), callback)


class TimerGroupClosed(RuntimeError):
    """Raised when scheduling on a TimerGroup that has been closed."""


class TimerGroup:
    """
    Set of pending timers owned by one tracking session.

    Every timer is tracked until it fires or is cancelled. `close()` cancels
    whatever is still pending and rejects further scheduling, so no callback
    registered through the group can run after teardown.
    """

    def __init__(self, scheduler: Scheduler, name: str = "timers"):
        self.scheduler = scheduler
        self.name = name
        self._ids = itertools.count(1)
        self._pending: Dict[int, ScheduledCall] = {}
        self._closed = False
        self._fired_count = 0
        self._cancelled_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, delay: float, callback: Callable[[], None]) -> int:
        """
        Schedule `callback` after `delay` seconds.

        Returns:
            timer id usable with cancel()
        """
        if self._closed:
            raise TimerGroupClosed(f"TimerGroup '{self.name}' is closed")

        timer_id = next(self._ids)

        def _fire():
            if self._pending.pop(timer_id, None) is None:
                return
            self._fired_count += 1
            callback()

        self._pending[timer_id] = self.scheduler.call_later(delay, _fire)
        logger.debug(f"{self.name}: timer {timer_id} scheduled in {delay:.3f}s")
        return timer_id

    def cancel(self, timer_id: int) -> bool:
        """Cancel one pending timer. Returns False if it already fired."""
        handle = self._pending.pop(timer_id, None)
        if handle is None:
            return False
        handle.cancel()
        self._cancelled_count += 1
        return True

    def cancel_all(self) -> int:
        """Cancel every pending timer and return how many were cancelled."""
        count = 0
        for timer_id in list(self._pending):
            if self.cancel(timer_id):
                count += 1
        return count

    def close(self) -> int:
        """Cancel pending timers and refuse new ones."""
        self._closed = True
        cancelled = self.cancel_all()
        if cancelled:
            logger.debug(f"{self.name}: cancelled {cancelled} pending timer(s) on close")
        return cancelled

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "pending": self.pending_count,
            "fired": self._fired_count,
            "cancelled": self._cancelled_count,
            "closed": self._closed,
        }
