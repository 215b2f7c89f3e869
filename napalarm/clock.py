"""
Clock and scheduling primitives for the alarm engine.

The engine never counts elapsed intervals; it reads wall-clock "now" from a
Clock and compares it to an absolute deadline. Deferred work goes through a
Scheduler whose handles can always be cancelled.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Clock(ABC):
    """Source of wall-clock time."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current epoch time in milliseconds."""
        ...


class SystemClock(Clock):
    def now_ms(self) -> int:
        return int(time.time() * 1000)


class TimerHandle(ABC):
    """Handle for a scheduled callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the callback. Safe to call more than once."""
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    """Schedules one-shot and repeating callbacks."""

    @abstractmethod
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay_ms."""
        ...

    @abstractmethod
    def call_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Run callback every interval_ms until cancelled."""
        ...


class _ThreadTimer(TimerHandle):
    def __init__(self, delay_ms: int, callback: Callable[[], None], repeat: bool):
        self._delay = max(0, delay_ms) / 1000.0
        self._callback = callback
        self._repeat = repeat
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name="AlarmTimer")

    def start(self):
        self._thread.start()
        return self

    def _run(self):
        while not self._stop.wait(self._delay):
            try:
                self._callback()
            except Exception as e:
                logger.error("Error in scheduled callback: %s", e, exc_info=True)
            if not self._repeat:
                break

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()


class ThreadScheduler(Scheduler):
    """Scheduler backed by daemon threads (one per pending timer)."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        return _ThreadTimer(delay_ms, callback, repeat=False).start()

    def call_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        return _ThreadTimer(interval_ms, callback, repeat=True).start()


class BoundedPoll:
    """
    Poll a readiness check with backoff until it succeeds or the budget runs out.

    The first check runs synchronously from start(); later checks are
    scheduled with a delay that grows by `backoff` up to `max_delay_ms`.
    on_done is called exactly once with True (ready) or False (timed out,
    attempts exhausted), unless the poll is cancelled first. A check that
    returns None reports a definite failure and ends the poll at once.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        check: Callable[[], Optional[bool]],
        on_done: Callable[[bool], None],
        *,
        timeout_ms: int = 2000,
        initial_delay_ms: int = 50,
        max_delay_ms: int = 400,
        max_attempts: int = 20,
        backoff: float = 2.0,
    ):
        self.scheduler = scheduler
        self.check = check
        self.on_done = on_done
        self.timeout_ms = timeout_ms
        self.max_delay_ms = max_delay_ms
        self.max_attempts = max_attempts
        self.backoff = backoff

        self.attempts = 0
        self.waited_ms = 0
        self._delay_ms = initial_delay_ms
        self._handle: Optional[TimerHandle] = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> "BoundedPoll":
        self._attempt()
        return self

    def cancel(self) -> None:
        self._finished = True
        if self._handle:
            self._handle.cancel()
            self._handle = None

    def _attempt(self):
        if self._finished:
            return
        self._handle = None
        self.attempts += 1

        try:
            ready = self.check()
        except Exception as e:
            logger.debug("Readiness check raised: %s", e)
            ready = False

        if ready is None:
            self._finish(False)
            return
        if ready:
            self._finish(True)
            return

        delay = min(self._delay_ms, self.timeout_ms - self.waited_ms)
        if self.attempts >= self.max_attempts or delay <= 0:
            self._finish(False)
            return

        self.waited_ms += delay
        self._delay_ms = min(int(self._delay_ms * self.backoff), self.max_delay_ms)
        self._handle = self.scheduler.call_later(delay, self._attempt)

    def _finish(self, ok: bool):
        self._finished = True
        logger.debug("Poll finished: ok=%s after %s attempts (%s ms)", ok, self.attempts, self.waited_ms)
        self.on_done(ok)
