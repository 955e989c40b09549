"""
core/clock.py — Clock/timer service for MatriGuard.

The state machine never sleeps or blocks; every wait is a scheduled callback.
This module provides the two schedulers it can run on:

- :class:`ThreadScheduler` — real time, backed by daemon ``threading.Timer``\\ s.
- :class:`ManualScheduler` — virtual time, advanced explicitly. Deterministic,
  used by the tests and by the scripted CLI demos.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


# ──────────────────────────────────────────────────────────────
# Protocols
# ──────────────────────────────────────────────────────────────

@runtime_checkable
class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    @property
    def cancelled(self) -> bool:
        ...

    def cancel(self) -> None:
        """Prevent any future firing. Safe to call more than once."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Minimal interface the state machine and collaborators need from a clock."""

    def now_ms(self) -> float:
        """Monotonic milliseconds; only differences are meaningful."""
        ...

    def wall_time(self) -> datetime:
        """Current timezone-aware wall-clock time."""
        ...

    def call_later(self, delay_ms: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay_ms``."""
        ...

    def call_every(self, interval_ms: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` every ``interval_ms`` until cancelled."""
        ...


# ──────────────────────────────────────────────────────────────
# Real-time scheduler
# ──────────────────────────────────────────────────────────────

class _ThreadTimer:
    """One-shot or repeating timer on top of ``threading.Timer``."""

    def __init__(
        self,
        owner: "ThreadScheduler",
        delay_ms: float,
        callback: Callback,
        repeat: bool,
    ) -> None:
        self._owner = owner
        self._delay_s = max(0.0, delay_ms) / 1000.0
        self._callback = callback
        self._repeat = repeat
        self._lock = threading.Lock()
        self._cancelled = False
        self._timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = threading.Timer(self._delay_s, self._fire)
            self._timer.daemon = True
            self._timer.name = "concierge-timer"
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
        self._owner._forget(self)

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self._callback()
        except Exception:  # noqa: BLE001
            logger.exception("Timer callback raised")
        if self._repeat:
            self.start()
        else:
            self._owner._forget(self)


class ThreadScheduler:
    """
    Real-time :class:`Scheduler` using daemon ``threading.Timer`` objects.

    Callbacks run on timer threads. Call :meth:`shutdown` on teardown so no
    timer outlives the session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: set[_ThreadTimer] = set()
        self._closed = False

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0

    def wall_time(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def call_later(self, delay_ms: float, callback: Callback) -> _ThreadTimer:
        return self._schedule(delay_ms, callback, repeat=False)

    def call_every(self, interval_ms: float, callback: Callback) -> _ThreadTimer:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        return self._schedule(interval_ms, callback, repeat=True)

    def pending(self) -> int:
        """Number of timers that have not fired (one-shot) or been cancelled."""
        with self._lock:
            return len(self._live)

    def shutdown(self) -> None:
        """Cancel every outstanding timer and refuse new ones."""
        with self._lock:
            self._closed = True
            live = list(self._live)
        for handle in live:
            handle.cancel()
        logger.debug("ThreadScheduler shut down (%d timers cancelled)", len(live))

    def _schedule(self, delay_ms: float, callback: Callback, repeat: bool) -> _ThreadTimer:
        handle = _ThreadTimer(self, delay_ms, callback, repeat)
        with self._lock:
            if self._closed:
                raise RuntimeError("ThreadScheduler has been shut down")
            self._live.add(handle)
        handle.start()
        return handle

    def _forget(self, handle: _ThreadTimer) -> None:
        with self._lock:
            self._live.discard(handle)


# ──────────────────────────────────────────────────────────────
# Virtual-time scheduler
# ──────────────────────────────────────────────────────────────

class _ManualTimer:
    def __init__(self, callback: Callback, interval_ms: Optional[float]) -> None:
        self.callback = callback
        self.interval_ms = interval_ms
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler:
    """
    Deterministic virtual-time :class:`Scheduler`.

    Nothing fires until :meth:`advance` is called. Callbacks due within the
    advanced window run in (due time, scheduling order) sequence, and the
    clock reads the callback's due time while it runs. Callbacks scheduled
    by other callbacks fire in the same window if they fall due within it.

    Args:
        start: Wall-clock time corresponding to virtual time 0.

    Example::

        clock = ManualScheduler()
        clock.call_later(1000, lambda: print("tick"))
        clock.advance(999)    # nothing
        clock.advance(1)      # prints "tick"
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._start = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
        self._now: float = 0.0
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._seq = itertools.count()
        self._lock = threading.RLock()

    def now_ms(self) -> float:
        return self._now

    def wall_time(self) -> datetime:
        return self._start + timedelta(milliseconds=self._now)

    def call_later(self, delay_ms: float, callback: Callback) -> _ManualTimer:
        handle = _ManualTimer(callback, None)
        self._push(self._now + max(0.0, delay_ms), handle)
        return handle

    def call_every(self, interval_ms: float, callback: Callback) -> _ManualTimer:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        handle = _ManualTimer(callback, interval_ms)
        self._push(self._now + interval_ms, handle)
        return handle

    def advance(self, ms: float) -> int:
        """
        Move virtual time forward by ``ms``, firing everything that falls due.

        Returns:
            Number of callbacks fired.
        """
        if ms < 0:
            raise ValueError(f"cannot advance by a negative amount: {ms}")
        target = self._now + ms
        fired = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target:
                    break
                due, _, handle = heapq.heappop(self._queue)
                if handle.cancelled:
                    continue
                self._now = due
            handle.callback()
            fired += 1
            if handle.interval_ms is not None and not handle.cancelled:
                self._push(due + handle.interval_ms, handle)
        self._now = target
        return fired

    def pending(self) -> int:
        """Number of scheduled, uncancelled callbacks."""
        with self._lock:
            return sum(1 for _, _, h in self._queue if not h.cancelled)

    def _push(self, due: float, handle: _ManualTimer) -> None:
        with self._lock:
            heapq.heappush(self._queue, (due, next(self._seq), handle))
