"""
input/button.py — Press-and-hold emergency button for MatriGuard.

A hold must last ``hold_ms`` before it raises a ``manual`` trigger; releasing
early cancels the hold and resets progress to zero. Each completed hold
triggers exactly once. The button is inert while the machine is in
EMERGENCY: a new trigger there would restart the verification window and
drop the pending escalation.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from core.clock import Scheduler, TimerHandle
from core.constants import C, EmergencyStatus, TriggerType
from core.logger import get_logger

if TYPE_CHECKING:
    from core.fsm import EmergencyStateMachine

_log = get_logger()


class HoldButton:
    """
    Manual trigger debounced by a press-and-hold gesture.

    Args:
        machine: State machine receiving ``trigger_emergency('manual')``.
        scheduler: Clock used for the hold timer and progress.
        hold_ms: Required hold duration.
        enabled: Disabled buttons ignore presses.
    """

    def __init__(
        self,
        machine: "EmergencyStateMachine",
        scheduler: Scheduler,
        hold_ms: int = C.BUTTON_HOLD_MS,
        enabled: bool = True,
    ) -> None:
        self._machine = machine
        self._scheduler = scheduler
        self._hold_ms = hold_ms
        self._enabled = enabled
        self._lock = threading.Lock()
        self._hold_started: Optional[float] = None
        self._timer: Optional[TimerHandle] = None
        self._hold_id = 0
        self._fired = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self.release()

    @property
    def is_pressed(self) -> bool:
        with self._lock:
            return self._hold_started is not None

    @property
    def progress(self) -> float:
        """Fraction of the hold completed, in [0, 1]; 0 when not pressed."""
        with self._lock:
            if self._hold_started is None:
                return 0.0
            elapsed = self._scheduler.now_ms() - self._hold_started
        return min(max(elapsed / self._hold_ms, 0.0), 1.0)

    @property
    def trigger_count(self) -> int:
        """Completed holds since construction."""
        return self._fired

    def press(self) -> bool:
        """
        Start a hold. A second press while already held is ignored, and so is
        any press while the machine is in EMERGENCY.

        Returns:
            True if a new hold started.
        """
        if self._machine.status is EmergencyStatus.EMERGENCY:
            _log.info("button", "press_ignored", {"status": "emergency"})
            return False
        with self._lock:
            if not self._enabled or self._hold_started is not None:
                return False
            self._hold_id += 1
            hold_id = self._hold_id
            self._hold_started = self._scheduler.now_ms()
            self._timer = self._scheduler.call_later(
                self._hold_ms, lambda: self._complete(hold_id)
            )
        return True

    def release(self) -> None:
        """End the hold; if it had not completed, nothing is triggered."""
        with self._lock:
            if self._hold_started is None:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._hold_started = None
            self._hold_id += 1
        _log.info("button", "released_early", {})

    def _complete(self, hold_id: int) -> None:
        escalated = self._machine.status is EmergencyStatus.EMERGENCY
        with self._lock:
            if hold_id != self._hold_id or self._hold_started is None:
                return
            self._hold_started = None
            self._timer = None
            self._hold_id += 1
            if not escalated:
                self._fired += 1
        if escalated:
            _log.info("button", "hold_dropped", {"status": "emergency"})
            return
        _log.warn("button", "hold_completed", {"hold_ms": self._hold_ms})
        self._machine.trigger_emergency(TriggerType.MANUAL)
