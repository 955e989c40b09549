"""
input/reminders.py — Daily care reminders for MatriGuard.

Besides nagging about vitamins and water, the reminder list is a source of
"activity detected" signals: completing any reminder proves the user is up
and about, which the concierge feeds back to the state machine as an
implicit safety confirmation while monitoring.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from core.clock import Scheduler, TimerHandle
from core.constants import C
from core.logger import get_logger

_log = get_logger()


class ReminderType(str, Enum):
    MEDICINE = "medicine"
    FOOD = "food"
    WATER = "water"
    EXERCISE = "exercise"
    REST = "rest"


class CompletionMethod(str, Enum):
    BUTTON = "button"
    VOICE = "voice"


@dataclass(frozen=True)
class Reminder:
    """
    A scheduled care reminder.

    Attributes:
        id: Unique reminder id.
        type: Category of reminder.
        title: Short display title.
        scheduled_time: When the reminder falls due.
        description: Optional longer text.
        is_completed: True once marked done.
        completed_at: When it was marked done.
        completion_method: How it was marked done.
    """

    id: str
    type: ReminderType
    title: str
    scheduled_time: datetime
    description: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    completion_method: Optional[CompletionMethod] = None


def default_reminders(now: datetime) -> list[Reminder]:
    """The starter reminder set, spaced from 30 minutes to 4 hours after ``now``."""
    return [
        Reminder(
            id="reminder-1",
            type=ReminderType.MEDICINE,
            title="Prenatal Vitamins",
            description="Take your daily prenatal vitamins with breakfast",
            scheduled_time=now + timedelta(minutes=30),
        ),
        Reminder(
            id="reminder-2",
            type=ReminderType.WATER,
            title="Hydration Check",
            description="Drink a glass of water",
            scheduled_time=now + timedelta(hours=1),
        ),
        Reminder(
            id="reminder-3",
            type=ReminderType.FOOD,
            title="Healthy Snack",
            description="Time for a nutritious snack",
            scheduled_time=now + timedelta(hours=2),
        ),
        Reminder(
            id="reminder-4",
            type=ReminderType.REST,
            title="Rest Break",
            description="Take a 15-minute rest break",
            scheduled_time=now + timedelta(hours=3),
        ),
        Reminder(
            id="reminder-5",
            type=ReminderType.EXERCISE,
            title="Gentle Stretching",
            description="Do some light stretching exercises",
            scheduled_time=now + timedelta(hours=4),
        ),
    ]


class ReminderScheduler:
    """
    Holds the reminder list, surfaces due reminders and reports activity.

    Args:
        scheduler: Clock for "now" and the periodic due check.
        on_reminder_completed: Called with the completed :class:`Reminder`.
        on_activity_detected: Called with no arguments on every completion.
        check_interval_ms: Period of the due-reminder check once started.
        seed_defaults: Start with :func:`default_reminders`.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        on_reminder_completed: Optional[Callable[[Reminder], None]] = None,
        on_activity_detected: Optional[Callable[[], None]] = None,
        check_interval_ms: int = C.REMINDER_CHECK_INTERVAL_MS,
        seed_defaults: bool = True,
    ) -> None:
        self._scheduler = scheduler
        self._on_completed = on_reminder_completed
        self._on_activity = on_activity_detected
        self._check_interval_ms = check_interval_ms
        self._lock = threading.Lock()
        self._reminders: list[Reminder] = (
            default_reminders(scheduler.wall_time()) if seed_defaults else []
        )
        self._active_id: Optional[str] = None
        self._timer: Optional[TimerHandle] = None
        self._next_id = 1

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────

    @property
    def reminders(self) -> list[Reminder]:
        with self._lock:
            return list(self._reminders)

    @property
    def active_reminder(self) -> Optional[Reminder]:
        """The reminder currently being shown to the user, if any."""
        with self._lock:
            return self._find(self._active_id) if self._active_id else None

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def upcoming(self) -> list[Reminder]:
        """Open reminders scheduled in the future, soonest first."""
        now = self._scheduler.wall_time()
        with self._lock:
            pending = [r for r in self._reminders if not r.is_completed and r.scheduled_time > now]
        return sorted(pending, key=lambda r: r.scheduled_time)

    def past_due(self) -> list[Reminder]:
        """Open reminders whose time has come, in list order."""
        now = self._scheduler.wall_time()
        with self._lock:
            return [r for r in self._reminders if not r.is_completed and r.scheduled_time <= now]

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    def add_reminder(
        self,
        type: ReminderType | str,
        title: str,
        scheduled_time: datetime,
        description: Optional[str] = None,
    ) -> Reminder:
        """Append a new open reminder and return it."""
        if not title.strip():
            raise ValueError("Reminder title must not be empty")
        with self._lock:
            reminder = Reminder(
                id=f"reminder-custom-{self._next_id}",
                type=ReminderType(type),
                title=title.strip(),
                description=description,
                scheduled_time=scheduled_time,
            )
            self._next_id += 1
            self._reminders.append(reminder)
        _log.info("reminders", "added", {"id": reminder.id, "type": reminder.type.value})
        return reminder

    def complete_reminder(
        self,
        reminder_id: str,
        method: CompletionMethod | str = CompletionMethod.BUTTON,
    ) -> Reminder:
        """
        Mark a reminder done and report activity.

        Raises:
            KeyError: If no reminder has ``reminder_id``.
        """
        method = CompletionMethod(method)
        now = self._scheduler.wall_time()
        with self._lock:
            for index, reminder in enumerate(self._reminders):
                if reminder.id == reminder_id:
                    break
            else:
                raise KeyError(f"Unknown reminder: {reminder_id}")
            completed = replace(
                reminder, is_completed=True, completed_at=now, completion_method=method
            )
            self._reminders[index] = completed
            if self._active_id == reminder_id:
                self._active_id = None

        _log.info("reminders", "completed", {"id": reminder_id, "method": method.value})
        if self._on_completed is not None:
            self._on_completed(completed)
        if self._on_activity is not None:
            self._on_activity()
        return completed

    def check_due(self) -> Optional[Reminder]:
        """
        Surface the first past-due reminder if none is currently active.

        Returns:
            The newly activated reminder, or None.
        """
        if self.active_reminder is not None:
            return None
        due = self.past_due()
        if not due:
            return None
        with self._lock:
            self._active_id = due[0].id
        _log.info("reminders", "due", {"id": due[0].id, "title": due[0].title})
        return due[0]

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def start(self) -> None:
        """Check immediately, then every ``check_interval_ms``."""
        if self._timer is not None:
            return
        self.check_due()
        self._timer = self._scheduler.call_every(self._check_interval_ms, self.check_due)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _find(self, reminder_id: str) -> Optional[Reminder]:
        for reminder in self._reminders:
            if reminder.id == reminder_id:
                return reminder
        return None
