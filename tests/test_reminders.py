"""
tests/test_reminders.py — Tests for input.reminders.ReminderScheduler.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from core.clock import ManualScheduler
from input.reminders import (
    CompletionMethod,
    Reminder,
    ReminderScheduler,
    ReminderType,
    default_reminders,
)


@pytest.fixture()
def completions() -> dict[str, list]:
    return {"completed": [], "activity": []}


@pytest.fixture()
def reminders(clock: ManualScheduler, completions: dict[str, list]) -> ReminderScheduler:
    return ReminderScheduler(
        clock,
        on_reminder_completed=completions["completed"].append,
        on_activity_detected=lambda: completions["activity"].append(True),
    )


class TestDefaults:

    def test_default_set(self, clock: ManualScheduler) -> None:
        now = clock.wall_time()
        items = default_reminders(now)
        assert [r.id for r in items] == [f"reminder-{i}" for i in range(1, 6)]
        assert items[0].type is ReminderType.MEDICINE
        assert items[0].scheduled_time == now + timedelta(minutes=30)
        assert items[-1].scheduled_time == now + timedelta(hours=4)
        assert not any(r.is_completed for r in items)

    def test_seed_defaults_off(self, clock: ManualScheduler) -> None:
        assert ReminderScheduler(clock, seed_defaults=False).reminders == []


class TestCompletion:

    def test_complete_reports_activity(
        self, reminders: ReminderScheduler, completions: dict[str, list],
        clock: ManualScheduler,
    ) -> None:
        done = reminders.complete_reminder("reminder-2", "voice")
        assert done.is_completed
        assert done.completion_method is CompletionMethod.VOICE
        assert done.completed_at == clock.wall_time()
        assert completions["completed"] == [done]
        assert completions["activity"] == [True]

    def test_completed_reminder_replaced_in_list(self, reminders: ReminderScheduler) -> None:
        reminders.complete_reminder("reminder-1")
        first = reminders.reminders[0]
        assert first.id == "reminder-1"
        assert first.is_completed
        assert first.completion_method is CompletionMethod.BUTTON

    def test_unknown_id_raises(
        self, reminders: ReminderScheduler, completions: dict[str, list]
    ) -> None:
        with pytest.raises(KeyError):
            reminders.complete_reminder("reminder-99")
        assert completions["activity"] == []

    def test_reminders_are_immutable_snapshots(self, reminders: ReminderScheduler) -> None:
        before: Reminder = reminders.reminders[0]
        reminders.complete_reminder("reminder-1")
        assert before.is_completed is False


class TestScheduling:

    def test_upcoming_sorted_and_excludes_completed(
        self, reminders: ReminderScheduler, clock: ManualScheduler
    ) -> None:
        reminders.add_reminder("water", "Extra water", clock.wall_time() + timedelta(minutes=10))
        reminders.complete_reminder("reminder-3")
        ids = [r.id for r in reminders.upcoming()]
        assert ids == ["reminder-custom-1", "reminder-1", "reminder-2",
                       "reminder-4", "reminder-5"]

    def test_check_due_surfaces_first_past_due(
        self, reminders: ReminderScheduler, clock: ManualScheduler
    ) -> None:
        assert reminders.check_due() is None
        clock.advance(60 * 60_000)   # +1 h: reminders 1 and 2 due
        due = reminders.check_due()
        assert due.id == "reminder-1"
        assert reminders.active_reminder.id == "reminder-1"
        # Only one active at a time
        assert reminders.check_due() is None

        reminders.complete_reminder("reminder-1")
        assert reminders.active_reminder is None
        assert reminders.check_due().id == "reminder-2"

    def test_start_checks_periodically(
        self, reminders: ReminderScheduler, clock: ManualScheduler
    ) -> None:
        reminders.start()
        assert reminders.is_running
        assert reminders.active_reminder is None
        clock.advance(30 * 60_000)
        assert reminders.active_reminder.id == "reminder-1"
        reminders.stop()
        assert not reminders.is_running
        assert clock.pending() == 0

    def test_start_twice_keeps_one_timer(
        self, reminders: ReminderScheduler, clock: ManualScheduler
    ) -> None:
        reminders.start()
        reminders.start()
        assert clock.pending() == 1
        reminders.stop()

    def test_add_reminder(self, reminders: ReminderScheduler, clock: ManualScheduler) -> None:
        added = reminders.add_reminder(
            ReminderType.REST, "  Nap  ", clock.wall_time(), description="Feet up"
        )
        assert added.id == "reminder-custom-1"
        assert added.title == "Nap"
        assert reminders.add_reminder("food", "Lunch", clock.wall_time()).id == "reminder-custom-2"
        assert len(reminders.reminders) == 7

    def test_add_reminder_rejects_bad_input(
        self, reminders: ReminderScheduler, clock: ManualScheduler
    ) -> None:
        with pytest.raises(ValueError):
            reminders.add_reminder("water", "   ", clock.wall_time())
        with pytest.raises(ValueError):
            reminders.add_reminder("yoga", "Stretch", clock.wall_time())
