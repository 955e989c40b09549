"""
tests/test_history.py — Tests for core.history.EmergencyHistoryRecorder.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from core.clock import ManualScheduler
from core.constants import EmergencyStatus, TriggerType
from core.fsm import EmergencyStateMachine
from core.history import EmergencyHistoryRecorder


@pytest.fixture()
def recorder(machine: EmergencyStateMachine) -> EmergencyHistoryRecorder:
    rec = EmergencyHistoryRecorder()
    rec.attach(machine)
    return rec


class TestRecording:

    def test_empty(self) -> None:
        rec = EmergencyHistoryRecorder()
        assert len(rec) == 0
        assert rec.latest() is None
        assert rec.last_resolved() is None
        assert rec.events() == []

    def test_keeps_episode_after_machine_discards_it(
        self, machine: EmergencyStateMachine, clock: ManualScheduler,
        recorder: EmergencyHistoryRecorder,
    ) -> None:
        machine.trigger_emergency("voice", "pain")
        event_id = machine.current_event.id
        machine.resolve_emergency("husband")
        clock.advance(3_000)

        assert machine.current_event is None
        kept = recorder.get(event_id)
        assert kept is not None
        assert kept.status is EmergencyStatus.RESOLVED
        assert kept.resolved_by == "husband"
        assert recorder.last_resolved() == kept

    def test_one_entry_per_episode(
        self, machine: EmergencyStateMachine, clock: ManualScheduler,
        recorder: EmergencyHistoryRecorder,
    ) -> None:
        machine.trigger_emergency("manual")
        clock.advance(30_000)
        machine.confirm_danger("sister")
        assert len(recorder) == 1
        assert recorder.latest().status is EmergencyStatus.EMERGENCY

    def test_superseded_episode_is_closed_out(
        self, machine: EmergencyStateMachine, clock: ManualScheduler,
        recorder: EmergencyHistoryRecorder,
    ) -> None:
        machine.trigger_emergency("manual")
        first = machine.current_event.id
        clock.advance(30_000)
        machine.trigger_emergency("voice", "bleeding")
        second = machine.current_event.id

        old = recorder.get(first)
        assert old.status is EmergencyStatus.EMERGENCY
        assert old.superseded_by == second
        assert recorder.latest().id == second
        assert [e.id for e in recorder.events()] == [second, first]
        assert recorder.to_dicts()[1]["superseded_by"] == second

    def test_events_newest_first(
        self, machine: EmergencyStateMachine, recorder: EmergencyHistoryRecorder
    ) -> None:
        machine.trigger_emergency("manual")
        first = machine.current_event.id
        machine.verify_safe("button")
        machine.trigger_emergency("voice", "dizzy")
        second = machine.current_event.id

        assert [e.id for e in recorder.events()] == [second, first]
        assert recorder.latest().id == second
        assert recorder.latest().trigger_type is TriggerType.VOICE

    def test_transitions_oldest_first(
        self, machine: EmergencyStateMachine, recorder: EmergencyHistoryRecorder
    ) -> None:
        machine.trigger_emergency("manual")
        machine.verify_safe("button")
        pairs = [(t.from_status, t.to_status) for t in recorder.transitions()]
        assert pairs == [
            (EmergencyStatus.SAFE, EmergencyStatus.ALERT),
            (EmergencyStatus.ALERT, EmergencyStatus.SAFE),
        ]

    def test_transition_log_is_capped(self, machine: EmergencyStateMachine) -> None:
        rec = EmergencyHistoryRecorder(max_transitions=3)
        rec.attach(machine)
        for _ in range(5):
            machine.trigger_emergency("manual")
        assert len(rec.transitions()) == 3
        assert len(rec) == 5

    def test_attach_twice_raises(
        self, machine: EmergencyStateMachine, recorder: EmergencyHistoryRecorder
    ) -> None:
        with pytest.raises(RuntimeError):
            recorder.attach(machine)

    def test_detach_stops_recording(
        self, machine: EmergencyStateMachine, recorder: EmergencyHistoryRecorder
    ) -> None:
        recorder.detach()
        machine.trigger_emergency("manual")
        assert len(recorder) == 0


class TestExport:

    def test_to_dicts_shape(
        self, machine: EmergencyStateMachine, recorder: EmergencyHistoryRecorder
    ) -> None:
        machine.trigger_emergency("voice", "help")
        machine.verify_safe("voice")
        row = recorder.to_dicts()[0]
        assert row["trigger_type"] == "voice"
        assert row["keyword"] == "help"
        assert row["status"] == "resolved"
        assert row["resolved_by"] == "self"
        assert row["verification_attempts"][0]["type"] == "voice"
        assert row["location"]["address"] == "123 Main Street, New York, NY"

    def test_export_jsonl(
        self, machine: EmergencyStateMachine, recorder: EmergencyHistoryRecorder,
        tmp_path: Path,
    ) -> None:
        machine.trigger_emergency("manual")
        machine.trigger_emergency("voice", "fall")
        out = tmp_path / "exports" / "history.jsonl"
        assert recorder.export_jsonl(out) == 2
        lines = out.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["keyword"] == "fall"
