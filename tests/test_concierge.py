"""
tests/test_concierge.py — Integration tests for pipeline.concierge.SafetyConcierge.

Every session runs on a ManualScheduler with a recording notifier, so the
full voice/button/reminder → machine → history/alerts loop is exercised
without real timers or console output.
"""

from __future__ import annotations

import io
import logging

import pytest

from core.clock import ManualScheduler
from core.config import ConciergeConfig, ReminderConfig, VoiceConfig, config_from_dict
from core.constants import STATUS_MESSAGES, EmergencyStatus, TriggerType
from input.voice import VoiceOutcome
from output.alerts import RecordingNotifier
from pipeline.concierge import SafetyConcierge, simulated_concierge

import main


@pytest.fixture()
def sink() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def concierge(sink: RecordingNotifier):
    cfg = ConciergeConfig(voice=VoiceConfig(enabled=True))
    c = SafetyConcierge(cfg, scheduler=ManualScheduler(), notifiers=[sink])
    yield c
    c.shutdown()


@pytest.fixture()
def ambient(sink: RecordingNotifier):
    cfg = ConciergeConfig(ambient_monitoring=True, voice=VoiceConfig(enabled=True))
    c = SafetyConcierge(cfg, scheduler=ManualScheduler(), notifiers=[sink])
    yield c
    c.shutdown()


class TestWiring:

    def test_voice_keyword_triggers(self, concierge: SafetyConcierge) -> None:
        assert concierge.hear("I'm bleeding") is VoiceOutcome.TRIGGERED
        event = concierge.machine.current_event
        assert concierge.status is EmergencyStatus.ALERT
        assert event.trigger_type is TriggerType.VOICE
        assert event.keyword == "bleeding"
        assert event.user_id == "user-1"

    def test_speech_confirms_safe(self, concierge: SafetyConcierge) -> None:
        concierge.hear("help")
        concierge.scheduler.advance(4_000)
        assert concierge.hear("all good, I just tripped") is VoiceOutcome.CONFIRMED_SAFE
        assert concierge.status is EmergencyStatus.SAFE
        assert concierge.history.latest().resolved_by == "self"

    def test_button_hold_triggers(self, concierge: SafetyConcierge) -> None:
        concierge.button.press()
        concierge.scheduler.advance(1_000)
        assert concierge.status is EmergencyStatus.ALERT
        assert concierge.machine.current_event.trigger_type is TriggerType.MANUAL

    def test_button_is_inert_during_emergency(
        self, concierge: SafetyConcierge, sink: RecordingNotifier
    ) -> None:
        concierge.hear("help")
        concierge.scheduler.advance(30_000)
        assert concierge.button.press() is False
        concierge.scheduler.advance(120_000)
        assert concierge.status is EmergencyStatus.EMERGENCY
        assert len(concierge.history) == 1
        assert sink.titles[-1] == STATUS_MESSAGES["escalate"][0]

    def test_voice_language_from_config(self, sink: RecordingNotifier) -> None:
        cfg = ConciergeConfig(voice=VoiceConfig(language="fr-FR"))
        with simulated_concierge(cfg, notifiers=[sink]) as c:
            assert c.voice.language == "fr-FR"

    def test_reminder_outside_monitoring_is_not_verification(
        self, concierge: SafetyConcierge
    ) -> None:
        concierge.hear("pain")
        concierge.complete_reminder("reminder-1")
        assert concierge.status is EmergencyStatus.ALERT
        assert concierge.machine.verification_attempts == []

    def test_voice_disabled_by_default_config(self, sink: RecordingNotifier) -> None:
        with simulated_concierge(ConciergeConfig(), notifiers=[sink]) as c:
            assert c.hear("help") is VoiceOutcome.IGNORED
            assert c.status is EmergencyStatus.SAFE

    def test_alerts_and_history_are_attached(
        self, concierge: SafetyConcierge, sink: RecordingNotifier
    ) -> None:
        concierge.hear("dizzy")
        concierge.scheduler.advance(30_000)
        assert len(sink.notices) == 2
        assert len(concierge.history) == 1
        assert concierge.history.latest().status is EmergencyStatus.EMERGENCY


class TestAmbientMonitoring:

    def test_starts_in_monitoring(self, ambient: SafetyConcierge) -> None:
        assert ambient.monitoring_enabled
        assert ambient.status is EmergencyStatus.MONITORING
        assert ambient.reminders.is_running

    def test_reminder_completion_counts_as_activity(self, ambient: SafetyConcierge) -> None:
        clock = ambient.scheduler
        clock.advance(1_700_000)
        ambient.complete_reminder("reminder-1", "voice")
        assert len(ambient.machine.verification_attempts) == 1
        clock.advance(1_000_000)   # past the original deadline
        assert ambient.status is EmergencyStatus.MONITORING

    def test_inactivity_trigger(self, ambient: SafetyConcierge) -> None:
        ambient.scheduler.advance(1_800_000)
        assert ambient.status is EmergencyStatus.ALERT
        assert ambient.machine.current_event.trigger_type is TriggerType.INACTIVITY

    def test_returns_to_monitoring_after_episode(self, ambient: SafetyConcierge) -> None:
        ambient.hear("help")
        ambient.hear("I'm fine, dropped my phone")
        assert ambient.status is EmergencyStatus.MONITORING

        ambient.hear("help")
        ambient.machine.resolve_emergency("partner")
        ambient.scheduler.advance(3_000)
        assert ambient.status is EmergencyStatus.MONITORING

    def test_disable_monitoring(self, ambient: SafetyConcierge) -> None:
        ambient.disable_monitoring()
        assert ambient.status is EmergencyStatus.SAFE
        ambient.hear("help")
        ambient.machine.verify_safe("button")
        assert ambient.status is EmergencyStatus.SAFE


class TestLifecycle:

    def test_shutdown_cancels_everything(self, sink: RecordingNotifier) -> None:
        clock = ManualScheduler()
        cfg = ConciergeConfig(ambient_monitoring=True)
        c = SafetyConcierge(cfg, scheduler=clock, notifiers=[sink])
        c.button.press()
        c.shutdown()
        c.shutdown()
        assert clock.pending() == 0
        assert c.machine.is_disposed
        assert not c.reminders.is_running

    def test_owned_thread_scheduler_is_shut_down(self, sink: RecordingNotifier) -> None:
        cfg = ConciergeConfig(reminders=ReminderConfig(seed_defaults=False))
        with SafetyConcierge(cfg, notifiers=[sink]) as c:
            c.machine.trigger_emergency("manual")
            scheduler = c.scheduler
        assert scheduler.pending() == 0
        with pytest.raises(RuntimeError):
            scheduler.call_later(10, lambda: None)

    def test_config_from_dict_end_to_end(self, sink: RecordingNotifier) -> None:
        cfg = config_from_dict({
            "user_id": "maria",
            "emergency": {"verification_timeout_ms": 10_000},
            "voice": {"enabled": True, "keywords": ["contractions"]},
        })
        with simulated_concierge(cfg, notifiers=[sink]) as c:
            assert c.hear("help") is VoiceOutcome.IGNORED
            c.hear("contractions every five minutes")
            c.scheduler.advance(10_000)
            assert c.status is EmergencyStatus.EMERGENCY
            assert c.history.latest().user_id == "maria"


class TestCli:

    @pytest.mark.parametrize("name, final", [
        ("voice", "safe"),
        ("escalate", "emergency"),
        ("contact", "safe"),
        ("full", "monitoring"),
    ])
    def test_demo_runs(self, name: str, final: str) -> None:
        out = io.StringIO()
        assert main.run_demo(name, ConciergeConfig(), out=out) == 0
        text = out.getvalue()
        assert f"Final status: {final}" in text

    def test_escalate_demo_prints_escalation(self) -> None:
        out = io.StringIO()
        main.run_demo("escalate", ConciergeConfig(), out=out)
        assert "escalate: contact emergency services" in out.getvalue()

    def test_interactive_commands(self) -> None:
        cfg = ConciergeConfig(reminders=ReminderConfig(seed_defaults=True))
        stdin = io.StringIO(
            "help me\n"
            ":status\n"
            ":danger sister\n"
            ":resolve sister\n"
            ":done reminder-77\n"
            ":bogus\n"
            ":quit\n"
            "help\n"
        )
        out = io.StringIO()
        assert main.run_interactive(cfg, stdin=stdin, out=out) == 0
        text = out.getvalue()
        assert "(heard: triggered)" in text
        assert "status=alert" in text
        assert "confirmed_by:sister" in text
        assert "resolved_by:sister" in text
        assert "Unknown reminder" in text
        assert text.count("(heard: triggered)") == 1

    def test_main_rejects_bad_config(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("emergency:\n  verification_timeout_ms: -1\n", encoding="utf-8")
        assert main.main(["--config", str(path), "--demo", "voice"]) == 2

    def test_log_level_reaches_audit_echo(self) -> None:
        echo = logging.getLogger("matriguard")
        previous = echo.level
        try:
            assert main.main(["--log-level", "WARN", "--demo", "voice"]) == 0
            assert echo.level == logging.WARNING
        finally:
            echo.setLevel(previous)
