"""
tests/test_voice.py — Tests for input.voice keyword spotting and VoiceTrigger.
"""

from __future__ import annotations

import pytest

from core.clock import ManualScheduler
from core.constants import C, EmergencyStatus, TriggerType, VerificationMethod
from core.fsm import EmergencyStateMachine
from input.voice import (
    QueueTranscriptSource,
    TranscriptSource,
    VoiceOutcome,
    VoiceTrigger,
    detect_keyword,
    normalise_keywords,
)


@pytest.fixture()
def voice(machine: EmergencyStateMachine) -> VoiceTrigger:
    return VoiceTrigger(machine)


class TestKeywordDetection:

    @pytest.mark.parametrize("transcript, expected", [
        ("Help me please", "help"),
        ("I have a sharp PAIN in my side", "pain"),
        ("I think I'm going to faint", "faint"),
        ("feeling a bit dizzy", "dizzy"),
        ("that was helpful, thanks", "help"),
        ("what a lovely afternoon", None),
        ("", None),
    ])
    def test_detect_keyword(self, transcript: str, expected) -> None:
        assert detect_keyword(transcript, C.EMERGENCY_KEYWORDS) == expected

    def test_first_keyword_in_list_order_wins(self) -> None:
        assert detect_keyword("pain, help", ["help", "pain"]) == "help"
        assert detect_keyword("pain, help", ["pain", "help"]) == "pain"

    def test_normalise_keywords(self) -> None:
        assert normalise_keywords([" Help", "PAIN", "help", "", "  "]) == ("help", "pain")


class TestVoiceTrigger:

    def test_keyword_triggers_voice_emergency(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine
    ) -> None:
        assert voice.handle_transcript("Please HELP, I fell") is VoiceOutcome.TRIGGERED
        event = machine.current_event
        assert machine.status is EmergencyStatus.ALERT
        assert event.trigger_type is TriggerType.VOICE
        assert event.keyword == "help"
        assert voice.last_transcript == "Please HELP, I fell"

    def test_long_utterance_in_alert_confirms_safe(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine
    ) -> None:
        machine.trigger_emergency("manual")
        outcome = voice.handle_transcript("I'm okay, just sat down")
        assert outcome is VoiceOutcome.CONFIRMED_SAFE
        assert machine.status is EmergencyStatus.SAFE
        assert machine.verification_attempts[0].type is VerificationMethod.VOICE

    def test_short_utterance_in_alert_is_ignored(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine
    ) -> None:
        machine.trigger_emergency("manual")
        assert voice.handle_transcript("okay now") is VoiceOutcome.IGNORED
        # Exactly at the threshold is still too short
        assert voice.handle_transcript("x" * C.MIN_CONFIRM_UTTERANCE_CHARS) is VoiceOutcome.IGNORED
        assert machine.status is EmergencyStatus.ALERT

    def test_keyword_in_alert_starts_fresh_episode(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine
    ) -> None:
        machine.trigger_emergency("manual")
        first = machine.current_event.id
        assert voice.handle_transcript("the pain is getting worse") is VoiceOutcome.TRIGGERED
        assert machine.status is EmergencyStatus.ALERT
        assert machine.current_event.id != first
        assert machine.current_event.keyword == "pain"

    def test_long_utterance_outside_alert_is_ignored(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine, clock: ManualScheduler
    ) -> None:
        assert voice.handle_transcript("just chatting about the weather") is VoiceOutcome.IGNORED
        machine.trigger_emergency("manual")
        clock.advance(30_000)
        assert voice.handle_transcript("sorry, I was asleep") is VoiceOutcome.IGNORED
        assert machine.status is EmergencyStatus.EMERGENCY

    def test_not_listening_ignores_everything(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine
    ) -> None:
        voice.stop_listening()
        assert voice.handle_transcript("help") is VoiceOutcome.IGNORED
        assert machine.status is EmergencyStatus.SAFE

    def test_unsupported_cannot_listen(self, machine: EmergencyStateMachine) -> None:
        voice = VoiceTrigger(machine, supported=False)
        assert not voice.is_supported
        assert not voice.is_listening
        assert voice.start_listening() is False
        assert voice.handle_transcript("help") is VoiceOutcome.IGNORED

    def test_toggle(self, voice: VoiceTrigger) -> None:
        assert voice.is_listening
        assert voice.toggle() is False
        assert voice.toggle() is True

    def test_language_defaults_and_override(self, machine: EmergencyStateMachine) -> None:
        assert VoiceTrigger(machine).language == "en-US"
        assert VoiceTrigger(machine, language="es-MX").language == "es-MX"

    def test_custom_keywords(self, machine: EmergencyStateMachine) -> None:
        voice = VoiceTrigger(machine, keywords=["Contractions"])
        assert voice.keywords == ("contractions",)
        assert voice.add_keyword("waters broke") is True
        assert voice.add_keyword("CONTRACTIONS") is False
        assert voice.remove_keyword("contractions") is True
        assert voice.remove_keyword("contractions") is False
        assert voice.handle_transcript("I think my waters broke") is VoiceOutcome.TRIGGERED
        assert machine.current_event.keyword == "waters broke"


class TestTranscriptSource:

    def test_queue_source_conforms(self) -> None:
        assert isinstance(QueueTranscriptSource(), TranscriptSource)

    def test_pump_drains_in_order(
        self, voice: VoiceTrigger, machine: EmergencyStateMachine
    ) -> None:
        source = QueueTranscriptSource(["good morning", "I feel dizzy"])
        source.push("I'm fine, false alarm honestly")
        outcomes = voice.pump(source)
        assert outcomes == [
            VoiceOutcome.IGNORED,
            VoiceOutcome.TRIGGERED,
            VoiceOutcome.CONFIRMED_SAFE,
        ]
        assert len(source) == 0
        assert machine.status is EmergencyStatus.SAFE

    def test_pump_unsupported_source(self, voice: VoiceTrigger) -> None:
        source = QueueTranscriptSource(["help"], supported=False)
        assert voice.pump(source) == []
        assert len(source) == 1
