"""
input/voice.py — Voice keyword trigger for MatriGuard.

Consumes transcribed utterances (no speech recognition happens here) and
drives the emergency state machine:

- an utterance containing an emergency keyword raises a ``voice`` trigger;
- otherwise, any utterance longer than ``min_confirm_chars`` heard while the
  machine is in ALERT counts as the user confirming they are safe.

The second rule is a length heuristic, not language understanding.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional, Protocol, runtime_checkable

from core.constants import C, EmergencyStatus, TriggerType, VerificationMethod
from core.logger import get_logger

if TYPE_CHECKING:
    from core.fsm import EmergencyStateMachine

_log = get_logger()


# ──────────────────────────────────────────────────────────────
# Transcript sources
# ──────────────────────────────────────────────────────────────

@runtime_checkable
class TranscriptSource(Protocol):
    """Minimal interface required of any transcript provider."""

    @property
    def is_supported(self) -> bool:
        """False when the platform has no speech recognition."""
        ...

    def poll(self) -> Optional[str]:
        """Return the next finished utterance, or None if nothing is pending."""
        ...


class QueueTranscriptSource:
    """In-memory transcript feed for tests, the CLI and offline replay."""

    def __init__(self, utterances: Iterable[str] = (), supported: bool = True) -> None:
        self._queue: deque[str] = deque(utterances)
        self._supported = supported

    @property
    def is_supported(self) -> bool:
        return self._supported

    def push(self, utterance: str) -> None:
        self._queue.append(utterance)

    def poll(self) -> Optional[str]:
        return self._queue.popleft() if self._queue else None

    def __len__(self) -> int:
        return len(self._queue)


# ──────────────────────────────────────────────────────────────
# Keyword spotting
# ──────────────────────────────────────────────────────────────

def normalise_keywords(keywords: Iterable[str]) -> tuple[str, ...]:
    """Lower-case, strip and de-duplicate keywords, keeping first-seen order."""
    seen: dict[str, None] = {}
    for keyword in keywords:
        cleaned = keyword.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


def detect_keyword(transcript: str, keywords: Iterable[str]) -> Optional[str]:
    """
    Return the first keyword (in ``keywords`` order) contained in ``transcript``.

    Matching is a case-insensitive substring test, so ``"helpless"`` matches
    ``"help"``.
    """
    lowered = transcript.lower()
    for keyword in keywords:
        if keyword and keyword in lowered:
            return keyword
    return None


class VoiceOutcome(Enum):
    """What :meth:`VoiceTrigger.handle_transcript` did with an utterance."""

    TRIGGERED = "triggered"
    CONFIRMED_SAFE = "confirmed_safe"
    IGNORED = "ignored"


# ──────────────────────────────────────────────────────────────
# VoiceTrigger
# ──────────────────────────────────────────────────────────────

class VoiceTrigger:
    """
    Bridges a transcript stream to the emergency state machine.

    Args:
        machine: The state machine to drive.
        keywords: Emergency keywords; defaults to ``C.EMERGENCY_KEYWORDS``.
        min_confirm_chars: Utterances strictly longer than this confirm safety in ALERT.
        enabled: Start listening immediately.
        language: Recognition locale of the transcript feed (e.g. ``en-US``).
        supported: Whether speech recognition is available at all.
    """

    def __init__(
        self,
        machine: "EmergencyStateMachine",
        keywords: Iterable[str] = C.EMERGENCY_KEYWORDS,
        min_confirm_chars: int = C.MIN_CONFIRM_UTTERANCE_CHARS,
        enabled: bool = True,
        supported: bool = True,
        language: str = C.VOICE_LANGUAGE,
    ) -> None:
        self._machine = machine
        self._keywords = normalise_keywords(keywords)
        self._min_confirm_chars = min_confirm_chars
        self._supported = supported
        self._language = language
        self._listening = enabled and supported
        self._last_transcript = ""

        _log.info("voice", "init", {
            "language": language,
            "keywords": list(self._keywords),
            "min_confirm_chars": min_confirm_chars,
            "listening": self._listening,
            "supported": supported,
        })

    # ──────────────────────────────────────────
    # State
    # ──────────────────────────────────────────

    @property
    def is_supported(self) -> bool:
        return self._supported

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def language(self) -> str:
        return self._language

    @property
    def last_transcript(self) -> str:
        return self._last_transcript

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def start_listening(self) -> bool:
        """Begin reacting to transcripts. Returns False if voice is unsupported."""
        if not self._supported:
            _log.warn("voice", "unsupported", {})
            return False
        self._listening = True
        _log.info("voice", "listening_started", {})
        return True

    def stop_listening(self) -> None:
        self._listening = False
        _log.info("voice", "listening_stopped", {})

    def toggle(self) -> bool:
        """Flip listening on/off; returns the new listening state."""
        if self._listening:
            self.stop_listening()
        else:
            self.start_listening()
        return self._listening

    def add_keyword(self, keyword: str) -> bool:
        """Add a keyword. Returns False if it was blank or already present."""
        cleaned = keyword.strip().lower()
        if not cleaned or cleaned in self._keywords:
            return False
        self._keywords = self._keywords + (cleaned,)
        _log.info("voice", "keyword_added", {"keyword": cleaned})
        return True

    def remove_keyword(self, keyword: str) -> bool:
        cleaned = keyword.strip().lower()
        if cleaned not in self._keywords:
            return False
        self._keywords = tuple(k for k in self._keywords if k != cleaned)
        _log.info("voice", "keyword_removed", {"keyword": cleaned})
        return True

    # ──────────────────────────────────────────
    # Transcript handling
    # ──────────────────────────────────────────

    def handle_transcript(self, transcript: str) -> VoiceOutcome:
        """
        React to one finished utterance.

        A keyword always wins over the confirmation heuristic, so "help me
        please" in ALERT starts a fresh episode rather than closing the
        current one; the machine marks the earlier episode superseded.
        """
        if not self._listening:
            return VoiceOutcome.IGNORED

        self._last_transcript = transcript
        keyword = detect_keyword(transcript, self._keywords)
        if keyword is not None:
            _log.warn("voice", "keyword_detected", {"keyword": keyword})
            self._machine.trigger_emergency(TriggerType.VOICE, keyword)
            return VoiceOutcome.TRIGGERED

        if (
            self._machine.status is EmergencyStatus.ALERT
            and len(transcript) > self._min_confirm_chars
        ):
            _log.info("voice", "speech_confirms_safe", {"chars": len(transcript)})
            self._machine.verify_safe(VerificationMethod.VOICE)
            return VoiceOutcome.CONFIRMED_SAFE

        return VoiceOutcome.IGNORED

    def pump(self, source: TranscriptSource) -> list[VoiceOutcome]:
        """Drain every pending utterance from ``source``."""
        if not source.is_supported:
            return []
        outcomes: list[VoiceOutcome] = []
        while (utterance := source.poll()) is not None:
            outcomes.append(self.handle_transcript(utterance))
        return outcomes
