"""
core/constants.py — All system constants for MatriGuard.

Status / trigger / verification enums, the escalation timing budget, voice
keyword defaults, and the user-facing status messages consumed by
:mod:`output.alerts`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────

class EmergencyStatus(str, Enum):
    """All valid statuses for the emergency escalation state machine."""

    SAFE = "safe"
    MONITORING = "monitoring"
    ALERT = "alert"
    EMERGENCY = "emergency"
    RESOLVED = "resolved"


class TriggerType(str, Enum):
    """What started an emergency episode."""

    VOICE = "voice"
    MANUAL = "manual"
    INACTIVITY = "inactivity"


class VerificationMethod(str, Enum):
    """How the user proved they are safe."""

    VOICE = "voice"
    BUTTON = "button"
    ACTIVITY = "activity"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConciergeConstants:
    """
    Frozen dataclass holding the MatriGuard timing and trigger constants.

    Use the class attributes directly — do not instantiate this class.
    Values here are the built-in defaults; :mod:`core.config` can override
    the timing values per deployment.

    Example::

        from core.constants import C, EmergencyStatus

        print(C.VERIFICATION_TIMEOUT_MS)   # 30000
        print(EmergencyStatus.ALERT)       # EmergencyStatus.ALERT
    """

    # ── Timing (milliseconds) ─────────────────────────────────
    VERIFICATION_TIMEOUT_MS: ClassVar[int] = 30_000
    """Time allowed to confirm safety before auto-escalating to EMERGENCY."""

    ESCALATION_TIMEOUT_MS: ClassVar[int] = 120_000
    """Time after escalation before recommending external emergency services."""

    RESOLVED_REVERT_MS: ClassVar[int] = 3_000
    """Delay between RESOLVED and the automatic return to SAFE."""

    COUNTDOWN_TICK_MS: ClassVar[int] = 1_000
    """Granularity of the user-visible countdown."""

    INACTIVITY_TIMEOUT_MS: ClassVar[int] = 1_800_000
    """No sign of activity for this long while MONITORING raises an inactivity trigger."""

    BUTTON_HOLD_MS: ClassVar[int] = 1_000
    """Press-and-hold duration for the manual emergency button."""

    REMINDER_CHECK_INTERVAL_MS: ClassVar[int] = 30_000
    """How often the reminder scheduler looks for due reminders."""

    # ── Voice ─────────────────────────────────────────────────
    MIN_CONFIRM_UTTERANCE_CHARS: ClassVar[int] = 10
    """An utterance longer than this while in ALERT counts as a voice confirmation."""

    EMERGENCY_KEYWORDS: ClassVar[tuple[str, ...]] = (
        "help",
        "pain",
        "emergency",
        "hurt",
        "fall",
        "bleeding",
        "faint",
        "dizzy",
    )
    """Keywords that raise a voice trigger; matched as lowercase substrings in order."""

    VOICE_LANGUAGE: ClassVar[str] = "en-US"

    # ── Identity / history ────────────────────────────────────
    DEFAULT_USER_ID: ClassVar[str] = "user-1"

    MAX_TRANSITION_HISTORY: ClassVar[int] = 50
    """Maximum number of transition records kept by the history recorder."""

    # ── Status reference ──────────────────────────────────────
    Status: ClassVar[type[EmergencyStatus]] = EmergencyStatus
    """Convenience reference to :class:`EmergencyStatus` — use ``C.Status.SAFE``."""


# ──────────────────────────────────────────────────────────────
# Module-level convenience alias
# ──────────────────────────────────────────────────────────────

#: Short alias: ``from core.constants import C``
C = ConciergeConstants

#: Statuses in which an emergency episode is live and can be confirmed or resolved.
ACTIVE_STATUSES: frozenset[EmergencyStatus] = frozenset(
    {EmergencyStatus.ALERT, EmergencyStatus.EMERGENCY}
)

# ── Notification copy (consumed by output.alerts) ─────────────────────────────

ESCALATE_MESSAGE_KEY = "escalate"

STATUS_MESSAGES: dict[str, tuple[str, str]] = {
    EmergencyStatus.ALERT.value: (
        "Emergency Alert Detected",
        "Please confirm you are safe by pressing the button or speaking.",
    ),
    EmergencyStatus.EMERGENCY.value: (
        "EMERGENCY MODE ACTIVATED",
        "Trusted contacts have been notified.",
    ),
    EmergencyStatus.SAFE.value: (
        "Status: Safe",
        "Everything is okay. Monitoring continues.",
    ),
    ESCALATE_MESSAGE_KEY: (
        "Emergency Services Recommended",
        "No response received. Consider calling emergency services.",
    ),
}
"""Title / description pairs keyed by status value (plus ``'escalate'``)."""
