"""
pipeline/concierge.py — SafetyConcierge: wires MatriGuard together.

Builds the clock, state machine, history recorder, alert dispatcher and the
three trigger collaborators in dependency order, and connects them::

    VoiceTrigger ──keyword──────► trigger_emergency('voice', kw)
                 ──long speech──► verify_safe('voice')        (ALERT only)
    HoldButton   ──1 s hold─────► trigger_emergency('manual')
    Reminders    ──completion───► verify_safe('activity')     (MONITORING only)

    EmergencyStateMachine ──► EmergencyHistoryRecorder, AlertDispatcher
"""

from __future__ import annotations

import time
from typing import Iterable, Optional

from core.clock import ManualScheduler, Scheduler, ThreadScheduler
from core.config import ConciergeConfig, load_config
from core.constants import EmergencyStatus, VerificationMethod
from core.fsm import EmergencyStateMachine
from core.history import EmergencyHistoryRecorder
from core.logger import get_logger
from input.button import HoldButton
from input.reminders import Reminder, ReminderScheduler
from input.voice import VoiceOutcome, VoiceTrigger
from output.alerts import AlertDispatcher, ConsoleNotifier, Notifier


class SafetyConcierge:
    """
    Owns one user's emergency session.

    Subsystem initialisation order:

    1.  :func:`~core.logger.get_logger` (singleton)
    2.  Scheduler (:class:`~core.clock.ThreadScheduler` unless one is injected)
    3.  :class:`~core.fsm.EmergencyStateMachine`
    4.  :class:`~core.history.EmergencyHistoryRecorder`
    5.  :class:`~output.alerts.AlertDispatcher`
    6.  :class:`~input.voice.VoiceTrigger`
    7.  :class:`~input.button.HoldButton`
    8.  :class:`~input.reminders.ReminderScheduler`

    Args:
        config: Loaded configuration; :func:`~core.config.load_config` if None.
        scheduler: Clock to run on. A :class:`ThreadScheduler` is created
            (and owned) when omitted.
        notifiers: Alert sinks; a :class:`ConsoleNotifier` when omitted.

    Example::

        with SafetyConcierge(scheduler=ManualScheduler()) as concierge:
            concierge.hear("please help")
            concierge.scheduler.advance(30_000)
    """

    def __init__(
        self,
        config: Optional[ConciergeConfig] = None,
        scheduler: Optional[Scheduler] = None,
        notifiers: Optional[Iterable[Notifier]] = None,
    ) -> None:
        # ── 1. Core logger ────────────────────────────────────────────────
        _t = time.perf_counter()
        self._log = get_logger()
        self._config = config or load_config()

        # ── 2. Scheduler ──────────────────────────────────────────────────
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler or ThreadScheduler()

        # ── 3. State machine ──────────────────────────────────────────────
        self._machine = EmergencyStateMachine(
            self._scheduler,
            config=self._config.emergency,
            location_provider=self._config.location.as_input,
            user_id=self._config.user_id,
        )

        # ── 4. History (subscribed first so it sees every transition) ─────
        self._history = EmergencyHistoryRecorder()
        self._history.attach(self._machine)

        # ── 5. Alerts ─────────────────────────────────────────────────────
        self._alerts = AlertDispatcher(
            list(notifiers) if notifiers is not None else [ConsoleNotifier()]
        )
        self._alerts.attach(self._machine)

        # ── 6-8. Trigger collaborators ────────────────────────────────────
        voice_cfg = self._config.voice
        self._voice = VoiceTrigger(
            self._machine,
            keywords=voice_cfg.keywords,
            min_confirm_chars=voice_cfg.min_confirm_chars,
            enabled=voice_cfg.enabled,
            language=voice_cfg.language,
        )
        self._button = HoldButton(
            self._machine, self._scheduler, hold_ms=self._config.button.hold_ms
        )
        self._reminders = ReminderScheduler(
            self._scheduler,
            on_activity_detected=self._on_activity_detected,
            check_interval_ms=self._config.reminders.check_interval_ms,
            seed_defaults=self._config.reminders.seed_defaults,
        )

        self._ambient = False
        self._machine.subscribe_status(self._on_status_change)
        self._closed = False
        if self._config.ambient_monitoring:
            self.enable_monitoring()

        self._log.perf("pipeline", "init_concierge",
                       (time.perf_counter() - _t) * 1_000.0,
                       {"ambient_monitoring": self._ambient,
                        "scheduler": type(self._scheduler).__name__})

    # ──────────────────────────────────────────
    # Components
    # ──────────────────────────────────────────

    @property
    def config(self) -> ConciergeConfig:
        return self._config

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def machine(self) -> EmergencyStateMachine:
        return self._machine

    @property
    def history(self) -> EmergencyHistoryRecorder:
        return self._history

    @property
    def alerts(self) -> AlertDispatcher:
        return self._alerts

    @property
    def voice(self) -> VoiceTrigger:
        return self._voice

    @property
    def button(self) -> HoldButton:
        return self._button

    @property
    def reminders(self) -> ReminderScheduler:
        return self._reminders

    @property
    def status(self) -> EmergencyStatus:
        return self._machine.status

    @property
    def monitoring_enabled(self) -> bool:
        return self._ambient

    # ──────────────────────────────────────────
    # Convenience entry points
    # ──────────────────────────────────────────

    def hear(self, transcript: str) -> VoiceOutcome:
        """Feed one utterance to the voice trigger."""
        return self._voice.handle_transcript(transcript)

    def complete_reminder(self, reminder_id: str, method: str = "button") -> Reminder:
        return self._reminders.complete_reminder(reminder_id, method)

    def enable_monitoring(self) -> bool:
        """Turn ambient monitoring on; the machine re-enters it whenever it settles to SAFE."""
        self._ambient = True
        self._reminders.start()
        return self._machine.start_monitoring()

    def disable_monitoring(self) -> None:
        self._ambient = False
        self._machine.stop_monitoring()

    # ──────────────────────────────────────────
    # Wiring callbacks
    # ──────────────────────────────────────────

    def _on_activity_detected(self) -> None:
        if self._machine.status is EmergencyStatus.MONITORING:
            self._machine.verify_safe(VerificationMethod.ACTIVITY)

    def _on_status_change(self, status: EmergencyStatus) -> None:
        if status is EmergencyStatus.SAFE and self._ambient and not self._closed:
            self._machine.start_monitoring()

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def shutdown(self) -> None:
        """Stop reminders, dispose the machine and release owned timers. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._reminders.stop()
        self._button.release()
        self._voice.stop_listening()
        self._machine.dispose()
        self._alerts.detach()
        self._history.detach()
        if self._owns_scheduler and isinstance(self._scheduler, ThreadScheduler):
            self._scheduler.shutdown()
        self._log.info("pipeline", "shutdown", {"episodes": len(self._history)})
        self._log.flush()

    def __enter__(self) -> "SafetyConcierge":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


def simulated_concierge(
    config: Optional[ConciergeConfig] = None,
    notifiers: Optional[Iterable[Notifier]] = None,
) -> SafetyConcierge:
    """A concierge on a fresh :class:`ManualScheduler` (virtual time)."""
    return SafetyConcierge(config=config, scheduler=ManualScheduler(), notifiers=notifiers)
