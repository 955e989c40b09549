"""
core/fsm.py — Emergency escalation state machine for MatriGuard.

Owns the emergency status, the active episode, the user-visible countdown and
every timer behind them. Transitions::

    SAFE/any ──trigger──► ALERT ──30 s, no answer──► EMERGENCY ──120 s──► escalate()
                            │                           │
                            ├── verify_safe ──► SAFE ◄──┤
                            ├── confirm_danger ─► EMERGENCY + escalate()
                            └── resolve ──► RESOLVED ──3 s──► SAFE

    SAFE ◄─► MONITORING (ambient watch; inactivity watchdog raises a trigger)

Every timer callback is tagged with the generation current when it was
scheduled. Any transition bumps the generation, so a callback that was
already queued when it got superseded finds a newer generation and does
nothing. Notes are queued under the state lock and delivered outside it by
one thread at a time, so every subscriber sees transitions in commit order.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Optional, Union

from core.clock import Scheduler, TimerHandle
from core.config import EmergencyConfig, LocationConfig
from core.constants import (
    ACTIVE_STATUSES,
    C,
    EmergencyStatus,
    TriggerType,
    VerificationMethod,
)
from core.models import (
    EmergencyEvent,
    Location,
    LocationInput,
    Transition,
    VerificationAttempt,
    new_event_id,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[EmergencyStatus], None]
EscalateCallback = Callable[[], None]
TransitionCallback = Callable[[Transition], None]
LocationProvider = Callable[[], Union[LocationInput, Location]]

# Pending notification: ("status", Transition) or ("escalate", reason)
_Note = tuple[str, object]

_TIMER_NAMES: tuple[str, ...] = (
    "verification",
    "escalation",
    "countdown",
    "revert",
    "inactivity",
)


class EmergencyStateMachine:
    """
    Emergency escalation state machine.

    All public operations are synchronous and return immediately; waits are
    expressed as callbacks on the injected :class:`~core.clock.Scheduler`.
    Calls that make no sense in the current status are no-ops, never errors.

    Args:
        scheduler: Clock/timer service driving every countdown.
        config: Timing configuration; defaults to :class:`~core.config.EmergencyConfig`.
        on_status_change: Optional first status subscriber.
        on_escalate: Optional first escalation subscriber.
        location_provider: Returns the position to snapshot at trigger time.
        user_id: Owner recorded on every episode.

    Example::

        clock = ManualScheduler()
        machine = EmergencyStateMachine(clock, on_escalate=lambda: print("call 911"))
        machine.trigger_emergency("voice", "help")
        clock.advance(30_000)
        assert machine.status is EmergencyStatus.EMERGENCY
    """

    def __init__(
        self,
        scheduler: Scheduler,
        config: Optional[EmergencyConfig] = None,
        on_status_change: Optional[StatusCallback] = None,
        on_escalate: Optional[EscalateCallback] = None,
        location_provider: Optional[LocationProvider] = None,
        user_id: str = C.DEFAULT_USER_ID,
    ) -> None:
        self._scheduler = scheduler
        self._cfg = config or EmergencyConfig()
        self._user_id = user_id
        self._location_provider = location_provider or LocationConfig().as_input

        self._lock = threading.RLock()
        self._status: EmergencyStatus = EmergencyStatus.SAFE
        self._event: Optional[EmergencyEvent] = None
        self._attempts: list[VerificationAttempt] = []
        self._time_remaining: Optional[int] = None
        self._generation: int = 0
        self._disposed = False
        self._timers: dict[str, Optional[TimerHandle]] = {name: None for name in _TIMER_NAMES}

        self._status_subscribers: list[StatusCallback] = []
        self._escalate_subscribers: list[EscalateCallback] = []
        self._transition_subscribers: list[TransitionCallback] = []
        self._outbox: deque[_Note] = deque()
        self._delivery = threading.RLock()
        self._delivering = False
        if on_status_change is not None:
            self._status_subscribers.append(on_status_change)
        if on_escalate is not None:
            self._escalate_subscribers.append(on_escalate)

        logger.info(
            "EmergencyStateMachine initialised: verification=%dms escalation=%dms",
            self._cfg.verification_timeout_ms,
            self._cfg.escalation_timeout_ms,
        )

    # ──────────────────────────────────────────
    # Observable state (copy-out)
    # ──────────────────────────────────────────

    @property
    def status(self) -> EmergencyStatus:
        with self._lock:
            return self._status

    @property
    def current_event(self) -> Optional[EmergencyEvent]:
        """Snapshot of the active episode; the value itself is immutable."""
        with self._lock:
            return self._event

    @property
    def time_remaining(self) -> Optional[int]:
        """Milliseconds left on the visible countdown, or None when idle."""
        with self._lock:
            return self._time_remaining

    @property
    def verification_attempts(self) -> list[VerificationAttempt]:
        """Attempts since the last trigger, oldest first (a new list every call)."""
        with self._lock:
            return list(self._attempts)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def pending_timers(self) -> tuple[str, ...]:
        """Names of the timers currently armed (e.g. ``('verification', 'countdown')``)."""
        with self._lock:
            return tuple(
                name for name, handle in self._timers.items()
                if handle is not None and not handle.cancelled
            )

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def config(self) -> EmergencyConfig:
        return self._cfg

    # ──────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        """Call ``callback(status)`` on every status notification; returns an unsubscribe function."""
        return self._subscribe(self._status_subscribers, callback)

    def subscribe_escalate(self, callback: EscalateCallback) -> Callable[[], None]:
        """Call ``callback()`` whenever escalation to external services is recommended."""
        return self._subscribe(self._escalate_subscribers, callback)

    def subscribe_transitions(self, callback: TransitionCallback) -> Callable[[], None]:
        """Call ``callback(transition)`` with a full :class:`Transition` record."""
        return self._subscribe(self._transition_subscribers, callback)

    def _subscribe(self, bucket: list, callback: Callable) -> Callable[[], None]:
        with self._lock:
            bucket.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in bucket:
                    bucket.remove(callback)

        return _unsubscribe

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def trigger_emergency(
        self,
        trigger_type: Union[TriggerType, str],
        keyword: Optional[str] = None,
    ) -> None:
        """
        Open a new episode and start the verification countdown.

        Valid from any status; whatever was pending is cancelled first.

        Args:
            trigger_type: ``'voice'``, ``'manual'`` or ``'inactivity'``.
            keyword: Detected keyword; kept for voice triggers only.

        Raises:
            ValueError: If ``trigger_type`` is not a known trigger type.
        """
        trigger_type = TriggerType(trigger_type)
        with self._lock:
            if self._refuse_if_disposed("trigger_emergency"):
                return
            notes = self._trigger_locked(trigger_type, keyword)
            self._outbox.extend(notes)
        self._flush()

    def verify_safe(self, method: Union[VerificationMethod, str]) -> None:
        """
        Record that the user is safe.

        From ALERT/EMERGENCY this closes the episode (resolved by ``'self'``)
        and returns to SAFE. In MONITORING it counts as proof of activity and
        re-arms the inactivity watchdog. In SAFE only the attempt is recorded.
        In RESOLVED it does nothing, so the pending return to SAFE still happens.

        Raises:
            ValueError: If ``method`` is not a known verification method.
        """
        method = VerificationMethod(method)
        with self._lock:
            if self._refuse_if_disposed("verify_safe"):
                return
            notes: list[_Note] = []
            status = self._status
            now = self._scheduler.wall_time()
            attempt = VerificationAttempt(type=method, timestamp=now, success=True)

            if status is EmergencyStatus.RESOLVED:
                logger.debug("verify_safe(%s) ignored while RESOLVED", method.value)
                return

            if status is EmergencyStatus.MONITORING:
                self._attempts.append(attempt)
                self._arm_inactivity_watch()
                logger.debug("Activity via %s — inactivity watchdog re-armed", method.value)
            elif status in ACTIVE_STATUSES:
                self._reset_timers()
                self._attempts.append(attempt)
                if self._event is not None:
                    self._event = self._event.with_attempt(attempt).resolved("self", now)
                self._status = EmergencyStatus.SAFE
                notes.append(self._note_transition(status, EmergencyStatus.SAFE,
                                                   f"verified_{method.value}"))
            else:
                self._reset_timers()
                self._attempts.append(attempt)
                logger.debug("verify_safe(%s) while SAFE — attempt recorded only", method.value)
            self._outbox.extend(notes)
        self._flush()

    def confirm_danger(self, confirmed_by: str) -> None:
        """
        Confirm the emergency is real: go to EMERGENCY and escalate immediately.

        Only meaningful from ALERT or EMERGENCY; otherwise a no-op.
        """
        with self._lock:
            if self._refuse_if_disposed("confirm_danger"):
                return
            notes: list[_Note] = []
            status = self._status
            if status in ACTIVE_STATUSES:
                self._reset_timers()
                self._status = EmergencyStatus.EMERGENCY
                if self._event is not None:
                    self._event = self._event.with_status(EmergencyStatus.EMERGENCY)
                reason = f"confirmed_by:{confirmed_by}"
                notes.append(self._note_transition(status, EmergencyStatus.EMERGENCY, reason))
                notes.append(("escalate", reason))
            else:
                self._cancel_if_idle(status)
                logger.debug("confirm_danger(%r) ignored in %s", confirmed_by, status.value)
            self._outbox.extend(notes)
        self._flush()

    def resolve_emergency(self, resolved_by: str) -> None:
        """
        Close the episode on a contact's word: RESOLVED now, SAFE after the revert delay.

        Only meaningful from ALERT or EMERGENCY; otherwise a no-op.
        """
        with self._lock:
            if self._refuse_if_disposed("resolve_emergency"):
                return
            notes: list[_Note] = []
            status = self._status
            if status in ACTIVE_STATUSES:
                self._reset_timers()
                now = self._scheduler.wall_time()
                if self._event is not None:
                    self._event = self._event.resolved(resolved_by, now)
                self._status = EmergencyStatus.RESOLVED
                self._timers["revert"] = self._schedule(
                    self._cfg.resolved_revert_ms, self._on_revert
                )
                notes.append(self._note_transition(status, EmergencyStatus.RESOLVED,
                                                   f"resolved_by:{resolved_by}"))
            else:
                self._cancel_if_idle(status)
                logger.debug("resolve_emergency(%r) ignored in %s", resolved_by, status.value)
            self._outbox.extend(notes)
        self._flush()

    def start_monitoring(self) -> bool:
        """
        Enter ambient MONITORING from SAFE and arm the inactivity watchdog.

        Returns:
            True if the machine is now monitoring, False if an episode is in progress.
        """
        with self._lock:
            if self._refuse_if_disposed("start_monitoring"):
                return False
            if self._status is EmergencyStatus.MONITORING:
                return True
            if self._status is not EmergencyStatus.SAFE:
                logger.debug("start_monitoring ignored in %s", self._status.value)
                return False
            self._arm_inactivity_watch()
            self._status = EmergencyStatus.MONITORING
            notes = [self._note_transition(EmergencyStatus.SAFE, EmergencyStatus.MONITORING,
                                           "monitoring_started")]
            self._outbox.extend(notes)
        self._flush()
        return True

    def stop_monitoring(self) -> None:
        """Leave MONITORING for SAFE; a no-op in any other status."""
        with self._lock:
            if self._refuse_if_disposed("stop_monitoring"):
                return
            if self._status is not EmergencyStatus.MONITORING:
                return
            self._reset_timers()
            self._status = EmergencyStatus.SAFE
            notes = [self._note_transition(EmergencyStatus.MONITORING, EmergencyStatus.SAFE,
                                           "monitoring_stopped")]
            self._outbox.extend(notes)
        self._flush()

    def dispose(self) -> None:
        """
        Cancel every timer and stop reacting to calls. Idempotent.

        After disposal no scheduled callback can apply, even one already queued.
        """
        with self._lock:
            if self._disposed:
                return
            self._cancel_all()
            self._generation += 1
            self._disposed = True
        logger.info("EmergencyStateMachine disposed in %s", self._status.value)

    def __enter__(self) -> "EmergencyStateMachine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    # ──────────────────────────────────────────
    # Timer callbacks (run via _guard)
    # ──────────────────────────────────────────

    def _on_verification_timeout(self) -> list[_Note]:
        self._reset_timers()
        self._status = EmergencyStatus.EMERGENCY
        if self._event is not None:
            self._event = self._event.with_status(EmergencyStatus.EMERGENCY)
        self._timers["escalation"] = self._schedule(
            self._cfg.escalation_timeout_ms, self._on_escalation_timeout
        )
        self._start_countdown(self._cfg.escalation_timeout_ms)
        return [self._note_transition(EmergencyStatus.ALERT, EmergencyStatus.EMERGENCY,
                                      "verification_timeout")]

    def _on_escalation_timeout(self) -> list[_Note]:
        self._timers["escalation"] = None
        logger.warning("No response for %dms in EMERGENCY — escalating",
                       self._cfg.escalation_timeout_ms)
        return [("escalate", "escalation_timeout")]

    def _on_countdown_tick(self) -> list[_Note]:
        tick = self._cfg.countdown_tick_ms
        if self._time_remaining is None or self._time_remaining <= tick:
            self._time_remaining = None
            self._cancel("countdown")
        else:
            self._time_remaining -= tick
        return []

    def _on_revert(self) -> list[_Note]:
        self._timers["revert"] = None
        self._status = EmergencyStatus.SAFE
        self._event = None
        return [self._note_transition(EmergencyStatus.RESOLVED, EmergencyStatus.SAFE,
                                      "auto_revert")]

    def _on_inactivity_timeout(self) -> list[_Note]:
        self._timers["inactivity"] = None
        logger.warning("No activity for %dms while MONITORING — raising inactivity trigger",
                       self._cfg.inactivity_timeout_ms)
        return self._trigger_locked(TriggerType.INACTIVITY, None)

    # ──────────────────────────────────────────
    # Internal helpers (call with self._lock held)
    # ──────────────────────────────────────────

    def _trigger_locked(self, trigger_type: TriggerType, keyword: Optional[str]) -> list[_Note]:
        now = self._scheduler.wall_time()
        location = self._snapshot_location(now)
        if keyword is not None and trigger_type is not TriggerType.VOICE:
            logger.debug("Dropping keyword %r for %s trigger", keyword, trigger_type.value)
            keyword = None

        previous = self._status
        outgoing = self._event if previous in ACTIVE_STATUSES else None
        self._reset_timers()
        self._event = EmergencyEvent(
            id=new_event_id(),
            user_id=self._user_id,
            triggered_at=now,
            status=EmergencyStatus.ALERT,
            trigger_type=trigger_type,
            location=location,
            keyword=keyword,
        )
        self._attempts = []
        self._status = EmergencyStatus.ALERT
        self._timers["verification"] = self._schedule(
            self._cfg.verification_timeout_ms, self._on_verification_timeout
        )
        self._start_countdown(self._cfg.verification_timeout_ms)
        superseded = None
        if outgoing is not None:
            superseded = outgoing.superseded(self._event.id)
            logger.info("Episode %s superseded by %s", outgoing.id, self._event.id)
        return [self._note_transition(previous, EmergencyStatus.ALERT,
                                      f"trigger_{trigger_type.value}", superseded)]

    def _snapshot_location(self, now: datetime) -> Location:
        fix = self._location_provider()
        if isinstance(fix, Location):
            return fix
        return fix.at(now)

    def _start_countdown(self, duration_ms: int) -> None:
        self._cancel("countdown")
        self._time_remaining = duration_ms
        self._timers["countdown"] = self._schedule(
            self._cfg.countdown_tick_ms, self._on_countdown_tick, repeat=True
        )

    def _arm_inactivity_watch(self) -> None:
        self._reset_timers()
        self._timers["inactivity"] = self._schedule(
            self._cfg.inactivity_timeout_ms, self._on_inactivity_timeout
        )

    def _reset_timers(self) -> None:
        """Cancel everything and start a new generation."""
        self._cancel_all()
        self._generation += 1

    def _cancel_if_idle(self, status: EmergencyStatus) -> None:
        if status is EmergencyStatus.SAFE:
            self._reset_timers()

    def _cancel(self, name: str) -> None:
        handle = self._timers.get(name)
        if handle is not None:
            handle.cancel()
        self._timers[name] = None

    def _cancel_all(self) -> None:
        for name in _TIMER_NAMES:
            self._cancel(name)
        self._time_remaining = None

    def _schedule(
        self,
        delay_ms: int,
        fn: Callable[[], list[_Note]],
        repeat: bool = False,
    ) -> TimerHandle:
        generation = self._generation

        def _guard() -> None:
            with self._lock:
                if self._disposed or generation != self._generation:
                    logger.debug(
                        "Stale timer %s dropped (generation %d, current %d)",
                        fn.__name__, generation, self._generation,
                    )
                    return
                self._outbox.extend(fn())
            self._flush()

        if repeat:
            return self._scheduler.call_every(delay_ms, _guard)
        return self._scheduler.call_later(delay_ms, _guard)

    def _note_transition(
        self,
        from_status: EmergencyStatus,
        to_status: EmergencyStatus,
        reason: str,
        superseded: Optional[EmergencyEvent] = None,
    ) -> _Note:
        logger.info("Emergency: %s → %s [%s]", from_status.value, to_status.value, reason)
        return (
            "status",
            Transition(
                from_status=from_status,
                to_status=to_status,
                reason=reason,
                timestamp=self._scheduler.wall_time(),
                event=self._event,
                superseded=superseded,
            ),
        )

    def _refuse_if_disposed(self, operation: str) -> bool:
        if self._disposed:
            logger.warning("%s called after dispose() — ignored", operation)
            return True
        return False

    # ──────────────────────────────────────────
    # Notification
    # ──────────────────────────────────────────

    def _flush(self) -> None:
        """
        Deliver queued notes in the order their transitions committed.

        Must be called without the state lock held. One thread delivers at a
        time; a competing thread waits for the delivery lock, and a subscriber
        that calls back into the machine only queues, leaving its notes to the
        loop already running.
        """
        with self._delivery:
            if self._delivering:
                return
            self._delivering = True
            try:
                while True:
                    with self._lock:
                        if not self._outbox:
                            return
                        kind, payload = self._outbox.popleft()
                        status_subs = list(self._status_subscribers)
                        escalate_subs = list(self._escalate_subscribers)
                        transition_subs = list(self._transition_subscribers)

                    if kind == "status":
                        assert isinstance(payload, Transition)
                        for cb in transition_subs:
                            self._safe_call(cb, payload)
                        for cb in status_subs:
                            self._safe_call(cb, payload.to_status)
                    else:
                        for cb in escalate_subs:
                            self._safe_call(cb)
            finally:
                self._delivering = False

    @staticmethod
    def _safe_call(callback: Callable, *args: object) -> None:
        try:
            callback(*args)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Emergency subscriber %r raised: %s", callback, exc)

    def __repr__(self) -> str:
        with self._lock:
            event_id = self._event.id if self._event is not None else "none"
            return (
                f"EmergencyStateMachine(status={self._status.value}, event={event_id}, "
                f"remaining={self._time_remaining}, generation={self._generation})"
            )
