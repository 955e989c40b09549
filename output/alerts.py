"""
output/alerts.py — User-facing alerts for MatriGuard status changes.

Consumes the state machine's status and escalation notifications and turns
them into short title/message notices for the configured notifiers. Actual
delivery to trusted contacts (SMS, push) is someone else's job; the console
and recording notifiers here are the only built-in sinks.
"""

from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Protocol, TextIO, runtime_checkable

from core.constants import ESCALATE_MESSAGE_KEY, STATUS_MESSAGES, EmergencyStatus
from core.logger import get_logger

if TYPE_CHECKING:
    from core.fsm import EmergencyStateMachine

_log = get_logger()


@dataclass(frozen=True)
class Notice:
    """One user-facing notification."""

    title: str
    message: str
    urgent: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


@runtime_checkable
class Notifier(Protocol):
    """Anything that can deliver a title/message notice."""

    def send(self, title: str, message: str, urgent: bool = False) -> bool:
        """Deliver one notice; return False if delivery failed."""
        ...


class ConsoleNotifier:
    """Prints notices to a text stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdout

    def send(self, title: str, message: str, urgent: bool = False) -> bool:
        marker = "!!" if urgent else "--"
        print(f"{marker} {title}: {message}", file=self._stream)
        return True


class RecordingNotifier:
    """Keeps every notice in memory; handy for tests and the history view."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._notices: list[Notice] = []

    @property
    def notices(self) -> list[Notice]:
        with self._lock:
            return list(self._notices)

    @property
    def titles(self) -> list[str]:
        return [n.title for n in self.notices]

    def send(self, title: str, message: str, urgent: bool = False) -> bool:
        with self._lock:
            self._notices.append(Notice(title=title, message=message, urgent=urgent))
        return True


class AlertDispatcher:
    """
    Maps state machine notifications to notices and fans them out.

    ``alert``, ``emergency`` and ``safe`` statuses plus every escalation
    produce a notice; ``monitoring`` and ``resolved`` are silent.

    Args:
        notifiers: Delivery targets, called in order.
    """

    _URGENT: frozenset[str] = frozenset(
        {EmergencyStatus.ALERT.value, EmergencyStatus.EMERGENCY.value, ESCALATE_MESSAGE_KEY}
    )

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self._notifiers = list(notifiers)
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    def add_notifier(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    def attach(self, machine: "EmergencyStateMachine") -> None:
        self._unsubscribers.append(machine.subscribe_status(self.on_status_change))
        self._unsubscribers.append(machine.subscribe_escalate(self.on_escalate))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def on_status_change(self, status: EmergencyStatus) -> None:
        self._publish(EmergencyStatus(status).value)

    def on_escalate(self) -> None:
        self._publish(ESCALATE_MESSAGE_KEY)

    def _publish(self, key: str) -> int:
        """Send the notice for ``key`` to every notifier; return how many accepted it."""
        if key not in STATUS_MESSAGES:
            return 0
        title, message = STATUS_MESSAGES[key]
        notice = Notice(title=title, message=message, urgent=key in self._URGENT)
        delivered = 0
        for notifier in self._notifiers:
            try:
                if notifier.send(notice.title, notice.message, notice.urgent):
                    delivered += 1
            except Exception as exc:  # noqa: BLE001
                _log.error("alerts", "notifier_failed", {
                    "notifier": type(notifier).__name__,
                    "error": str(exc),
                })
        if notice.urgent:
            _log.critical("alerts", "notice_sent", {"key": key, "delivered": delivered})
        else:
            _log.info("alerts", "notice_sent", {"key": key, "delivered": delivered})
        return delivered
