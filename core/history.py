"""
core/history.py — Emergency history recorder for MatriGuard.

Keeps an audit trail of emergency episodes that outlives the state machine's
own ``current_event`` (which is discarded a few seconds after resolution).
Records are immutable snapshots taken from transition notifications, so the
recorder never shares mutable state with the machine.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from core.constants import C, EmergencyStatus
from core.logger import get_logger
from core.models import EmergencyEvent, Transition

if TYPE_CHECKING:
    from core.fsm import EmergencyStateMachine

_log = get_logger()


class EmergencyHistoryRecorder:
    """
    Append-only record of emergency episodes and status transitions.

    One entry is kept per episode id, holding the latest snapshot seen for
    that episode; entries are never removed. An episode cut short by a new
    trigger keeps its last status and gains ``superseded_by``. The
    transition log is capped at ``max_transitions`` (oldest dropped first).

    Args:
        max_transitions: Maximum number of transition records retained.
    """

    def __init__(self, max_transitions: int = C.MAX_TRANSITION_HISTORY) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, EmergencyEvent] = {}
        self._transitions: deque[Transition] = deque(maxlen=max_transitions)
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ──────────────────────────────────────────
    # Wiring
    # ──────────────────────────────────────────

    def attach(self, machine: "EmergencyStateMachine") -> None:
        """
        Start recording transitions from ``machine``.

        Raises:
            RuntimeError: If the recorder is already attached.
        """
        if self._unsubscribe is not None:
            raise RuntimeError("EmergencyHistoryRecorder is already attached")
        self._unsubscribe = machine.subscribe_transitions(self.record)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def record(self, transition: Transition) -> None:
        """Store one transition and refresh the snapshot of its episode."""
        event = transition.event
        outgoing = transition.superseded
        with self._lock:
            self._transitions.append(transition)
            if outgoing is not None:
                self._events[outgoing.id] = outgoing
            is_new = event is not None and event.id not in self._events
            if event is not None:
                self._events[event.id] = event

        data = transition.to_dict()
        if outgoing is not None:
            _log.info("history", "episode_superseded", {
                "event_id": outgoing.id,
                "status": outgoing.status.value,
                "superseded_by": outgoing.superseded_by,
            })
        if is_new:
            _log.info("history", "episode_opened", data)
        elif transition.to_status in (EmergencyStatus.RESOLVED, EmergencyStatus.SAFE):
            _log.info("history", "episode_closed", data)
        else:
            _log.info("history", "transition", data)

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────

    def events(self) -> list[EmergencyEvent]:
        """All recorded episodes, newest first."""
        with self._lock:
            return list(reversed(self._events.values()))

    def get(self, event_id: str) -> Optional[EmergencyEvent]:
        with self._lock:
            return self._events.get(event_id)

    def latest(self) -> Optional[EmergencyEvent]:
        """The most recently opened episode, or None."""
        with self._lock:
            if not self._events:
                return None
            return next(reversed(self._events.values()))

    def last_resolved(self) -> Optional[EmergencyEvent]:
        """The most recent episode that reached RESOLVED, or None."""
        for event in self.events():
            if event.status is EmergencyStatus.RESOLVED:
                return event
        return None

    def transitions(self) -> list[Transition]:
        """Retained transitions, oldest first."""
        with self._lock:
            return list(self._transitions)

    def to_dicts(self) -> list[dict]:
        """JSON-ready dicts of every episode, newest first."""
        return [event.to_dict() for event in self.events()]

    def export_jsonl(self, path: Path | str) -> int:
        """
        Write every episode as one JSON line, newest first.

        Returns:
            Number of episodes written.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        rows = self.to_dicts()
        with path.open("w", encoding="utf-8") as fh:
            for row in rows:
                fh.write(json.dumps(row, ensure_ascii=False) + "\n")
        _log.info("history", "exported", {"path": str(path), "episodes": len(rows)})
        return len(rows)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
