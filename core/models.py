"""
core/models.py — Immutable data model for MatriGuard emergency episodes.

Every record here is a frozen dataclass. The state machine "mutates" an
episode by replacing it with a new value, so snapshots handed to observers
or the history recorder can never be changed behind the machine's back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from core.constants import EmergencyStatus, TriggerType, VerificationMethod


def new_event_id() -> str:
    """Return a unique emergency episode id like ``emergency-3f2a9c0d1b7e``."""
    return f"emergency-{uuid.uuid4().hex[:12]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ──────────────────────────────────────────────────────────────
# Location
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Location:
    """
    A position fix captured once at trigger time; never live-updated.

    Attributes:
        latitude: Degrees north, in [-90, 90].
        longitude: Degrees east, in [-180, 180].
        timestamp: When the fix was taken.
        address: Optional human-readable address.
    """

    latitude: float
    longitude: float
    timestamp: datetime
    address: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "timestamp": _iso(self.timestamp),
        }


class LocationInput(BaseModel):
    """
    Pydantic-validated raw coordinates for building a :class:`Location`.

    Rejects out-of-range coordinates before they reach an emergency event
    and normalises blank addresses to ``None``.
    """

    latitude: float
    longitude: float
    address: Optional[str] = None

    @field_validator("latitude")
    @classmethod
    def _latitude_in_range(cls, value: float) -> float:
        if not -90.0 <= value <= 90.0:
            raise ValueError(f"latitude must be in [-90, 90], got {value}")
        return value

    @field_validator("longitude")
    @classmethod
    def _longitude_in_range(cls, value: float) -> float:
        if not -180.0 <= value <= 180.0:
            raise ValueError(f"longitude must be in [-180, 180], got {value}")
        return value

    @field_validator("address")
    @classmethod
    def _strip_address(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def at(self, timestamp: datetime) -> Location:
        """Freeze these coordinates into a :class:`Location` taken at ``timestamp``."""
        return Location(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=timestamp,
            address=self.address,
        )


# ──────────────────────────────────────────────────────────────
# Verification attempts
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VerificationAttempt:
    """
    One proof-of-safety signal.

    ``success`` is always True today; there is no failed-verification path.
    """

    type: VerificationMethod
    timestamp: datetime
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": _iso(self.timestamp),
            "success": self.success,
        }


# ──────────────────────────────────────────────────────────────
# Emergency event
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmergencyEvent:
    """
    A single emergency episode, from trigger to resolution.

    Attributes:
        id: Unique episode id, generated at trigger time.
        user_id: Owner of the episode.
        triggered_at: Wall-clock time of the triggering call.
        status: Mirrors the owning machine's status at the last mutation.
        trigger_type: What raised the episode.
        location: Snapshot taken once at trigger time.
        keyword: Detected keyword, voice triggers only.
        verification_attempts: Append-only, oldest first.
        resolved_at: Set once on resolution.
        resolved_by: ``'self'`` for a user confirmation, else the contact's name.
        superseded_by: Id of the episode that replaced this one while it was
            still ALERT or EMERGENCY.
    """

    id: str
    user_id: str
    triggered_at: datetime
    status: EmergencyStatus
    trigger_type: TriggerType
    location: Location
    keyword: Optional[str] = None
    verification_attempts: tuple[VerificationAttempt, ...] = field(default_factory=tuple)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    superseded_by: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def with_status(self, status: EmergencyStatus) -> "EmergencyEvent":
        return replace(self, status=status)

    def with_attempt(self, attempt: VerificationAttempt) -> "EmergencyEvent":
        return replace(
            self, verification_attempts=self.verification_attempts + (attempt,)
        )

    def resolved(self, by: str, at: datetime) -> "EmergencyEvent":
        """Return a copy marked RESOLVED by ``by`` at ``at``."""
        return replace(
            self, status=EmergencyStatus.RESOLVED, resolved_at=at, resolved_by=by
        )

    def superseded(self, by_event_id: str) -> "EmergencyEvent":
        """Return a copy closed out by a newer trigger; the status is kept as it was."""
        return replace(self, superseded_by=by_event_id)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dict of this event."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "triggered_at": _iso(self.triggered_at),
            "status": self.status.value,
            "trigger_type": self.trigger_type.value,
            "keyword": self.keyword,
            "location": self.location.to_dict(),
            "verification_attempts": [a.to_dict() for a in self.verification_attempts],
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "superseded_by": self.superseded_by,
        }


# ──────────────────────────────────────────────────────────────
# Transition record
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Transition:
    """
    A status change, as delivered to transition subscribers.

    Attributes:
        from_status: Status before the change.
        to_status: Status after the change.
        reason: Short machine-readable cause (e.g. ``'verification_timeout'``).
        timestamp: Wall-clock time of the change.
        event: Snapshot of the episode after the change, or None.
        superseded: Final snapshot of the live episode a trigger replaced, or None.
    """

    from_status: EmergencyStatus
    to_status: EmergencyStatus
    reason: str
    timestamp: datetime
    event: Optional[EmergencyEvent] = None
    superseded: Optional[EmergencyEvent] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "from": self.from_status.value,
            "to": self.to_status.value,
            "reason": self.reason,
            "timestamp": _iso(self.timestamp),
            "event_id": self.event.id if self.event is not None else None,
        }
        if self.superseded is not None:
            data["superseded_id"] = self.superseded.id
        return data
