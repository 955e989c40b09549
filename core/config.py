"""
core/config.py — Typed configuration loader for MatriGuard.

Loads config/concierge.yaml and validates all values into typed dataclasses.
All downstream modules take these dataclasses; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from core.constants import C
from core.models import LocationInput

logger = logging.getLogger(__name__)

_CONFIG_ENV = "CONCIERGE_CONFIG"


# ──────────────────────────────────────────────
# Config sections (one dataclass per concierge.yaml block)
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class EmergencyConfig:
    """Escalation timing for the emergency state machine (milliseconds)."""

    verification_timeout_ms: int = C.VERIFICATION_TIMEOUT_MS
    escalation_timeout_ms: int = C.ESCALATION_TIMEOUT_MS
    resolved_revert_ms: int = C.RESOLVED_REVERT_MS
    countdown_tick_ms: int = C.COUNTDOWN_TICK_MS
    inactivity_timeout_ms: int = C.INACTIVITY_TIMEOUT_MS


@dataclass(frozen=True)
class VoiceConfig:
    """Keyword spotting and utterance-confirmation settings."""

    enabled: bool = False
    language: str = C.VOICE_LANGUAGE
    keywords: tuple[str, ...] = C.EMERGENCY_KEYWORDS
    min_confirm_chars: int = C.MIN_CONFIRM_UTTERANCE_CHARS


@dataclass(frozen=True)
class ButtonConfig:
    """Manual emergency button."""

    hold_ms: int = C.BUTTON_HOLD_MS


@dataclass(frozen=True)
class ReminderConfig:
    """Reminder scheduler settings."""

    check_interval_ms: int = C.REMINDER_CHECK_INTERVAL_MS
    seed_defaults: bool = True


@dataclass(frozen=True)
class LocationConfig:
    """Fixed position used for trigger-time snapshots (no live geolocation)."""

    latitude: float = 40.7128
    longitude: float = -74.0060
    address: str | None = "123 Main Street, New York, NY"

    def as_input(self) -> LocationInput:
        return LocationInput(
            latitude=self.latitude, longitude=self.longitude, address=self.address
        )


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = "logs"


@dataclass(frozen=True)
class ConciergeConfig:
    """Root configuration object — single source of truth for all settings."""

    user_id: str = C.DEFAULT_USER_ID
    ambient_monitoring: bool = False
    emergency: EmergencyConfig = field(default_factory=EmergencyConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    button: ButtonConfig = field(default_factory=ButtonConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def _build(cls: type, section: str, raw: Any) -> Any:
    """
    Instantiate dataclass ``cls`` from a YAML mapping, rejecting unknown keys.

    Raises:
        ValueError: If ``raw`` is not a mapping or names an unknown field.
    """
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"Config section '{section}' must be a mapping, got: {type(raw)}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    return cls(**raw)


def _locate(config_path: Path | str | None) -> Path | None:
    """
    Pick the YAML file to read, or ``None`` to run on defaults.

    An explicit argument wins over ``$CONCIERGE_CONFIG``, which wins over
    a ``config/concierge.yaml`` next to the package or in the working
    directory. A path that was asked for by name must exist.
    """
    if config_path is not None:
        wanted, origin = Path(config_path), "--config"
    elif os.environ.get(_CONFIG_ENV):
        wanted, origin = Path(os.environ[_CONFIG_ENV]), _CONFIG_ENV
    else:
        roots = (Path(__file__).resolve().parents[1], Path.cwd())
        return next(
            (root / "config" / "concierge.yaml" for root in roots
             if (root / "config" / "concierge.yaml").is_file()),
            None,
        )
    if not wanted.is_file():
        raise FileNotFoundError(f"{origin}: no such config file {wanted}")
    return wanted


def load_config(config_path: Path | str | None = None) -> ConciergeConfig:
    """
    Read ``concierge.yaml`` (see :func:`_locate`) into a frozen config.

    Raises:
        FileNotFoundError: The named file is missing.
        ValueError: The document is not a mapping, or holds unknown keys
            or out-of-range values.
    """
    source = _locate(config_path)
    if source is None:
        logger.info("concierge.yaml not found; running on defaults")
        return config_from_dict({})

    document = yaml.safe_load(source.read_text(encoding="utf-8"))
    if document is None:
        document = {}
    elif not isinstance(document, dict):
        raise ValueError(
            f"{source}: top level must be a mapping, not {type(document).__name__}"
        )
    logger.info("Config read from %s", source)
    return config_from_dict(document)


def config_from_dict(raw: dict) -> ConciergeConfig:
    """
    Build a validated :class:`ConciergeConfig` from an already-parsed mapping.

    Raises:
        ValueError: On unknown keys, wrong types or out-of-range values.
    """
    top_level = {"user_id", "ambient_monitoring", "emergency", "voice", "button",
                 "reminders", "location", "logging"}
    unknown = sorted(set(raw) - top_level)
    if unknown:
        raise ValueError(f"Unknown top-level config key(s): {', '.join(unknown)}")

    try:
        emergency_cfg = _build(EmergencyConfig, "emergency", raw.get("emergency"))

        # VoiceConfig needs special handling: YAML lists → normalised tuple
        voice_raw = dict(raw.get("voice") or {})
        if "keywords" in voice_raw:
            if not isinstance(voice_raw["keywords"], (list, tuple)):
                raise ValueError("voice.keywords must be a list of strings")
            voice_raw["keywords"] = tuple(
                str(k).strip().lower() for k in voice_raw["keywords"] if str(k).strip()
            )
        voice_cfg = _build(VoiceConfig, "voice", voice_raw)

        button_cfg = _build(ButtonConfig, "button", raw.get("button"))
        reminder_cfg = _build(ReminderConfig, "reminders", raw.get("reminders"))
        location_cfg = _build(LocationConfig, "location", raw.get("location"))
        log_cfg = _build(LoggingConfig, "logging", raw.get("logging"))
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    _validate_config(emergency_cfg, voice_cfg, button_cfg, reminder_cfg, location_cfg)

    config = ConciergeConfig(
        user_id=str(raw.get("user_id", C.DEFAULT_USER_ID)),
        ambient_monitoring=bool(raw.get("ambient_monitoring", False)),
        emergency=emergency_cfg,
        voice=voice_cfg,
        button=button_cfg,
        reminders=reminder_cfg,
        location=location_cfg,
        logging=log_cfg,
    )
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(
    emergency: EmergencyConfig,
    voice: VoiceConfig,
    button: ButtonConfig,
    reminders: ReminderConfig,
    location: LocationConfig,
) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ValueError: If any configured value violates a hard constraint.
    """
    for name in ("verification_timeout_ms", "escalation_timeout_ms",
                 "resolved_revert_ms", "countdown_tick_ms", "inactivity_timeout_ms"):
        value = getattr(emergency, name)
        if not isinstance(value, int) or value <= 0:
            raise ValueError(f"emergency.{name} must be a positive integer, got {value!r}")
    if emergency.countdown_tick_ms > emergency.verification_timeout_ms:
        raise ValueError(
            "emergency.countdown_tick_ms must not exceed verification_timeout_ms, "
            f"got {emergency.countdown_tick_ms} > {emergency.verification_timeout_ms}"
        )
    if not voice.keywords:
        raise ValueError("voice.keywords must contain at least one keyword")
    if voice.min_confirm_chars < 0:
        raise ValueError(
            f"voice.min_confirm_chars must be non-negative, got {voice.min_confirm_chars}"
        )
    if button.hold_ms <= 0:
        raise ValueError(f"button.hold_ms must be positive, got {button.hold_ms}")
    if reminders.check_interval_ms <= 0:
        raise ValueError(
            f"reminders.check_interval_ms must be positive, got {reminders.check_interval_ms}"
        )
    try:
        location.as_input()
    except ValidationError as exc:
        raise ValueError(f"Invalid location: {exc}") from exc
