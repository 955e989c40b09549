"""
core/logger.py — Audit trail for MatriGuard as daily JSONL files.

Every entry is a single JSON object on its own line. Files are named
``concierge_<YYYY-MM-DD>.jsonl`` (UTC date) and live in the directory
given by ``CONCIERGE_LOG_DIR`` at first use, ``logs`` otherwise.
Entries at WARN and above are echoed to stderr through the
``matriguard`` stdlib logger.

Usage::

    from core.logger import get_logger
    log = get_logger()
    log.info("voice", "keyword_detected", {"keyword": "help"})
    log.perf("pipeline", "init_machine", latency_ms=0.4)
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Optional

_console = logging.getLogger("matriguard")
if not _console.handlers:
    _stderr = logging.StreamHandler(sys.stderr)
    _stderr.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(message)s"))
    _console.addHandler(_stderr)
_console.setLevel(logging.DEBUG)
_console.propagate = False

LOG_DIR_ENV = "CONCIERGE_LOG_DIR"

# Audit levels echoed to stderr, with their stdlib counterpart.
_ECHOED = {
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_shared: Optional["ConciergeLogger"] = None
_shared_guard = threading.Lock()


class ConciergeLogger:
    """
    Append-only JSONL writer shared by the input, output and pipeline layers.

    A record looks like::

        {"timestamp_iso": "...", "level": "PERF", "phase": "pipeline",
         "event": "init_machine", "data": {}, "latency_ms": 0.4}

    ``latency_ms`` is only present on PERF records. Values that JSON
    cannot encode (paths, enums, datetimes) are written with ``str()``.

    Normally obtained through :func:`get_logger`; tests construct their
    own against a temporary directory.
    """

    def __init__(self, log_dir: Path | str = "logs") -> None:
        self._log_dir = Path(log_dir)
        self._mutex = threading.Lock()
        self._stream: Optional[IO[str]] = None
        self._day = ""
        self._announce()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    @property
    def current_path(self) -> Path:
        """File the next entry lands in (today's, once anything is written)."""
        day = self._day or _utc_now().strftime("%Y-%m-%d")
        return self._log_dir / f"concierge_{day}.jsonl"

    # -- level shortcuts -------------------------------------------------

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("WARN", phase, event, data)

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("ERROR", phase, event, data)

    def critical(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        self._emit("CRITICAL", phase, event, data)

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """Record how long ``event`` took, rounded to microseconds."""
        self._emit("PERF", phase, event, data, latency_ms=latency_ms)

    # -- file handling ---------------------------------------------------

    def flush(self) -> None:
        with self._mutex:
            if self._stream is not None and not self._stream.closed:
                self._stream.flush()

    def close(self) -> None:
        """Release the file handle. A later entry reopens today's file."""
        with self._mutex:
            if self._stream is not None:
                self._stream.close()
            self._stream = None
            self._day = ""

    def _emit(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        stamp = _utc_now()
        entry: dict[str, Any] = dict(
            timestamp_iso=stamp.isoformat(),
            level=level,
            phase=phase,
            event=event,
            data=dict(data) if data else {},
        )
        if latency_ms is not None:
            entry["latency_ms"] = round(latency_ms, 3)
        encoded = json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._mutex:
            stream = self._stream_for(stamp)
            stream.write(encoded)
            stream.write("\n")

        if level in _ECHOED:
            _console.log(_ECHOED[level], "%s/%s %s", phase, event, entry["data"])

    def _stream_for(self, stamp: datetime) -> IO[str]:
        """Today's file handle, switching files at UTC midnight. Caller holds the mutex."""
        day = stamp.strftime("%Y-%m-%d")
        if self._stream is None or day != self._day:
            if self._stream is not None:
                self._stream.close()
            self._log_dir.mkdir(parents=True, exist_ok=True)
            path = self._log_dir / f"concierge_{day}.jsonl"
            self._stream = path.open("a", encoding="utf-8", buffering=1)
            self._day = day
        return self._stream

    def _announce(self) -> None:
        self.info("system", "startup", {
            "python": platform.python_version(),
            "platform": platform.platform(),
            "pid": os.getpid(),
            "log_dir": str(self._log_dir.resolve()),
        })


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def set_echo_level(level: int) -> None:
    """Threshold for the stderr echo; JSONL files always receive every entry."""
    _console.setLevel(level)


def get_logger() -> ConciergeLogger:
    """Process-wide :class:`ConciergeLogger`, created on first call."""
    global _shared
    if _shared is None:
        with _shared_guard:
            if _shared is None:
                _shared = ConciergeLogger(os.environ.get(LOG_DIR_ENV, "logs"))
    return _shared
