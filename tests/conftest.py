"""
tests/conftest.py — Shared fixtures for the MatriGuard test suite.

The JSONL logger is a process-wide singleton that reads its directory from
CONCIERGE_LOG_DIR on first use, so the variable is pointed at a throwaway
directory before any project module is imported.
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("CONCIERGE_LOG_DIR", tempfile.mkdtemp(prefix="matriguard-logs-"))

import pytest  # noqa: E402

from core.clock import ManualScheduler  # noqa: E402
from core.config import EmergencyConfig  # noqa: E402
from core.fsm import EmergencyStateMachine  # noqa: E402


@pytest.fixture()
def clock() -> ManualScheduler:
    """Virtual-time scheduler starting at 2026-01-01 09:00 UTC."""
    return ManualScheduler()


@pytest.fixture()
def machine(clock: ManualScheduler):
    """Fresh state machine on the virtual clock, disposed after the test."""
    m = EmergencyStateMachine(clock, config=EmergencyConfig())
    yield m
    m.dispose()


@pytest.fixture()
def recorded(machine: EmergencyStateMachine) -> dict[str, list]:
    """Subscribe to every notification stream and record what arrives."""
    log: dict[str, list] = {"status": [], "escalate": [], "transitions": []}
    machine.subscribe_status(log["status"].append)
    machine.subscribe_escalate(lambda: log["escalate"].append(True))
    machine.subscribe_transitions(log["transitions"].append)
    return log
