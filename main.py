"""
main.py — MatriGuard safety concierge entry point.

Parses CLI args, loads configuration, and either plays a scripted scenario
on virtual time (``--demo``) or runs an interactive console session on real
timers (``--interactive``).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import traceback
from typing import Callable, Optional, TextIO

# ──────────────────────────────────────────────────────────────
# ASCII banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
  __  __       _        _  ____                     _
 |  \/  | __ _| |_ _ __(_)/ ___|_   _  __ _ _ __ __| |
 | |\/| |/ _` | __| '__| | |  _| | | |/ _` | '__/ _` |
 | |  | | (_| | |_| |  | | |_| | |_| | (_| | | | (_| |
 |_|  |_|\__,_|\__|_|  |_|\____|\__,_|\__,_|_|  \__,_|

          MatriGuard Safety Concierge  v1.0
        Pregnancy emergency escalation engine
"""

_HELP = """\
Commands:
  :hold              press and hold the emergency button
  :safe              confirm you are safe (button)
  :danger <who>      a contact confirms the emergency
  :resolve <who>     a contact resolves the emergency
  :monitor           toggle ambient monitoring
  :done <id>         complete a reminder (e.g. reminder-1)
  :status            show status, countdown and reminders
  :quit              exit
Anything else is treated as something you said out loud.
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="matriguard",
        description="MatriGuard — emergency escalation for expectant mothers",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to concierge.yaml (defaults to $CONCIERGE_CONFIG or config/concierge.yaml)",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default=None,
        help="Minimum level for stderr output, core modules and JSONL echo (overrides logging.level)",
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument(
        "--demo",
        choices=["voice", "escalate", "contact", "full"],
        default=None,
        help="Pre-scripted scenario on virtual time",
    )
    mode.add_argument(
        "--interactive",
        action="store_true",
        help="Read commands and utterances from stdin on real timers",
    )
    return p


# ──────────────────────────────────────────────────────────────
# Transition printer
# ──────────────────────────────────────────────────────────────

def _print_transitions(concierge, out: TextIO) -> None:
    """Print every transition and escalation the concierge's machine produces."""
    scheduler = concierge.scheduler

    def _on_transition(t) -> None:
        elapsed = scheduler.now_ms() / 1000.0
        event = t.event.id if t.event is not None else "-"
        print(f"[{elapsed:8.1f}s] {t.from_status.value:>10} → {t.to_status.value:<10} "
              f"({t.reason}) event={event}", file=out)

    def _on_escalate() -> None:
        print(f"[{scheduler.now_ms() / 1000.0:8.1f}s] ** escalate: contact emergency services **",
              file=out)

    concierge.machine.subscribe_transitions(_on_transition)
    concierge.machine.subscribe_escalate(_on_escalate)


# ──────────────────────────────────────────────────────────────
# Scripted demos (virtual time)
# ──────────────────────────────────────────────────────────────

def _demo_voice(c, out: TextIO) -> None:
    """Keyword trigger, then the user answers out loud."""
    c.voice.start_listening()
    c.hear("help, I slipped in the kitchen")
    c.scheduler.advance(5_000)
    print(f"           countdown: {c.machine.time_remaining} ms left", file=out)
    c.hear("I'm okay now, just a little shaken")


def _demo_escalate(c, out: TextIO) -> None:
    """Button hold, no answer: auto-escalate, then recommend emergency services."""
    c.button.press()
    c.scheduler.advance(c.config.button.hold_ms)
    c.scheduler.advance(c.config.emergency.verification_timeout_ms)
    c.scheduler.advance(c.config.emergency.escalation_timeout_ms)


def _demo_contact(c, out: TextIO) -> None:
    """A contact resolves the episode directly from ALERT."""
    c.voice.start_listening()
    c.hear("sharp pain")
    c.scheduler.advance(2_000)
    c.machine.resolve_emergency("husband")
    c.scheduler.advance(c.config.emergency.resolved_revert_ms)


def _demo_full(c, out: TextIO) -> None:
    """Monitoring, reminder activity, inactivity trigger, contact confirmation, resolution."""
    c.enable_monitoring()
    c.scheduler.advance(30 * 60_000 - 60_000)
    c.complete_reminder("reminder-1")
    print(f"           reminder-1 done; watchdog re-armed ({len(c.machine.verification_attempts)} "
          "activity signal)", file=out)
    c.scheduler.advance(c.config.emergency.inactivity_timeout_ms)
    c.scheduler.advance(10_000)
    c.machine.confirm_danger("sister")
    c.scheduler.advance(60_000)
    c.machine.resolve_emergency("sister")
    c.scheduler.advance(c.config.emergency.resolved_revert_ms)


_DEMOS: dict[str, Callable] = {
    "voice": _demo_voice,
    "escalate": _demo_escalate,
    "contact": _demo_contact,
    "full": _demo_full,
}


def run_demo(name: str, config=None, out: Optional[TextIO] = None) -> int:
    """Play one scripted scenario on a ManualScheduler. Returns exit code."""
    from output.alerts import ConsoleNotifier
    from pipeline.concierge import simulated_concierge

    out = out or sys.stdout
    with simulated_concierge(config, notifiers=[ConsoleNotifier(out)]) as concierge:
        _print_transitions(concierge, out)
        print(f"[INFO] Demo '{name}': {_DEMOS[name].__doc__}", file=out)
        _DEMOS[name](concierge, out)
        print(f"[INFO] Final status: {concierge.status.value}; "
              f"episodes recorded: {len(concierge.history)}", file=out)
    return 0


# ──────────────────────────────────────────────────────────────
# Interactive session (real time)
# ──────────────────────────────────────────────────────────────

def _print_status(c, out: TextIO) -> None:
    event = c.machine.current_event
    print(f"status={c.status.value} remaining={c.machine.time_remaining} "
          f"event={event.id if event else '-'} monitoring={c.monitoring_enabled}", file=out)
    for reminder in c.reminders.upcoming():
        print(f"  {reminder.id:<20} {reminder.scheduled_time:%H:%M}  {reminder.title}", file=out)


def _handle_command(c, line: str, out: TextIO) -> bool:
    """Apply one console line. Returns False when the session should end."""
    command, _, arg = line.partition(" ")
    arg = arg.strip()
    if command == ":quit":
        return False
    if command == ":hold":
        c.button.press()
    elif command == ":safe":
        c.machine.verify_safe("button")
    elif command == ":danger":
        c.machine.confirm_danger(arg or "contact")
    elif command == ":resolve":
        c.machine.resolve_emergency(arg or "contact")
    elif command == ":monitor":
        if c.monitoring_enabled:
            c.disable_monitoring()
        else:
            c.enable_monitoring()
    elif command == ":done":
        try:
            c.complete_reminder(arg)
        except KeyError as exc:
            print(f"[WARN] {exc}", file=out)
    elif command == ":status":
        _print_status(c, out)
    elif command.startswith(":"):
        print(_HELP, file=out)
    else:
        outcome = c.hear(line)
        print(f"  (heard: {outcome.value})", file=out)
    return True


def run_interactive(config=None, stdin: Optional[TextIO] = None,
                    out: Optional[TextIO] = None) -> int:
    """Console session on a ThreadScheduler. Returns exit code."""
    from output.alerts import ConsoleNotifier
    from pipeline.concierge import SafetyConcierge

    stdin = stdin or sys.stdin
    out = out or sys.stdout
    with SafetyConcierge(config, notifiers=[ConsoleNotifier(out)]) as concierge:
        _print_transitions(concierge, out)
        concierge.voice.start_listening()
        print(_HELP, file=out)
        for raw in stdin:
            line = raw.strip()
            if line and not _handle_command(concierge, line, out):
                break
    return 0


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main(argv: Optional[list[str]] = None) -> int:
    """Application entry point. Returns process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    print(_BANNER)

    # 1. Configuration
    from core.config import load_config
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    # 2. stdlib logging level (core modules + JSONL stderr mirror)
    level_name = (args.log_level or config.logging.level).upper()
    level_map = {"DEBUG": logging.DEBUG, "INFO": logging.INFO,
                 "WARN": logging.WARNING, "WARNING": logging.WARNING}
    level = level_map.get(level_name, logging.INFO)
    logging.basicConfig(level=level)

    # 3. JSONL logger (first call fixes the log directory)
    os.environ.setdefault("CONCIERGE_LOG_DIR", config.logging.log_dir)
    from core.logger import get_logger, set_echo_level
    set_echo_level(level)
    log = get_logger()
    log.info("main", "args_parsed", {
        "config": args.config,
        "demo": args.demo,
        "interactive": args.interactive,
        "log_level": level_name,
    })

    # 4. Launch
    exit_code = 0
    try:
        if args.demo:
            exit_code = run_demo(args.demo, config)
        elif args.interactive:
            exit_code = run_interactive(config)
        else:
            parser.print_help()
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except Exception:                              # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        log.flush()

    print(f"[INFO] MatriGuard exited with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
