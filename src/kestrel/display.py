"""Terminal display for the CLI.

Renders orchestrator lifecycle events with colors and formatting, and
reads the developer's reply when a session parks.
"""

from __future__ import annotations

import re
import sys
from pathlib import Path

from kestrel.events import types as ev
from kestrel.events.types import ExecutorEvent
from kestrel.state.session import ExecutionResult, SessionStatus

_ANSI_RE = re.compile(r"\033\[[0-9;]*[a-zA-Z]")


# ANSI color codes
class _C:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    GRAY = "\033[90m"


_LEVEL_COLORS = {
    ev.INFO: _C.GRAY,
    ev.WARN: _C.YELLOW,
    ev.ERROR: _C.RED,
    ev.SUCCESS: _C.GREEN,
}


def _sanitize(text: str) -> str:
    """Strip ANSI escape sequences from model- or tool-controlled text."""
    return _ANSI_RE.sub("", text)


def _truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[:max_len - 3] + "..."


def display_event(event: ExecutorEvent) -> None:
    """Render one lifecycle event. Usable directly as the event sink."""
    color = _LEVEL_COLORS.get(event.level, _C.GRAY)
    detail = _sanitize(event.detail)

    if event.kind == ev.THINKING:
        sys.stdout.write(f"\n{_truncate(detail, 400)}\n")
    elif event.kind == ev.ACTION_START:
        suffix = f" {_C.DIM}{_truncate(detail, 80)}{_C.RESET}" if detail else ""
        sys.stdout.write(f"  {_C.GRAY}  {event.message}{_C.RESET}{suffix}\n")
    elif event.kind == ev.ACTION_RESULT:
        icon = f"{_C.GREEN}ok{_C.RESET}" if event.level == ev.SUCCESS else f"{_C.RED}err{_C.RESET}"
        preview = _truncate(detail, 80)
        sys.stdout.write(f"  {_C.GRAY}  {icon} {_C.DIM}{preview}{_C.RESET}\n")
    elif event.kind in (ev.START, ev.RESUME):
        sys.stdout.write(f"{_C.BOLD}{event.message}{_C.RESET} {_C.DIM}{_truncate(detail, 80)}{_C.RESET}\n")
    elif event.kind == ev.DISTRESS:
        sys.stdout.write(f"{color}{event.message}:{_C.RESET} {detail}\n")
    elif event.kind == ev.DONE:
        sys.stdout.write(f"\n{_C.GREEN}{_C.BOLD}{event.message}{_C.RESET}\n")
    # awaiting_input is rendered by display_question when the CLI prompts.
    sys.stdout.flush()


def display_question(question: str, pause: bool = False) -> str:
    """Show the parked session's question and read the reply."""
    label = "Paused" if pause else "Question"
    sys.stdout.write(f"\n{_C.YELLOW}{_C.BOLD}{label}:{_C.RESET} {_sanitize(question)}\n")
    sys.stdout.flush()
    try:
        return input(f"{_C.GREEN}> {_C.RESET}")
    except EOFError:
        return ""


def display_welcome(workspace: Path, model_name: str) -> None:
    sys.stdout.write(f"\n{_C.BOLD}Kestrel{_C.RESET}")
    sys.stdout.write(f" {_C.DIM}({model_name}){_C.RESET}\n")
    sys.stdout.write(f"{_C.DIM}workspace: {workspace}{_C.RESET}\n")
    sys.stdout.write(f"{_C.DIM}Ctrl+C pauses at the next turn boundary.{_C.RESET}\n\n")
    sys.stdout.flush()


def display_result(result: ExecutionResult) -> None:
    """Final summary once the session reaches a terminal state."""
    if result.status == SessionStatus.DONE:
        sys.stdout.write(f"{_sanitize(result.final_result)}\n")
    elif result.status == SessionStatus.FAILED:
        display_error(result.error)
    sys.stdout.write(f"{_C.DIM}[{result.turns} turn{'s' if result.turns != 1 else ''}]{_C.RESET}\n")
    sys.stdout.flush()


def display_error(message: str) -> None:
    """Display an error message."""
    sys.stdout.write(f"{_C.RED}Error:{_C.RESET} {_sanitize(message)}\n")
    sys.stdout.flush()
