"""Lifecycle event kinds emitted by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Session lifecycle
START = "start"
RESUME = "resume"
AWAITING_INPUT = "awaiting_input"
DONE = "done"
DISTRESS = "distress"

# Turn activity
THINKING = "thinking"
ACTION_START = "action_start"
ACTION_RESULT = "action_result"

ALL_KINDS = frozenset({
    START, RESUME, THINKING, ACTION_START, ACTION_RESULT,
    AWAITING_INPUT, DONE, DISTRESS,
})

# Severity levels
INFO = "info"
WARN = "warn"
ERROR = "error"
SUCCESS = "success"

DETAIL_PREVIEW_CHARS = 500


def compact_preview(text: object, limit: int = DETAIL_PREVIEW_CHARS) -> str:
    """Collapse whitespace and cap a detail string for display."""
    flat = " ".join(str(text or "").split())
    if len(flat) <= limit:
        return flat
    return flat[: max(0, limit - 1)].rstrip() + "…"


@dataclass
class ExecutorEvent:
    """One lifecycle event. ``detail`` is always a compact preview."""

    kind: str
    message: str
    detail: str = ""
    level: str = INFO
    capability: str = ""
    pause: bool = False
    timestamp: str = ""

    def __post_init__(self):
        if self.kind not in ALL_KINDS:
            raise ValueError(f"Unknown event kind: {self.kind}")
        self.detail = compact_preview(self.detail) if self.detail else ""
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()
