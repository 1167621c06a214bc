"""Completion and clarification detectors.

Small pure predicates over immutable turn snapshots. Each one is a
heuristic that could later be swapped for a structured signal from the
backend without touching the turn loop.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from kestrel.prompts.executor import COMPLETION_MARKER
from kestrel.state.session import Plan, Turn

STEP_COMPLETION_SIGNALS = (
    "step complete",
    "step done",
    "finished",
    "created",
    "added",
    "modified",
    "updated",
    "implemented",
)

CLARIFICATION_HINTS = (
    "please provide",
    "please clarify",
    "could you",
    "would you",
    "what kind",
    "what type",
    "do you want",
    "do you need",
    "any preferences",
    "which one",
)

DEFAULT_FINAL_RESULT = "Task completed successfully"
EMPTY_SESSION_RESULT = "Task completed"

_MARKER_RE = re.compile(re.escape(COMPLETION_MARKER), re.IGNORECASE)


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def has_completion_marker(thought: str) -> bool:
    return COMPLETION_MARKER in (thought or "")


def is_step_complete(thought: str) -> bool:
    lowered = (thought or "").lower()
    return any(signal in lowered for signal in STEP_COMPLETION_SIGNALS)


def is_task_complete(turns: Sequence[Turn], plan: Plan | None = None) -> bool:
    """Decide whether the latest turn finished the task.

    ``turns`` includes the turn just recorded as its last element.
    """
    if not turns:
        return False
    current = turns[-1]
    if has_completion_marker(current.thought):
        return True
    if plan is not None and plan.on_final_step and is_step_complete(current.thought):
        return True
    # Idle exhaustion: two consecutive turns without any action.
    if len(turns) >= 2 and not turns[-1].invocations and not turns[-2].invocations:
        return True
    return False


def is_clarification_request(thought: str) -> bool:
    if not thought:
        return False
    if "?" in thought:
        return True
    normalized = _normalize(thought)
    return any(hint in normalized for hint in CLARIFICATION_HINTS)


def has_explored(turns: Sequence[Turn]) -> bool:
    return any(turn.invocations for turn in turns)


def should_ask_user(turns: Sequence[Turn]) -> bool:
    """Clarification gate for the latest turn.

    Only a turn that follows real exploration, and that did not just run
    the bootstrap probe, may pause the session with a question.
    """
    if not turns:
        return False
    current = turns[-1]
    if current.used_bootstrap:
        return False
    return has_explored(turns[:-1]) and is_clarification_request(current.thought)


def extract_clarification(thought: str) -> str:
    lines = [line.strip() for line in thought.splitlines() if line.strip()]
    questions = [line for line in lines if "?" in line]
    if questions:
        return "\n".join(questions[:2])
    return thought.strip()


def advance_plan(plan: Plan, thought: str) -> bool:
    """Move the plan to its next step on a completion signal. Returns True if moved."""
    if not is_step_complete(thought):
        return False
    if plan.current_step_index >= len(plan.steps) - 1:
        return False
    plan.current_step_index += 1
    return True


def extract_final_result(turns: Sequence[Turn]) -> str:
    if not turns:
        return EMPTY_SESSION_RESULT
    result = _MARKER_RE.sub("", turns[-1].thought).strip()
    return result or DEFAULT_FINAL_RESULT
