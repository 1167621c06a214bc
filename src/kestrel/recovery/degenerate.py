"""Degenerate-response diagnosis and recovery.

A degenerate response carries neither text nor an action invocation.
``diagnose`` classifies the likely cause from the message window,
and ``handle_degenerate_response`` picks a recovery strategy (a pure
transform of the message list) for a retry, or gives up once the
consecutive count reaches the hard stop.

Strategies, in escalation order:
    context-reduction      system + query + last 10 messages
    simplify-prompt        simplified system prompt + query + last 8
    history-truncation     first 2 turns + removal marker + last 3 turns
    aggressive-truncation  minimal system prompt + query + last 2 turns
    emergency-mode         emergency prompt + query + forced-action notice
"""

from __future__ import annotations

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from kestrel.engine.context import estimate_tokens, total_chars
from kestrel.exceptions import DegenerateResponseError
from kestrel.prompts.executor import (
    EMERGENCY_SYSTEM_PROMPT,
    MINIMAL_SYSTEM_PROMPT,
    SIMPLIFIED_SYSTEM_PROMPT,
)

if TYPE_CHECKING:
    from kestrel.utils.debug_log import DebugLog

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_EMPTY = 5
TOKEN_CEILING = 8000
STUCK_THRESHOLD = 3
LONG_CONVERSATION = 20
SMALL_WINDOW_MESSAGES = 3
SMALL_WINDOW_TOKENS = 1200


class Cause(StrEnum):
    CONTEXT_TOO_LARGE = "context-too-large"
    MODEL_STUCK = "model-stuck"
    CONVERSATION_TOO_LONG = "conversation-too-long"
    TOOL_RESULT_OVERLOAD = "tool-result-overload"
    MODEL_ERROR = "model-error"


@dataclass(frozen=True)
class RecoveryContext:
    consecutive_empty: int
    total_turns: int = 0


@dataclass(frozen=True)
class Diagnosis:
    cause: Cause
    strategy: str
    diagnostics: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RecoveryStrategy:
    name: str
    max_retries: int
    transform: Callable[[list[dict], RecoveryContext], list[dict]] = field(repr=False)

    def apply(self, messages: list[dict], ctx: RecoveryContext) -> list[dict]:
        return self.transform(list(messages), ctx)


@dataclass
class RecoveryOutcome:
    should_retry: bool
    messages: list[dict] = field(default_factory=list)
    strategy: RecoveryStrategy | None = None
    diagnosis: Diagnosis | None = None
    error: str = ""


def diagnose(messages: list[dict], ctx: RecoveryContext) -> Diagnosis:
    """First matching row of the decision table wins."""
    tokens = estimate_tokens(messages)
    last = messages[-1] if messages else {}
    diagnostics = {
        "message_count": len(messages),
        "estimated_tokens": tokens,
        "consecutive_empty": ctx.consecutive_empty,
        "total_turns": ctx.total_turns,
        "last_message_role": last.get("role"),
        "last_message_length": len(last.get("content") or ""),
        "has_tool_calls": any(m.get("tool_calls") for m in messages),
    }

    if tokens > TOKEN_CEILING:
        cause, strategy = Cause.CONTEXT_TOO_LARGE, "aggressive-truncation"
    elif ctx.consecutive_empty >= STUCK_THRESHOLD:
        cause, strategy = Cause.MODEL_STUCK, "emergency-mode"
    elif len(messages) > LONG_CONVERSATION:
        cause, strategy = Cause.CONVERSATION_TOO_LONG, "history-truncation"
    elif last.get("role") == "tool":
        cause, strategy = Cause.TOOL_RESULT_OVERLOAD, "simplify-prompt"
    elif len(messages) <= SMALL_WINDOW_MESSAGES and tokens < SMALL_WINDOW_TOKENS:
        cause, strategy = Cause.MODEL_ERROR, "simplify-prompt"
    else:
        cause, strategy = Cause.MODEL_ERROR, "context-reduction"
    return Diagnosis(cause=cause, strategy=strategy, diagnostics=diagnostics)


# -- Strategies --------------------------------------------------------------


def _first(messages: list[dict], role: str) -> dict | None:
    return next((m for m in messages if m.get("role") == role), None)


def _history(messages: list[dict]) -> list[dict]:
    return [m for m in messages if m.get("role") not in ("system", "user")]


def _tail_history(messages: list[dict], count: int) -> list[dict]:
    return _history(messages[-count:])


def _context_reduction(messages: list[dict], ctx: RecoveryContext) -> list[dict]:
    system, user = _first(messages, "system"), _first(messages, "user")
    if system is None or user is None:
        return messages
    return [system, user, *_tail_history(messages, 10)]


def _simplify_prompt(messages: list[dict], ctx: RecoveryContext) -> list[dict]:
    system, user = _first(messages, "system"), _first(messages, "user")
    if system is None or user is None:
        return messages
    simplified = {"role": "system", "content": SIMPLIFIED_SYSTEM_PROMPT}
    return [simplified, user, *_tail_history(messages, 8)]


def _history_truncation(messages: list[dict], ctx: RecoveryContext) -> list[dict]:
    system, user = _first(messages, "system"), _first(messages, "user")
    if system is None or user is None:
        return messages
    history = _history(messages)
    # A turn is roughly two messages: assistant + tool result.
    head, tail = history[:4], history[-6:]
    if len(history) <= len(head) + len(tail):
        return [system, user, *history]
    removed = len(history) - len(head) - len(tail)
    marker = {
        "role": "user",
        "content": (
            f"[Context truncated: {removed} messages removed to reduce token usage]"
        ),
    }
    return [system, user, *head, marker, *tail]


def _aggressive_truncation(messages: list[dict], ctx: RecoveryContext) -> list[dict]:
    system, user = _first(messages, "system"), _first(messages, "user")
    if system is None or user is None:
        return messages
    minimal = {"role": "system", "content": MINIMAL_SYSTEM_PROMPT}
    return [minimal, user, *_tail_history(messages, 4)]


def _emergency_mode(messages: list[dict], ctx: RecoveryContext) -> list[dict]:
    user = _first(messages, "user")
    if user is None:
        return messages
    notice = {
        "role": "user",
        "content": (
            f"[System: Model has returned {ctx.consecutive_empty} consecutive "
            "empty responses. Forcing basic action.]"
        ),
    }
    return [{"role": "system", "content": EMERGENCY_SYSTEM_PROMPT}, user, notice]


CONTEXT_REDUCTION = RecoveryStrategy("context-reduction", 2, _context_reduction)
SIMPLIFY_PROMPT = RecoveryStrategy("simplify-prompt", 1, _simplify_prompt)
HISTORY_TRUNCATION = RecoveryStrategy("history-truncation", 1, _history_truncation)
AGGRESSIVE_TRUNCATION = RecoveryStrategy("aggressive-truncation", 1, _aggressive_truncation)
EMERGENCY_MODE = RecoveryStrategy("emergency-mode", 1, _emergency_mode)

ALL_STRATEGIES: tuple[RecoveryStrategy, ...] = (
    CONTEXT_REDUCTION,
    SIMPLIFY_PROMPT,
    HISTORY_TRUNCATION,
    AGGRESSIVE_TRUNCATION,
    EMERGENCY_MODE,
)
_BY_NAME = {s.name: s for s in ALL_STRATEGIES}


def select_strategy(
    recommended: str,
    attempts: MutableMapping[str, int] | None = None,
) -> RecoveryStrategy:
    """Recommended strategy, or the next one in escalation order with budget left.

    Emergency mode is the floor once every budget is spent.
    """
    attempts = attempts if attempts is not None else {}
    start = ALL_STRATEGIES.index(_BY_NAME.get(recommended, CONTEXT_REDUCTION))
    for strategy in ALL_STRATEGIES[start:]:
        if attempts.get(strategy.name, 0) < strategy.max_retries:
            return strategy
    return EMERGENCY_MODE


def capability_mode_for_retry(strategy_name: str | None, consecutive_empty: int) -> str:
    if strategy_name in ("emergency-mode", "aggressive-truncation"):
        return "minimal"
    if consecutive_empty >= STUCK_THRESHOLD:
        return "minimal"
    return "core"


def give_up_message(count: int, cause: str) -> str:
    return str(DegenerateResponseError(count, cause))


def handle_degenerate_response(
    messages: list[dict],
    ctx: RecoveryContext,
    *,
    attempts: MutableMapping[str, int] | None = None,
    max_consecutive: int = MAX_CONSECUTIVE_EMPTY,
    debug_log: DebugLog | None = None,
) -> RecoveryOutcome:
    """Diagnose a degenerate response and prepare the retry window.

    ``attempts`` tracks strategy usage for the current episode and is
    updated in place with the strategy chosen here.
    """
    diagnosis = diagnose(messages, ctx)
    logger.warning(
        "Backend returned a degenerate response (attempt %d/%d), cause: %s",
        ctx.consecutive_empty, max_consecutive, diagnosis.cause,
    )

    if ctx.consecutive_empty >= max_consecutive:
        logger.error("Degenerate-response limit (%d) reached, giving up", max_consecutive)
        if debug_log is not None:
            debug_log.log_degenerate(
                attempt=ctx.consecutive_empty,
                cause=diagnosis.cause,
                strategy="",
                diagnostics=diagnosis.diagnostics,
                messages_before=len(messages),
                messages_after=0,
            )
        return RecoveryOutcome(
            should_retry=False,
            diagnosis=diagnosis,
            error=give_up_message(ctx.consecutive_empty, diagnosis.cause),
        )

    strategy = select_strategy(diagnosis.strategy, attempts)
    modified = strategy.apply(messages, ctx)
    if (
        strategy is not SIMPLIFY_PROMPT
        and len(modified) == len(messages)
        and total_chars(modified) == total_chars(messages)
    ):
        logger.info("%s made no change; falling back to simplify-prompt", strategy.name)
        strategy = SIMPLIFY_PROMPT
        modified = strategy.apply(messages, ctx)

    if attempts is not None:
        attempts[strategy.name] = attempts.get(strategy.name, 0) + 1

    before, after = total_chars(messages), total_chars(modified)
    logger.info(
        "Retrying with %s: %d -> %d messages, %d -> %d chars",
        strategy.name, len(messages), len(modified), before, after,
    )
    if debug_log is not None:
        debug_log.log_degenerate(
            attempt=ctx.consecutive_empty,
            cause=diagnosis.cause,
            strategy=strategy.name,
            diagnostics=diagnosis.diagnostics,
            messages_before=len(messages),
            messages_after=len(modified),
        )
    return RecoveryOutcome(
        should_retry=True,
        messages=modified,
        strategy=strategy,
        diagnosis=diagnosis,
    )
