"""Context window builder.

``build_messages`` is a pure function of session state: the message
window is derived fresh every turn, never kept as a mutable buffer.

Layout:
    system prompt ; original query ; preflight acknowledgment ;
    one summary of turns older than the retention window ;
    the most recent turns verbatim with size-capped results ;
    user replies interleaved after the turn they followed.
"""

from __future__ import annotations

import json
import math

from kestrel.config import ContextConfig
from kestrel.models.base import ActionInvocation
from kestrel.prompts.executor import build_system_prompt
from kestrel.state.session import ActionResult, Session, Turn

TRUNCATION_MARKER = "\n... [truncated]"
READ_TRUNCATION_MARKER = "\n... [truncated; use read-file startLine/endLine/maxChars]"
MIDDLE_ELISION = "\n...\n"
ONE_LINE_ELLIPSIS = "..."
PREFLIGHT_PREFIX = (
    "I queried the knowledge base for current best practices. "
    "Here's what I found:\n\n"
)

# Capabilities whose output is file content; keep both ends visible.
READ_ORIENTED = frozenset({"read-file"})

# Capability id -> argument keys used as the summary label.
_SUMMARY_ARG_KEYS: dict[str, tuple[str, int]] = {
    "read-file": ("path", 0),
    "write-file": ("path", 0),
    "edit-file": ("path", 0),
    "glob": ("pattern", 0),
    "grep": ("pattern", 0),
    "exec-command": ("command", 80),
    "explore-agent": ("query", 80),
}


def truncate_head(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Keep the first ``max_chars`` characters and append ``marker``."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + marker


def truncate_middle(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Keep head (70%) and tail (30%) of ``text`` with the middle elided.

    Output never exceeds ``max_chars + len(MIDDLE_ELISION + marker)``.
    """
    if len(text) <= max_chars:
        return text
    head_size = max(0, math.floor(max_chars * 0.7))
    tail_size = max(0, max_chars - head_size)
    head = text[:head_size].rstrip()
    tail = text[-tail_size:].lstrip() if tail_size > 0 else ""
    body = f"{head}{MIDDLE_ELISION}{tail}" if tail else head
    return body + marker


def compact_one_line(text: str, max_chars: int) -> str:
    compact = " ".join(str(text or "").split())
    if len(compact) <= max_chars:
        return compact
    return compact[:max_chars] + ONE_LINE_ELLIPSIS


def estimate_tokens(messages: list[dict]) -> int:
    """Rough token count: ceil(chars / 4), tool-call payloads included."""
    total = 0
    for msg in messages:
        total += len(msg.get("content") or "")
        tool_calls = msg.get("tool_calls")
        if tool_calls:
            total += len(json.dumps(tool_calls, ensure_ascii=False, default=str))
    return math.ceil(total / 4)


def total_chars(messages: list[dict]) -> int:
    return sum(len(m.get("content") or "") for m in messages)


def format_result_for_context(
    result: ActionResult,
    *,
    recent: bool,
    config: ContextConfig,
) -> str:
    max_chars = config.recent_result_chars if recent else config.old_result_chars
    content = result.content or ""
    if len(content) <= max_chars:
        return content
    if result.capability in READ_ORIENTED:
        return truncate_middle(content, max_chars, READ_TRUNCATION_MARKER)
    return truncate_head(content, max_chars)


def _summary_label(invocation: ActionInvocation) -> str:
    entry = _SUMMARY_ARG_KEYS.get(invocation.name)
    if entry is None:
        return ""
    key, limit = entry
    value = invocation.argument_dict().get(key)
    if not isinstance(value, str):
        return ""
    return compact_one_line(value, limit) if limit else value


def _summarize_action(
    invocation: ActionInvocation,
    result: ActionResult | None,
    line_chars: int,
) -> str:
    label = _summary_label(invocation)
    preview = compact_one_line(result.content, line_chars) if result else ""
    head = f"{invocation.name} {label}" if label else invocation.name
    return f"{head} -> {preview}" if preview else head


def summarize_turns(session: Session, up_to: int, config: ContextConfig) -> str:
    """One line per turn in ``turns[:up_to]``, capped at ``summary_chars``."""
    lines = ["Summary of earlier turns:"]
    for i, turn in enumerate(session.turns[:up_to]):
        results = {r.invocation_id: r for r in turn.results}
        parts = [
            _summarize_action(inv, results.get(inv.id), config.summary_line_chars)
            for inv in turn.invocations
        ]
        if parts:
            lines.append(f"- Turn {i + 1}: {' | '.join(parts)}")
        elif turn.thought.strip():
            note = compact_one_line(turn.thought, config.summary_line_chars)
            lines.append(f"- Turn {i + 1}: (no actions) {note}")
        for reply in session.user_messages:
            if reply.after_turn == i:
                lines.append(
                    f"  User: {compact_one_line(reply.content, config.summary_line_chars)}"
                )
    return truncate_head("\n".join(lines), config.summary_chars)


def _turn_messages(turn: Turn, *, recent: bool, config: ContextConfig) -> list[dict]:
    assistant: dict = {"role": "assistant", "content": turn.thought}
    if turn.invocations:
        assistant["tool_calls"] = [inv.to_message() for inv in turn.invocations]
    messages = [assistant]
    for result in turn.results:
        messages.append({
            "role": "tool",
            "tool_call_id": result.invocation_id,
            "tool_name": result.capability,
            "content": format_result_for_context(result, recent=recent, config=config),
        })
    return messages


def build_messages(
    session: Session,
    config: ContextConfig | None = None,
    *,
    ask_user_name: str = "ask-user-question",
) -> list[dict]:
    """Derive the message window for the next backend call."""
    config = config or ContextConfig()
    turn_count = len(session.turns)

    messages: list[dict] = [
        {
            "role": "system",
            "content": build_system_prompt(
                working_directory=session.working_directory,
                current_turn=session.current_turn,
                max_turns=session.max_turns,
                plan=session.plan,
                ask_user_name=ask_user_name,
            ),
        },
        {"role": "user", "content": session.query},
    ]

    if session.preflight is not None and session.preflight.acknowledgment:
        messages.append({
            "role": "assistant",
            "content": PREFLIGHT_PREFIX + session.preflight.acknowledgment,
        })

    for reply in session.user_messages:
        if reply.after_turn < 0:
            messages.append({"role": "user", "content": reply.content})

    recent_start = max(0, turn_count - config.recent_turns)
    verbatim_start = max(0, recent_start - config.verbatim_old_turns)
    if verbatim_start > 0:
        messages.append({
            "role": "assistant",
            "content": summarize_turns(session, verbatim_start, config),
        })

    for i in range(verbatim_start, turn_count):
        messages.extend(
            _turn_messages(session.turns[i], recent=i >= recent_start, config=config)
        )
        for reply in session.user_messages:
            if reply.after_turn == i:
                messages.append({"role": "user", "content": reply.content})

    for reply in session.user_messages:
        if reply.after_turn >= turn_count:
            messages.append({"role": "user", "content": reply.content})

    return messages
