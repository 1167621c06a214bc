"""Session state carried between turns.

A Session is exclusively owned by one Orchestrator. Turns are appended
through ``append_turn`` only and are frozen once appended.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import StrEnum

from kestrel.models.base import ActionInvocation


class SessionStatus(StrEnum):
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.DONE, SessionStatus.FAILED)


@dataclass(frozen=True)
class ActionResult:
    invocation_id: str
    capability: str
    content: str
    success: bool = True
    error: str | None = None


@dataclass(frozen=True)
class Turn:
    thought: str
    invocations: tuple[ActionInvocation, ...] = ()
    results: tuple[ActionResult, ...] = ()
    timestamp: float = field(default_factory=time.time)
    used_bootstrap: bool = False

    @property
    def has_invocations(self) -> bool:
        return bool(self.invocations)


@dataclass(frozen=True)
class UserMessage:
    after_turn: int  # index of the turn it followed, -1 before any turn
    content: str


@dataclass
class Plan:
    """Advisory plan. Only biases completion heuristics."""

    goal: str
    steps: list[str] = field(default_factory=list)
    current_step_index: int = 0

    @property
    def current_step(self) -> str:
        if not self.steps:
            return ""
        return self.steps[min(self.current_step_index, len(self.steps) - 1)]

    @property
    def on_final_step(self) -> bool:
        return bool(self.steps) and self.current_step_index >= len(self.steps) - 1


@dataclass
class Preflight:
    category: str
    acknowledgment: str
    query: str = ""
    frame_count: int = 0


@dataclass
class Session:
    query: str
    working_directory: str
    max_turns: int = 0  # 0 = unbounded
    turns: list[Turn] = field(default_factory=list)
    user_messages: list[UserMessage] = field(default_factory=list)
    current_turn: int = 0
    status: SessionStatus = SessionStatus.RUNNING
    plan: Plan | None = None
    final_result: str = ""
    pending_question: str = ""
    paused: bool = False
    error: str = ""
    empty_response_count: int = 0
    preflight: Preflight | None = None
    # Strategy name -> attempts spent in the current degenerate episode.
    recovery_attempts: dict[str, int] = field(default_factory=dict)

    def append_turn(self, turn: Turn) -> None:
        if self.turns and turn.timestamp < self.turns[-1].timestamp:
            turn = replace(turn, timestamp=self.turns[-1].timestamp)
        self.turns.append(turn)

    def add_user_message(self, content: str) -> None:
        self.user_messages.append(
            UserMessage(after_turn=len(self.turns) - 1, content=content)
        )

    def reset_empty_responses(self) -> None:
        self.empty_response_count = 0
        self.recovery_attempts.clear()

    @property
    def last_turn(self) -> Turn | None:
        return self.turns[-1] if self.turns else None


@dataclass
class ExecutionResult:
    """What execute()/resume() hand back to the caller."""

    status: SessionStatus
    final_result: str = ""
    error: str = ""
    question: str = ""
    pause: bool = False
    turns: int = 0
    session: Session | None = field(default=None, repr=False)

    @classmethod
    def from_session(cls, session: Session) -> ExecutionResult:
        awaiting = session.status == SessionStatus.AWAITING_INPUT
        return cls(
            status=session.status,
            final_result=session.final_result,
            error=session.error,
            question=session.pending_question if awaiting else "",
            pause=awaiting and session.paused,
            turns=session.current_turn,
            session=session,
        )
