"""Turn-loop orchestrator.

Drives one session at a time through the states

    running -> running | awaiting_input | done | failed
    awaiting_input -> running   (resume)

Each iteration is one turn: derive the message window, call the
backend, recover from a degenerate reply if needed, run the resulting
invocations one after another, record the turn, then ask the detectors
whether the task is done or the backend wants input.

Observers get lifecycle events through a single injected sink. The sink
can never change control flow: anything it raises is logged and dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from kestrel.capabilities.ask_user import ASK_USER_NAME, AskUserQuestion, normalize_question
from kestrel.capabilities.plan_task import PLAN_TASK_NAME, PlanTask, format_plan_result, parse_plan_steps
from kestrel.capabilities.registry import CapabilityContext, CapabilityRegistry
from kestrel.config import Config
from kestrel.engine.completion import (
    advance_plan,
    extract_clarification,
    extract_final_result,
    is_task_complete,
    should_ask_user,
)
from kestrel.engine.context import build_messages
from kestrel.engine.preflight import KnowledgeSource, run_preflight
from kestrel.engine.protocol import (
    build_bootstrap_invocation,
    extract_text_invocations,
    validate_invocation,
)
from kestrel.events import types as ev
from kestrel.events.describe import describe_action
from kestrel.events.types import ExecutorEvent
from kestrel.exceptions import DegenerateResponseError, NoPendingSessionError, SessionBusyError
from kestrel.models.base import ActionInvocation, ModelProvider, ModelResponse
from kestrel.models.retry import (
    ModelRetryPolicy,
    call_with_model_retry,
    is_retryable_model_error,
    log_model_failure,
)
from kestrel.recovery.degenerate import (
    RecoveryContext,
    capability_mode_for_retry,
    handle_degenerate_response,
)
from kestrel.recovery.errors import format_error_result
from kestrel.state.session import (
    ActionResult,
    ExecutionResult,
    Plan,
    Session,
    SessionStatus,
    Turn,
)
from kestrel.utils.debug_log import DebugLog

logger = logging.getLogger(__name__)

PAUSE_QUESTION = "Paused. Press Esc to continue or type a new instruction."
MAX_TURNS_ERROR = "Maximum turns exceeded - task too complex or unclear goal"
RESULT_TRUNCATION_NOTICE = "\n\n... (truncated, result too long)"
SECOND_QUESTION_ERROR = (
    "Only one question can be asked per turn. Wait for the answer to the first one."
)

EventSink = Callable[[ExecutorEvent], Any]


def truncate_result(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + RESULT_TRUNCATION_NOTICE


class Orchestrator:
    """Runs the turn loop for one session at a time.

    A session that stops at ``awaiting_input`` stays parked on the
    orchestrator until ``resume()`` continues it, ``execute()`` replaces
    it, or ``cancel_pending()`` drops it.
    """

    def __init__(
        self,
        provider: ModelProvider,
        registry: CapabilityRegistry,
        *,
        working_directory: str | Path,
        config: Config | None = None,
        max_turns: int | None = None,
        on_event: EventSink | None = None,
        knowledge: KnowledgeSource | None = None,
        debug_log: DebugLog | None = None,
        retry_policy: ModelRetryPolicy | None = None,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._working_directory = str(working_directory)
        self._config = config or Config()
        self._max_turns = (
            self._config.execution.max_turns if max_turns is None else max(0, max_turns)
        )
        self._on_event = on_event
        self._knowledge = knowledge
        if debug_log is None and self._config.debug_log_path is not None:
            debug_log = DebugLog(self._config.debug_log_path)
        self._debug_log = debug_log
        self._retry_policy = retry_policy or ModelRetryPolicy.from_execution_config(
            self._config.execution,
        )

        # Reserved capabilities must be known to validation.
        if not registry.has(ASK_USER_NAME):
            registry.register(AskUserQuestion())
        if not registry.has(PLAN_TASK_NAME):
            registry.register(PlanTask())

        self._session: Session | None = None
        self._running = False
        self._pause_requested = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        """The active or parked session, if any."""
        return self._session

    def has_pending(self) -> bool:
        return (
            not self._running
            and self._session is not None
            and self._session.status == SessionStatus.AWAITING_INPUT
        )

    def cancel_pending(self) -> bool:
        """Drop a parked session. Returns True if one was dropped."""
        if not self.has_pending():
            return False
        logger.info("Discarding parked session")
        self._session = None
        return True

    def request_pause(self) -> None:
        """Ask the loop to park at the next turn boundary."""
        self._pause_requested = True

    def set_event_handler(self, handler: EventSink | None) -> None:
        self._on_event = handler

    async def execute(self, query: str) -> ExecutionResult:
        """Start a fresh session for ``query`` and run it until it stops."""
        if self._running:
            raise SessionBusyError("A session is already running")
        if self.has_pending():
            logger.info("Starting a new session; discarding the parked one")

        session = Session(
            query=query,
            working_directory=self._working_directory,
            max_turns=self._max_turns,
        )
        self._session = session
        self._pause_requested = False
        self._running = True
        try:
            self._emit(ev.START, "Starting task", detail=query)
            await self._preflight(session)
            await self._run_loop(session)
        finally:
            self._running = False
        return self._finish(session)

    async def resume(self, user_input: str) -> ExecutionResult:
        """Continue the parked session with the developer's reply."""
        if self._running:
            raise SessionBusyError("A session is already running")
        session = self._session
        if session is None or session.status != SessionStatus.AWAITING_INPUT:
            raise NoPendingSessionError("No paused session to resume")

        reply = (user_input or "").strip()
        if reply:
            session.add_user_message(reply)
        session.pending_question = ""
        session.paused = False
        session.status = SessionStatus.RUNNING
        self._pause_requested = False
        self._running = True
        try:
            self._emit(ev.RESUME, "Resuming task", detail=reply)
            await self._run_loop(session)
        finally:
            self._running = False
        return self._finish(session)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_loop(self, session: Session) -> None:
        try:
            while session.status == SessionStatus.RUNNING:
                if self._pause_requested:
                    self._park_for_pause(session)
                    break
                if session.max_turns > 0 and session.current_turn >= session.max_turns:
                    session.status = SessionStatus.FAILED
                    session.error = MAX_TURNS_ERROR
                    break

                session.current_turn += 1
                await self._run_turn(session)

                if session.status == SessionStatus.RUNNING and self._pause_requested:
                    self._park_for_pause(session)
        except DegenerateResponseError as e:
            logger.error("Session failed: %s", e)
            session.status = SessionStatus.FAILED
            session.error = str(e)
        except Exception as e:
            logger.exception("Turn %d aborted the session", session.current_turn)
            session.status = SessionStatus.FAILED
            session.error = str(e) or type(e).__name__

        self._announce_stop(session)

    def _park_for_pause(self, session: Session) -> None:
        self._pause_requested = False
        session.status = SessionStatus.AWAITING_INPUT
        session.pending_question = PAUSE_QUESTION
        session.paused = True
        logger.info("Session paused after turn %d", session.current_turn)

    def _announce_stop(self, session: Session) -> None:
        if session.status == SessionStatus.DONE:
            self._emit(
                ev.DONE, "Task completed", detail=session.final_result, level=ev.SUCCESS,
            )
        elif session.status == SessionStatus.FAILED:
            self._emit(ev.DISTRESS, "Task failed", detail=session.error, level=ev.ERROR)
        elif session.status == SessionStatus.AWAITING_INPUT:
            self._emit(
                ev.AWAITING_INPUT,
                "Paused" if session.paused else "Waiting for your input",
                detail=session.pending_question,
                pause=session.paused,
            )

    def _finish(self, session: Session) -> ExecutionResult:
        result = ExecutionResult.from_session(session)
        if session.status.is_terminal and self._session is session:
            self._session = None
        return result

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def _run_turn(self, session: Session) -> None:
        first_turn = not session.turns
        messages = build_messages(
            session, self._config.context, ask_user_name=ASK_USER_NAME,
        )
        response = await self._call_backend(messages, self._config.execution.capability_mode)

        if response.is_degenerate():
            response = await self._recover(session, messages)
        else:
            session.reset_empty_responses()
        # Nonzero only when the recovery retry came back degenerate too.
        recovered = session.empty_response_count > 0

        thought = response.text or ""
        invocations = list(response.invocations)
        if not invocations and thought.strip():
            parsed, cleaned = extract_text_invocations(thought, self._registry.names())
            if parsed:
                invocations, thought = parsed, cleaned

        used_bootstrap = False
        if not invocations and (first_turn or recovered):
            bootstrap = build_bootstrap_invocation(
                self._config.execution.bootstrap_capability,
            )
            logger.info("No invocations on turn %d; running %s", session.current_turn, bootstrap.name)
            invocations = [bootstrap]
            used_bootstrap = True

        if thought.strip():
            self._emit(ev.THINKING, "Thinking", detail=thought)

        logger.info("Turn %d: %d invocation(s)", session.current_turn, len(invocations))
        results: list[ActionResult] = []
        question: str | None = None
        for invocation in invocations:
            result, asked = await self._dispatch(session, invocation, question)
            results.append(result)
            if asked is not None:
                question = asked

        session.append_turn(Turn(
            thought=thought,
            invocations=tuple(invocations),
            results=tuple(results),
            used_bootstrap=used_bootstrap,
        ))
        if session.plan is not None and advance_plan(session.plan, thought):
            logger.info("Plan advanced to step %d", session.plan.current_step_index + 1)

        if question is not None:
            session.status = SessionStatus.AWAITING_INPUT
            session.pending_question = question
            session.paused = False
        elif is_task_complete(session.turns, session.plan):
            session.status = SessionStatus.DONE
            session.final_result = extract_final_result(session.turns)
        elif should_ask_user(session.turns):
            session.status = SessionStatus.AWAITING_INPUT
            session.pending_question = extract_clarification(thought)
            session.paused = False

        if self._debug_log is not None:
            self._debug_log.log_turn(
                turn=session.current_turn,
                status=session.status,
                thought_length=len(thought),
                invocations=[inv.name for inv in invocations],
                plan=(
                    {"goal": session.plan.goal, "step": session.plan.current_step_index}
                    if session.plan else None
                ),
            )

    async def _call_backend(self, messages: list[dict], mode: str) -> ModelResponse:
        tools = self._registry.schemas(mode)
        return await call_with_model_retry(
            lambda: self._provider.complete(messages, tools=tools or None),
            policy=self._retry_policy,
            should_retry=is_retryable_model_error,
            on_failure=log_model_failure,
        )

    async def _recover(self, session: Session, messages: list[dict]) -> ModelResponse:
        """One recovery retry for a degenerate reply.

        Raises ``DegenerateResponseError`` once the consecutive count
        reaches the hard stop. A retry that is degenerate again counts
        too and yields an empty response so the caller bootstraps.
        """
        max_consecutive = self._config.recovery.max_consecutive_empty
        session.empty_response_count += 1
        outcome = handle_degenerate_response(
            messages,
            RecoveryContext(session.empty_response_count, len(session.turns)),
            attempts=session.recovery_attempts,
            max_consecutive=max_consecutive,
            debug_log=self._debug_log,
        )
        cause = outcome.diagnosis.cause if outcome.diagnosis else "unknown"
        if not outcome.should_retry:
            raise DegenerateResponseError(session.empty_response_count, cause)

        strategy = outcome.strategy.name if outcome.strategy else ""
        self._emit(
            ev.DISTRESS,
            "Empty response from the model; retrying",
            detail=f"cause: {cause}, strategy: {strategy}",
            level=ev.WARN,
        )
        retry = await self._call_backend(
            outcome.messages,
            capability_mode_for_retry(strategy, session.empty_response_count),
        )
        if not retry.is_degenerate():
            session.reset_empty_responses()
            return retry

        session.empty_response_count += 1
        if session.empty_response_count >= max_consecutive:
            raise DegenerateResponseError(session.empty_response_count, cause)
        return retry

    async def _dispatch(
        self,
        session: Session,
        invocation: ActionInvocation,
        pending_question: str | None,
    ) -> tuple[ActionResult, str | None]:
        """Run one invocation. Returns its result and any question it asked."""
        name = invocation.name
        args = invocation.argument_dict()
        message, detail = describe_action(name, args, "start")
        self._emit(ev.ACTION_START, message, detail=detail, capability=name)

        asked: str | None = None
        if name == ASK_USER_NAME:
            if pending_question is not None:
                result = self._error_result(invocation, SECOND_QUESTION_ERROR)
            else:
                asked = normalize_question(args)
                result = ActionResult(
                    invocation_id=invocation.id,
                    capability=name,
                    content=f"Waiting for user response to: {asked}",
                )
        else:
            issue = validate_invocation(invocation, self._registry.get(name))
            if issue is not None:
                logger.warning("Rejected %s invocation: %s", name, issue.message)
                result = self._error_result(invocation, issue.message)
            elif name == PLAN_TASK_NAME:
                result = self._apply_plan(session, invocation, args)
            else:
                result = await self._execute(session, invocation, args)

        message, _ = describe_action(name, args, "result")
        self._emit(
            ev.ACTION_RESULT,
            message,
            detail=result.content,
            level=ev.SUCCESS if result.success else ev.WARN,
            capability=name,
        )
        return result, asked

    def _apply_plan(
        self, session: Session, invocation: ActionInvocation, args: dict,
    ) -> ActionResult:
        goal = str(args.get("goal", "")).strip()
        steps = parse_plan_steps(args.get("steps"))
        if not steps:
            return self._error_result(invocation, "plan-task requires at least one step")
        session.plan = Plan(goal=goal, steps=steps)
        logger.info("Plan set: %s (%d steps)", goal, len(steps))
        return ActionResult(
            invocation_id=invocation.id,
            capability=invocation.name,
            content=format_plan_result(goal, steps),
        )

    async def _execute(
        self, session: Session, invocation: ActionInvocation, args: dict,
    ) -> ActionResult:
        ctx = CapabilityContext(
            workspace=Path(session.working_directory),
            turn=session.current_turn,
            invocation_id=invocation.id,
        )
        outcome = await self._registry.execute(invocation.name, args, ctx)
        if not outcome.success:
            return self._error_result(invocation, outcome.error or "Capability failed")
        return ActionResult(
            invocation_id=invocation.id,
            capability=invocation.name,
            content=truncate_result(
                outcome.output or "", self._config.execution.max_result_chars,
            ),
        )

    @staticmethod
    def _error_result(invocation: ActionInvocation, error: str) -> ActionResult:
        return ActionResult(
            invocation_id=invocation.id,
            capability=invocation.name,
            content=format_error_result(invocation.name, error),
            success=False,
            error=error,
        )

    # ------------------------------------------------------------------
    # Preflight and events
    # ------------------------------------------------------------------

    async def _preflight(self, session: Session) -> None:
        if self._knowledge is None or not self._config.execution.knowledge_preflight:
            return
        preflight = await run_preflight(
            self._provider,
            self._knowledge,
            query=session.query,
            working_directory=session.working_directory,
            default_limit=self._config.knowledge.limit,
            max_frame_chars=self._config.knowledge.max_frame_chars,
        )
        if preflight is None:
            return
        session.preflight = preflight
        message, _ = describe_action("knowledge-synthesis", {}, "result")
        self._emit(
            ev.ACTION_RESULT,
            message,
            detail=preflight.acknowledgment,
            level=ev.SUCCESS,
            capability="knowledge-synthesis",
        )

    def _emit(
        self,
        kind: str,
        message: str,
        *,
        detail: str = "",
        level: str = ev.INFO,
        capability: str = "",
        pause: bool = False,
    ) -> None:
        if self._on_event is None:
            return
        event = ExecutorEvent(
            kind=kind,
            message=message,
            detail=detail,
            level=level,
            capability=capability,
            pause=pause,
        )
        try:
            self._on_event(event)
        except Exception as e:
            logger.warning("Event handler failed for %s: %s", kind, e)
