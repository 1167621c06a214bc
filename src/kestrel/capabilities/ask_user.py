"""ask-user-question: lets the model ask the developer for clarification.

The orchestrator intercepts this capability: it parks the session at
``awaiting_input`` with the question as ``pending_question`` and the
developer's reply arrives through ``resume()``.
"""

from __future__ import annotations

from kestrel.capabilities.registry import Capability, CapabilityContext, CapabilityResult

ASK_USER_NAME = "ask-user-question"
DEFAULT_QUESTION = "Need more details to continue."


def normalize_question(args: dict) -> str:
    question = args.get("question", "") if isinstance(args, dict) else ""
    question = str(question or "").strip()
    return question or DEFAULT_QUESTION


class AskUserQuestion(Capability):
    """Ask the user a question and wait for their response."""

    name = ASK_USER_NAME
    description = (
        "Ask the developer a question when you need clarification, a decision, "
        "or additional information. Only ask after exploring the project; "
        "use this instead of guessing."
    )
    parameters = {
        "type": "object",
        "properties": {
            "question": {
                "type": "string",
                "description": "The question to ask the developer.",
            },
        },
        "required": ["question"],
    }

    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        # Reached only when a caller dispatches without the orchestrator.
        question = normalize_question(args)
        return CapabilityResult.ok(
            f"QUESTION: {question}",
            data={"question": question, "awaiting_input": True},
        )
