"""plan-task: lets the model declare an advisory execution plan."""

from __future__ import annotations

import json
import re

from kestrel.capabilities.registry import Capability, CapabilityContext, CapabilityResult

PLAN_TASK_NAME = "plan-task"


def parse_plan_steps(raw: object) -> list[str]:
    """Accept a list, a JSON array string, or a comma/newline separated string."""
    if isinstance(raw, list):
        return [str(s).strip() for s in raw if str(s).strip()]
    if not isinstance(raw, str):
        return []
    text = raw.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(s).strip() for s in parsed if str(s).strip()]
    return [part.strip() for part in re.split(r"[,\n]", text) if part.strip()]


def format_plan_result(goal: str, steps: list[str]) -> str:
    numbered = "\n".join(f"  {i + 1}. {step}" for i, step in enumerate(steps))
    return f"Plan created successfully:\nGoal: {goal}\nSteps:\n{numbered}"


class PlanTask(Capability):
    """Record a goal and ordered steps. Advisory only."""

    name = PLAN_TASK_NAME
    description = (
        "Declare a plan for the task: a goal and an ordered list of steps. "
        "Say 'step complete' in your response when you finish a step."
    )
    parameters = {
        "type": "object",
        "properties": {
            "goal": {
                "type": "string",
                "description": "What the task should achieve.",
            },
            "steps": {
                "type": ["array", "string"],
                "items": {"type": "string"},
                "description": "Ordered steps (array, or comma/newline separated).",
            },
        },
        "required": ["goal", "steps"],
    }

    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        goal = str(args.get("goal", "")).strip()
        steps = parse_plan_steps(args.get("steps"))
        if not steps:
            return CapabilityResult.fail("plan-task requires at least one step")
        return CapabilityResult.ok(
            format_plan_result(goal, steps),
            data={"goal": goal, "steps": steps},
        )
