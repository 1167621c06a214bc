"""Prompts and response shapes for the knowledge preflight sub-agent."""

from __future__ import annotations

KNOWLEDGE_CATEGORIES = (
    "best-practice",
    "tool-comparison",
    "deprecated-check",
    "current-standard",
)

KNOWLEDGE_INTENT_SYSTEM_PROMPT = """\
You are a classifier for a coding agent.
Return ONLY valid JSON following the provided schema.

Decide if the request needs up-to-date external knowledge (tool usage, best practices,
comparisons, deprecations, current standards) versus a task that only depends on the
local codebase or generic coding work.

If unsure, set needs_knowledge to true and category to "current-standard"."""

KNOWLEDGE_INTENT_SCHEMA = {
    "type": "object",
    "properties": {
        "needs_knowledge": {"type": "boolean"},
        "category": {"type": "string", "enum": [*KNOWLEDGE_CATEGORIES, "none"]},
        "reason": {"type": "string"},
    },
    "required": ["needs_knowledge", "category", "reason"],
}

KNOWLEDGE_SYNTHESIS_SYSTEM_PROMPT = """\
You are a knowledge synthesis sub-agent helping the main coding agent.

The main agent needs current best practices for a task. You can query a
knowledge base that the main agent cannot.

Your workflow:
1. Understand the task from the handoff context
2. Write a concise knowledge query (keywords plus filters for source/version)
3. Analyze the frames you get back
4. Create a short, actionable recipe for the main agent

Query rules:
- 3-5 words only; essential keywords, tool or library name first
- No filler words ("how to", "the", "a") and no synonyms
- Put versions and sources in filters, not in the query

Be specific (versions, commands), concise, and current. If the frames
don't help, say so. Return ONLY valid JSON following the schema."""

KNOWLEDGE_QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "q": {"type": "string"},
        "filters": {"type": "array", "items": {"type": "string"}},
        "limit": {"type": "integer"},
        "reasoning": {"type": "string"},
    },
    "required": ["q"],
}

KNOWLEDGE_SYNTHESIS_SCHEMA = {
    "type": "object",
    "properties": {
        "no_relevant_info": {"type": "boolean"},
        "recipe": {
            "type": "object",
            "properties": {
                "summary": {"type": "string"},
                "steps": {"type": "array", "items": {"type": "string"}},
                "key_points": {"type": "array", "items": {"type": "string"}},
                "deprecated": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["summary", "steps"],
        },
        "confidence": {"type": "number"},
        "reason": {"type": "string"},
    },
    "required": ["confidence", "reason"],
}

_WHY = {
    "best-practice": "I need to know the current best practice so I don't use outdated approaches.",
    "tool-comparison": "I need to understand which tool or approach is recommended right now.",
    "deprecated-check": "I need to verify whether this approach is still current or deprecated.",
    "current-standard": "I need to know the modern, standard way to do this.",
}


def build_intent_prompt(query: str) -> str:
    return (
        f"User request:\n{query}\n\n"
        "Classify whether this request needs up-to-date external knowledge "
        "and select the best category."
    )


def build_handoff_context(query: str, category: str) -> str:
    return "\n".join([
        f'I\'m working on the user\'s request: "{query}"',
        "",
        _WHY.get(category, "I need up-to-date information about this."),
        "",
        "Can you analyze the knowledge frames and give me:",
        "- The specific current method/command to use",
        "- Any version requirements or gotchas",
        "- What deprecated approaches to avoid",
        "",
        "If the frames don't contain relevant info for this specific task, just let me know.",
    ])


def build_query_prompt(handoff: str, environment: dict) -> str:
    env = "\n".join(f"{k}: {v}" for k, v in environment.items()) or "Not provided"
    return (
        f"# Task Handoff from Main Agent\n\n{handoff}\n\n"
        f"# Environment Context\n{env}\n\n---\n\n"
        "Generate the knowledge query now: 3-5 words max, filters for everything else.\n"
        'Example: "add MUI v7" -> {"q": "mui install", '
        '"filters": ["source = \\"mui\\"", "version = \\"7\\""], "limit": 5}'
    )


def build_frame_analysis_prompt(frames_summary: str, frame_count: int, handoff: str) -> str:
    return (
        f"# Task Handoff\n\n{handoff}\n\n"
        f"# Knowledge Results ({frame_count} frames)\n\n{frames_summary}\n\n---\n\n"
        "Now analyze these frames and create a concise recipe for the main agent. "
        "Include specific versions, commands, and steps. If the frames aren't "
        'helpful, set "no_relevant_info": true.\n\nYour synthesis:'
    )
