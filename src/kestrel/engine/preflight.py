"""Knowledge preflight.

Before the first turn the backend decides whether the request depends
on current external knowledge. If it does, a two-phase sub-agent
writes a concise query against a ``KnowledgeSource``, then distills the
returned frames into a short recipe the main loop sees as an earlier
assistant message.

Every failure in here is logged and degrades to "no preflight"; the
session never fails because the knowledge base was unreachable.
"""

from __future__ import annotations

import logging
import platform
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx

from kestrel.models.base import ModelProvider
from kestrel.prompts.knowledge import (
    KNOWLEDGE_CATEGORIES,
    KNOWLEDGE_INTENT_SCHEMA,
    KNOWLEDGE_INTENT_SYSTEM_PROMPT,
    KNOWLEDGE_QUERY_SCHEMA,
    KNOWLEDGE_SYNTHESIS_SCHEMA,
    KNOWLEDGE_SYNTHESIS_SYSTEM_PROMPT,
    build_frame_analysis_prompt,
    build_handoff_context,
    build_intent_prompt,
    build_query_prompt,
)
from kestrel.state.session import Preflight
from kestrel.utils.llm_json import parse_json_object

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "current-standard"
MAX_QUERY_WORDS = 5
TRUNCATED_QUERY_WORDS = 4

NO_QUERY_MESSAGE = "Failed to generate knowledge query."
NO_FRAMES_MESSAGE = "No relevant knowledge found for this query."
INCOMPLETE_MESSAGE = "Knowledge synthesis incomplete."


@dataclass
class KnowledgeFrame:
    """One retrieved knowledge record."""

    context: str
    source: str = ""
    version: str = ""
    score: float | None = None

    @classmethod
    def from_dict(cls, data: dict) -> KnowledgeFrame:
        score = data.get("score")
        try:
            score = float(score) if score is not None else None
        except (TypeError, ValueError):
            score = None
        return cls(
            context=str(data.get("context") or data.get("content") or ""),
            source=str(data.get("source") or ""),
            version=str(data.get("version") or ""),
            score=score,
        )


class KnowledgeSource(ABC):
    """Where preflight queries go. Implementations are injected."""

    @abstractmethod
    async def query(
        self, q: str, filters: list[str], limit: int,
    ) -> list[KnowledgeFrame]:
        ...


class HttpKnowledgeSource(KnowledgeSource):
    """Knowledge service reachable over HTTP.

    ``POST {url}`` with ``{"q", "filters", "limit"}``; the reply is either
    a list of frames or an object with a ``frames`` list.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout), transport=transport,
        )

    async def query(
        self, q: str, filters: list[str], limit: int,
    ) -> list[KnowledgeFrame]:
        response = await self._client.post(
            self._url, json={"q": q, "filters": filters, "limit": limit},
        )
        response.raise_for_status()
        data = response.json()
        items = data.get("frames", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []
        return [KnowledgeFrame.from_dict(item) for item in items if isinstance(item, dict)]

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class KnowledgeIntent:
    needs_knowledge: bool
    category: str = DEFAULT_CATEGORY
    reason: str = ""


@dataclass
class SynthesisResult:
    ok: bool
    text: str
    query: str = ""
    frame_count: int = 0
    filters: list[str] = field(default_factory=list)


def _json_format(name: str, schema: dict) -> dict:
    return {"type": "json_schema", "json_schema": {"name": name, "schema": schema}}


def _environment(working_directory: str) -> dict:
    return {
        "Working directory": working_directory,
        "Platform": platform.system() or "unknown",
        "Python": platform.python_version(),
    }


def shorten_query(q: str) -> str:
    """Keep knowledge queries terse; long ones are cut to their leading words."""
    words = q.split()
    if len(words) > MAX_QUERY_WORDS:
        logger.info("Knowledge query too long (%d words), truncating", len(words))
        return " ".join(words[:TRUNCATED_QUERY_WORDS])
    return " ".join(words)


def format_frames(frames: list[KnowledgeFrame], max_chars: int = 800) -> str:
    parts = []
    for i, frame in enumerate(frames, start=1):
        label = frame.source or "unknown"
        if frame.version:
            label += f"@{frame.version}"
        score = f" score={frame.score:.2f}" if frame.score is not None else ""
        parts.append(f"## Frame {i} [{label}{score}]\n{frame.context[:max_chars]}")
    return "\n\n".join(parts)


def format_recipe(data: dict) -> str:
    recipe = data.get("recipe") or {}
    lines = [str(recipe.get("summary", "")).strip(), ""]
    steps = [str(s) for s in recipe.get("steps") or []]
    if steps:
        lines.append("Steps:")
        lines.extend(f"{i}. {step}" for i, step in enumerate(steps, start=1))
        lines.append("")
    key_points = [str(p) for p in recipe.get("key_points") or []]
    if key_points:
        lines.append("Key Points:")
        lines.extend(f"- {p}" for p in key_points)
        lines.append("")
    deprecated = [str(d) for d in recipe.get("deprecated") or []]
    if deprecated:
        lines.append("Avoid (Deprecated):")
        lines.extend(f"- {d}" for d in deprecated)
        lines.append("")
    try:
        confidence = float(data.get("confidence", 0))
    except (TypeError, ValueError):
        confidence = 0.0
    lines.append(f"Confidence: {round(confidence * 100)}%")
    return "\n".join(lines).strip()


async def classify_intent(provider: ModelProvider, query: str) -> KnowledgeIntent:
    if not query.strip():
        return KnowledgeIntent(needs_knowledge=False, category="none")
    try:
        response = await provider.complete(
            [
                {"role": "system", "content": KNOWLEDGE_INTENT_SYSTEM_PROMPT},
                {"role": "user", "content": build_intent_prompt(query)},
            ],
            temperature=0.0,
            response_format=_json_format("knowledge_intent", KNOWLEDGE_INTENT_SCHEMA),
        )
        data = parse_json_object(response.text)
    except Exception as e:
        logger.warning("Knowledge intent classification failed: %s", e)
        return KnowledgeIntent(needs_knowledge=True, reason="classification failed")

    category = str(data.get("category", DEFAULT_CATEGORY))
    if category not in (*KNOWLEDGE_CATEGORIES, "none"):
        category = DEFAULT_CATEGORY
    return KnowledgeIntent(
        needs_knowledge=bool(data.get("needs_knowledge", True)),
        category=category,
        reason=str(data.get("reason", "")),
    )


async def synthesize(
    provider: ModelProvider,
    source: KnowledgeSource,
    *,
    query: str,
    category: str,
    working_directory: str,
    default_limit: int = 5,
    max_frame_chars: int = 800,
) -> SynthesisResult:
    """Two-phase knowledge synthesis: write a query, then analyze the frames."""
    handoff = build_handoff_context(query, category)
    system = {"role": "system", "content": KNOWLEDGE_SYNTHESIS_SYSTEM_PROMPT}

    response = await provider.complete(
        [system, {
            "role": "user",
            "content": build_query_prompt(handoff, _environment(working_directory)),
        }],
        temperature=0.0,
        response_format=_json_format("knowledge_query", KNOWLEDGE_QUERY_SCHEMA),
    )
    try:
        plan = parse_json_object(response.text)
    except ValueError as e:
        logger.warning("Knowledge query generation returned no JSON: %s", e)
        return SynthesisResult(ok=False, text=NO_QUERY_MESSAGE)

    q = shorten_query(str(plan.get("q") or ""))
    if not q:
        return SynthesisResult(ok=False, text=NO_QUERY_MESSAGE)
    filters = [str(f) for f in plan.get("filters") or [] if str(f).strip()]
    try:
        limit = int(plan.get("limit") or default_limit)
    except (TypeError, ValueError):
        limit = default_limit
    limit = max(1, min(limit, 20))

    logger.info("Knowledge query: %r filters=%s limit=%d", q, filters, limit)
    frames = await source.query(q, filters, limit)
    if not frames:
        return SynthesisResult(ok=False, text=NO_FRAMES_MESSAGE, query=q, filters=filters)

    response = await provider.complete(
        [system, {
            "role": "user",
            "content": build_frame_analysis_prompt(
                format_frames(frames, max_frame_chars), len(frames), handoff,
            ),
        }],
        temperature=0.0,
        response_format=_json_format("knowledge_synthesis", KNOWLEDGE_SYNTHESIS_SCHEMA),
    )
    try:
        data = parse_json_object(response.text)
    except ValueError as e:
        logger.warning("Knowledge synthesis returned no JSON: %s", e)
        return SynthesisResult(
            ok=False, text=INCOMPLETE_MESSAGE, query=q,
            frame_count=len(frames), filters=filters,
        )

    if data.get("no_relevant_info"):
        return SynthesisResult(
            ok=False,
            text=(
                f"Checked {len(frames)} knowledge frames but found no relevant "
                f"information. Reason: {data.get('reason', 'unspecified')}"
            ),
            query=q, frame_count=len(frames), filters=filters,
        )
    if not isinstance(data.get("recipe"), dict):
        return SynthesisResult(
            ok=False, text=INCOMPLETE_MESSAGE, query=q,
            frame_count=len(frames), filters=filters,
        )
    return SynthesisResult(
        ok=True, text=format_recipe(data), query=q,
        frame_count=len(frames), filters=filters,
    )


async def run_preflight(
    provider: ModelProvider,
    source: KnowledgeSource,
    *,
    query: str,
    working_directory: str,
    default_limit: int = 5,
    max_frame_chars: int = 800,
) -> Preflight | None:
    """Classify, then synthesize. Returns None when no acknowledgment applies."""
    intent = await classify_intent(provider, query)
    if not intent.needs_knowledge or intent.category == "none":
        logger.info("Knowledge preflight skipped: %s", intent.reason or "not needed")
        return None

    try:
        result = await synthesize(
            provider, source,
            query=query,
            category=intent.category,
            working_directory=working_directory,
            default_limit=default_limit,
            max_frame_chars=max_frame_chars,
        )
    except Exception as e:
        logger.warning("Knowledge preflight failed: %s", e)
        return None

    if not result.ok:
        logger.info("Knowledge preflight produced nothing usable: %s", result.text)
        return None
    return Preflight(
        category=intent.category,
        acknowledgment=result.text,
        query=result.query,
        frame_count=result.frame_count,
    )
