"""OpenAI-compatible model provider.

Connects to any OpenAI-compatible API endpoint:
MLX server, LM Studio, vLLM, llama.cpp server, etc.
"""

from __future__ import annotations

import json
import logging
import time

import httpx

from kestrel.config import ModelConfig
from kestrel.models.base import (
    ActionInvocation,
    ModelConnectionError,
    ModelProvider,
    ModelResponse,
    TokenUsage,
)

logger = logging.getLogger(__name__)

# Keys the chat-completions message schema accepts.
_MESSAGE_KEYS = frozenset({"role", "content", "name", "tool_calls", "tool_call_id"})


class OpenAICompatibleProvider(ModelProvider):
    """Provider for OpenAI-compatible API endpoints."""

    ASSISTANT_CONTENT_FALLBACK = "Tool call context omitted."

    def __init__(
        self,
        config: ModelConfig,
        provider_name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        headers: dict[str, str] = {}
        api_key = config.api_key.strip()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(300.0),
            headers=headers,
            transport=transport,
        )
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self._provider_name = provider_name or config.model
        self._roles = list(config.roles)

    @staticmethod
    async def _http_error_body(response: httpx.Response, limit: int = 200) -> str:
        """Safely extract an HTTP error body."""
        try:
            body = await response.aread()
            if body:
                return body.decode("utf-8", errors="replace")[:limit]
        except httpx.HTTPError:
            pass
        return "<response body unavailable>"

    @classmethod
    def _extract_text_fragments(cls, value: object) -> list[str]:
        """Extract plain-text fragments from varied payload shapes."""
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if isinstance(value, list):
            parts: list[str] = []
            for item in value:
                parts.extend(cls._extract_text_fragments(item))
            return parts
        if isinstance(value, dict):
            # Content-part schema: {"type":"text","text":"..."}
            if str(value.get("type", "")).lower() in {"text", "output_text"}:
                return cls._extract_text_fragments(value.get("text"))
            return cls._extract_text_fragments(value.get("content"))
        return []

    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict | None = None,
    ) -> ModelResponse:
        payload: dict = {
            "model": self._model,
            "messages": self._normalize_messages(messages),
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature if temperature is not None else self._temperature,
        }
        if tools:
            payload["tools"] = self._format_tools(tools)
        if response_format:
            payload["response_format"] = response_format

        start = time.monotonic()
        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
        except httpx.ConnectError as e:
            raise ModelConnectionError(
                f"Cannot connect to model server at "
                f"{self._client.base_url}: {e}",
                original=e,
            ) from e
        except httpx.TimeoutException as e:
            raise ModelConnectionError(
                f"Model request timed out ({self._model}): {e}",
                original=e,
            ) from e
        except httpx.HTTPStatusError as e:
            body_text = await self._http_error_body(e.response)
            raise ModelConnectionError(
                f"Model server returned HTTP "
                f"{e.response.status_code}: "
                f"{body_text}",
                original=e,
            ) from e
        latency = int((time.monotonic() - start) * 1000)

        data = response.json()
        choices = data.get("choices")
        if not choices or not isinstance(choices, list):
            raise ModelConnectionError(
                f"Malformed response from {self._model}: missing or empty 'choices'"
            )
        message = choices[0].get("message", {}) or {}

        invocations = []
        for index, tc in enumerate(message.get("tool_calls") or []):
            func = tc.get("function", {})
            args = func.get("arguments", {})
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args.strip() else {}
                except json.JSONDecodeError:
                    # Left as a string; the protocol codec reports it.
                    logger.warning("Malformed tool args from %s: %s", self._model, args[:200])
            invocations.append(ActionInvocation(
                id=str(tc.get("id", "")).strip() or f"call_{index}",
                name=func.get("name", ""),
                arguments=args,
            ))

        usage_data = data.get("usage", {}) or {}
        usage = TokenUsage(
            input_tokens=usage_data.get("prompt_tokens", 0),
            output_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0),
        )
        fragments = self._extract_text_fragments(message.get("content"))
        if not fragments:
            fragments = self._extract_text_fragments(message.get("reasoning_content"))
        text = "\n".join(part.strip() for part in fragments if part.strip())
        if not text and not invocations:
            logger.warning(
                "OpenAI-compatible response had empty assistant text: model=%s keys=%s",
                self._model, sorted(message.keys()),
            )

        return ModelResponse(
            text=text,
            invocations=invocations,
            raw=json.dumps(message),
            usage=usage,
            model=self._model,
            latency_ms=latency,
        )

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/models", timeout=5.0)
            return response.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    @property
    def name(self) -> str:
        return self._provider_name

    @property
    def roles(self) -> list[str]:
        return self._roles

    @staticmethod
    def _format_tools(tools: list[dict]) -> list[dict]:
        """Format capability schemas for OpenAI-compatible tool calling."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters", {}),
                },
            }
            for tool in tools
        ]

    @classmethod
    def _normalize_messages(cls, messages: list[dict]) -> list[dict]:
        """Normalize message payloads for stricter OpenAI-compatible servers.

        Some providers reject:
        - keys outside the chat-completions schema
        - assistant messages with empty content
        - tool-call arguments that are not JSON strings
        """
        normalized: list[dict] = []
        for message in messages:
            out = {k: v for k, v in message.items() if k in _MESSAGE_KEYS}
            if out.get("content") is None:
                out["content"] = ""
            if out.get("role") == "assistant":
                if not str(out["content"]).strip():
                    out["content"] = cls.ASSISTANT_CONTENT_FALLBACK
                calls = []
                for call in out.get("tool_calls") or []:
                    function = dict(call.get("function") or {})
                    arguments = function.get("arguments")
                    if not isinstance(arguments, str):
                        function["arguments"] = json.dumps(arguments or {})
                    calls.append({**call, "type": "function", "function": function})
                if calls:
                    out["tool_calls"] = calls
                else:
                    out.pop("tool_calls", None)
            normalized.append(out)
        return normalized

    async def close(self) -> None:
        await self._client.aclose()
