"""Ollama model provider.

Connects to Ollama's native chat API with tool calling.
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


class OllamaProvider(ModelProvider):
    """Provider for Ollama local models."""

    def __init__(
        self,
        config: ModelConfig,
        provider_name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url or "http://localhost:11434",
            timeout=httpx.Timeout(300.0),
            transport=transport,
        )
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self._provider_name = provider_name or config.model
        self._roles = list(config.roles)

    @staticmethod
    async def _http_error_body(response: httpx.Response, limit: int = 200) -> str:
        try:
            body = await response.aread()
            if body:
                return body.decode("utf-8", errors="replace")[:limit]
        except httpx.HTTPError:
            pass
        return "<response body unavailable>"

    @staticmethod
    def _response_format(response_format: dict) -> dict | str:
        """Ollama takes a bare JSON schema (or "json") in ``format``."""
        schema = response_format.get("json_schema", {}).get("schema")
        if isinstance(schema, dict):
            return schema
        return "json"

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
            "messages": self._build_ollama_messages(messages),
            "stream": False,
            "options": {
                "temperature": temperature if temperature is not None else self._temperature,
                "num_predict": max_tokens or self._max_tokens,
            },
        }
        if tools:
            payload["tools"] = self._format_ollama_tools(tools)
        if response_format:
            payload["format"] = self._response_format(response_format)

        start = time.monotonic()
        try:
            response = await self._client.post("/api/chat", json=payload)
            response.raise_for_status()
        except httpx.ConnectError as e:
            raise ModelConnectionError(
                f"Cannot connect to Ollama at "
                f"{self._client.base_url}: {e}",
                original=e,
            ) from e
        except httpx.TimeoutException as e:
            raise ModelConnectionError(
                f"Ollama request timed out ({self._model}): {e}",
                original=e,
            ) from e
        except httpx.HTTPStatusError as e:
            body_text = await self._http_error_body(e.response)
            raise ModelConnectionError(
                f"Ollama returned HTTP {e.response.status_code}: "
                f"{body_text}",
                original=e,
            ) from e
        latency = int((time.monotonic() - start) * 1000)

        data = response.json()
        message = data.get("message", {}) or {}

        invocations = []
        for i, tc in enumerate(message.get("tool_calls") or []):
            func = tc.get("function", {})
            args = func.get("arguments", {})
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args.strip() else {}
                except json.JSONDecodeError:
                    logger.warning("Malformed tool args from Ollama: %s", args[:200])
            invocations.append(ActionInvocation(
                id=f"call_{i}",
                name=func.get("name", ""),
                arguments=args,
            ))

        prompt_tokens = data.get("prompt_eval_count", 0)
        output_tokens = data.get("eval_count", 0)
        usage = TokenUsage(
            input_tokens=prompt_tokens,
            output_tokens=output_tokens,
            total_tokens=prompt_tokens + output_tokens,
        )

        return ModelResponse(
            text=message.get("content") or "",
            invocations=invocations,
            raw=json.dumps(message),
            usage=usage,
            model=self._model,
            latency_ms=latency,
        )

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=5.0)
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
    def _format_ollama_tools(tools: list[dict]) -> list[dict]:
        """Format capability schemas for Ollama's tool calling format."""
        formatted = []
        for tool in tools:
            formatted.append({
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters", {}),
                },
            })
        return formatted

    @staticmethod
    def _build_ollama_messages(messages: list[dict]) -> list[dict]:
        """Convert messages to Ollama's shape.

        Ollama expects tool-call arguments as objects and names tool
        results with ``tool_name``.
        """
        result = []
        for msg in messages:
            out = {"role": msg.get("role", "user"), "content": msg.get("content") or ""}
            if msg.get("tool_calls"):
                calls = []
                for call in msg["tool_calls"]:
                    function = dict(call.get("function") or {})
                    arguments = function.get("arguments")
                    if isinstance(arguments, str):
                        try:
                            function["arguments"] = json.loads(arguments or "{}")
                        except json.JSONDecodeError:
                            function["arguments"] = {}
                    calls.append({"function": function})
                out["tool_calls"] = calls
            if msg.get("tool_name"):
                out["tool_name"] = msg["tool_name"]
            result.append(out)
        return result

    async def close(self) -> None:
        await self._client.aclose()
