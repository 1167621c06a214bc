"""Tests for the HTTP model providers."""

from __future__ import annotations

import json

import httpx
import pytest

from kestrel.config import ModelConfig
from kestrel.models.base import ModelConnectionError
from kestrel.models.ollama_provider import OllamaProvider
from kestrel.models.openai_provider import OpenAICompatibleProvider

TOOLS = [{
    "name": "read-file",
    "description": "Read a file.",
    "parameters": {"type": "object", "properties": {"path": {"type": "string"}}},
}]


def _recording_transport(body: dict, seen: list, status_code: int = 200) -> httpx.MockTransport:
    async def _handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content) if request.content else None))
        return httpx.Response(status_code, json=body, request=request)

    return httpx.MockTransport(_handler)


def _openai(transport: httpx.MockTransport, **overrides) -> OpenAICompatibleProvider:
    config = ModelConfig(
        provider="openai_compatible",
        base_url="http://llm.test/v1",
        model="coder",
        **overrides,
    )
    return OpenAICompatibleProvider(config, provider_name="remote", transport=transport)


def _ollama(transport: httpx.MockTransport) -> OllamaProvider:
    return OllamaProvider(ModelConfig(provider="ollama", model="qwen"), transport=transport)


class TestOpenAICompatibleProvider:
    @pytest.mark.asyncio
    async def test_parses_tool_calls_and_usage(self):
        seen: list = []
        provider = _openai(_recording_transport({
            "choices": [{"message": {
                "content": "Reading the app.",
                "tool_calls": [{
                    "id": "call_abc",
                    "type": "function",
                    "function": {"name": "read-file", "arguments": '{"path": "src/app.py"}'},
                }],
            }}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        }, seen))

        response = await provider.complete([{"role": "user", "content": "hi"}], tools=TOOLS)
        await provider.close()

        assert response.text == "Reading the app."
        assert response.invocations[0].id == "call_abc"
        assert response.invocations[0].arguments == {"path": "src/app.py"}
        assert response.usage.total_tokens == 15
        path, payload = seen[0]
        assert path == "/v1/chat/completions"
        assert payload["tools"][0]["type"] == "function"
        assert payload["tools"][0]["function"]["name"] == "read-file"

    @pytest.mark.asyncio
    async def test_malformed_arguments_kept_as_string(self):
        seen: list = []
        provider = _openai(_recording_transport({
            "choices": [{"message": {"content": None, "tool_calls": [{
                "function": {"name": "read-file", "arguments": '{"path": '},
            }]}}],
        }, seen))

        response = await provider.complete([{"role": "user", "content": "hi"}])
        await provider.close()

        assert response.invocations[0].arguments == '{"path": '
        assert response.invocations[0].id == "call_0"
        assert response.text == ""

    @pytest.mark.asyncio
    async def test_reasoning_content_fallback(self):
        seen: list = []
        provider = _openai(_recording_transport({
            "choices": [{"message": {"content": "", "reasoning_content": "thinking out loud"}}],
        }, seen))

        response = await provider.complete([{"role": "user", "content": "hi"}])
        await provider.close()

        assert response.text == "thinking out loud"

    @pytest.mark.asyncio
    async def test_missing_choices_raises(self):
        provider = _openai(_recording_transport({"choices": []}, []))
        with pytest.raises(ModelConnectionError, match="choices"):
            await provider.complete([{"role": "user", "content": "hi"}])
        await provider.close()

    @pytest.mark.asyncio
    async def test_http_error_raises_connection_error(self):
        provider = _openai(_recording_transport({"error": "overloaded"}, [], status_code=503))
        with pytest.raises(ModelConnectionError, match="HTTP 503"):
            await provider.complete([{"role": "user", "content": "hi"}])
        await provider.close()

    @pytest.mark.asyncio
    async def test_connect_error_raises_connection_error(self):
        async def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = _openai(httpx.MockTransport(_handler))
        with pytest.raises(ModelConnectionError, match="Cannot connect"):
            await provider.complete([{"role": "user", "content": "hi"}])
        await provider.close()

    @pytest.mark.asyncio
    async def test_api_key_and_response_format_sent(self):
        seen_headers: list[str] = []
        seen_payloads: list[dict] = []

        async def _handler(request: httpx.Request) -> httpx.Response:
            seen_headers.append(request.headers.get("authorization", ""))
            seen_payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "{}"}}]})

        provider = _openai(httpx.MockTransport(_handler), api_key="sk-test")
        fmt = {"type": "json_schema", "json_schema": {"name": "x", "schema": {}}}
        await provider.complete([{"role": "user", "content": "hi"}], response_format=fmt)
        await provider.close()

        assert seen_headers == ["Bearer sk-test"]
        assert seen_payloads[0]["response_format"] == fmt

    def test_normalize_messages(self):
        messages = [
            {"role": "assistant", "content": "", "tool_calls": [
                {"id": "c1", "function": {"name": "read-file", "arguments": {"path": "a"}}},
            ]},
            {"role": "tool", "tool_call_id": "c1", "tool_name": "read-file", "content": None},
        ]
        out = OpenAICompatibleProvider._normalize_messages(messages)
        assert out[0]["content"] == OpenAICompatibleProvider.ASSISTANT_CONTENT_FALLBACK
        assert out[0]["tool_calls"][0]["function"]["arguments"] == '{"path": "a"}'
        assert out[0]["tool_calls"][0]["type"] == "function"
        assert "tool_name" not in out[1]
        assert out[1]["content"] == ""

    @pytest.mark.asyncio
    async def test_health_check(self):
        provider = _openai(_recording_transport({"data": []}, []))
        assert await provider.health_check() is True
        await provider.close()
        assert provider.name == "remote"
        assert provider.roles == ["executor"]


class TestOllamaProvider:
    @pytest.mark.asyncio
    async def test_chat_payload_and_tool_calls(self):
        seen: list = []
        provider = _ollama(_recording_transport({
            "message": {
                "content": "",
                "tool_calls": [{"function": {"name": "read-file", "arguments": {"path": "a.py"}}}],
            },
            "prompt_eval_count": 10,
            "eval_count": 4,
        }, seen))

        response = await provider.complete(
            [{"role": "user", "content": "hi"}], tools=TOOLS, temperature=0.0,
        )
        await provider.close()

        path, payload = seen[0]
        assert path == "/api/chat"
        assert payload["stream"] is False
        assert payload["options"]["temperature"] == 0.0
        assert payload["tools"][0]["function"]["name"] == "read-file"
        assert response.invocations[0].id == "call_0"
        assert response.invocations[0].arguments == {"path": "a.py"}
        assert response.usage.total_tokens == 14

    @pytest.mark.asyncio
    async def test_json_schema_becomes_format(self):
        seen: list = []
        provider = _ollama(_recording_transport({"message": {"content": "{}"}}, seen))
        schema = {"type": "object"}
        await provider.complete(
            [{"role": "user", "content": "hi"}],
            response_format={"type": "json_schema", "json_schema": {"name": "x", "schema": schema}},
        )
        await provider.complete(
            [{"role": "user", "content": "hi"}], response_format={"type": "json_object"},
        )
        await provider.close()

        assert seen[0][1]["format"] == schema
        assert seen[1][1]["format"] == "json"

    def test_messages_keep_tool_name_and_decode_arguments(self):
        out = OllamaProvider._build_ollama_messages([
            {"role": "assistant", "content": None, "tool_calls": [
                {"id": "c1", "function": {"name": "read-file", "arguments": '{"path": "a"}'}},
            ]},
            {"role": "tool", "tool_call_id": "c1", "tool_name": "read-file", "content": "x"},
        ])
        assert out[0]["content"] == ""
        assert out[0]["tool_calls"][0]["function"]["arguments"] == {"path": "a"}
        assert out[1]["tool_name"] == "read-file"

    @pytest.mark.asyncio
    async def test_timeout_raises_connection_error(self):
        async def _handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        provider = _ollama(httpx.MockTransport(_handler))
        with pytest.raises(ModelConnectionError, match="timed out"):
            await provider.complete([{"role": "user", "content": "hi"}])
        await provider.close()
