"""Tests for model routing."""

from __future__ import annotations

import pytest

from kestrel.config import Config, ModelConfig
from kestrel.models.base import ModelNotAvailableError
from kestrel.models.ollama_provider import OllamaProvider
from kestrel.models.openai_provider import OpenAICompatibleProvider
from kestrel.models.router import ModelRouter
from tests.fakes import ScriptedProvider


class _Extractor(ScriptedProvider):
    @property
    def roles(self) -> list[str]:
        return ["extractor"]


class TestModelRouter:
    def test_select_first_for_role(self):
        first, second = ScriptedProvider(), ScriptedProvider()
        router = ModelRouter({"a": first, "b": second})
        assert router.select("executor") is first

    def test_select_missing_role(self):
        router = ModelRouter({"a": _Extractor()})
        with pytest.raises(ModelNotAvailableError, match="executor"):
            router.select("executor")

    def test_get_by_name(self):
        provider = ScriptedProvider()
        router = ModelRouter()
        router.add_provider("local", provider)
        assert router.get("local") is provider
        with pytest.raises(ModelNotAvailableError):
            router.get("remote")

    def test_list_providers(self):
        router = ModelRouter({"a": ScriptedProvider()})
        assert router.list_providers() == [
            {"name": "a", "model": "scripted", "roles": ["executor"]},
        ]

    @pytest.mark.asyncio
    async def test_health(self):
        router = ModelRouter({"a": ScriptedProvider()})
        assert await router.health() == {"a": True}

    @pytest.mark.asyncio
    async def test_from_config_builds_providers(self):
        config = Config(models={
            "local": ModelConfig(provider="ollama", model="qwen"),
            "remote": ModelConfig(provider="openai_compatible", base_url="http://x/v1", model="m"),
        })
        router = ModelRouter.from_config(config)
        assert isinstance(router.get("local"), OllamaProvider)
        assert isinstance(router.get("remote"), OpenAICompatibleProvider)
        assert router.get("local").name == "local"
        await router.close()

    def test_unknown_provider_type(self):
        config = Config(models={"x": ModelConfig(provider="carrier-pigeon")})
        with pytest.raises(ValueError, match="Unknown provider type"):
            ModelRouter.from_config(config)
