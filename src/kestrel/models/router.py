"""Model router: selects a provider by role.

Selection logic:
1. Filter models by role compatibility
2. Prefer the first configured model for that role
"""

from __future__ import annotations

from kestrel.config import Config, ModelConfig
from kestrel.models.base import ModelNotAvailableError, ModelProvider
from kestrel.models.ollama_provider import OllamaProvider
from kestrel.models.openai_provider import OpenAICompatibleProvider


class ModelRouter:
    """Routes backend requests to a provider based on role."""

    def __init__(self, providers: dict[str, ModelProvider] | None = None):
        self._providers: dict[str, ModelProvider] = providers or {}
        self._role_map: dict[str, list[str]] = {}
        if self._providers:
            self._build_role_map()

    @classmethod
    def from_config(cls, config: Config) -> ModelRouter:
        """Create a router from configuration, instantiating all providers."""
        providers: dict[str, ModelProvider] = {}
        for name, model_config in config.models.items():
            providers[name] = _create_provider(name, model_config)
        return cls(providers)

    def _build_role_map(self) -> None:
        self._role_map.clear()
        for name, provider in self._providers.items():
            for role in provider.roles:
                self._role_map.setdefault(role, []).append(name)

    def add_provider(self, name: str, provider: ModelProvider) -> None:
        """Register a provider at runtime."""
        self._providers[name] = provider
        self._build_role_map()

    def get(self, name: str) -> ModelProvider:
        """Look up a provider by its configured name."""
        try:
            return self._providers[name]
        except KeyError:
            raise ModelNotAvailableError(f"No model named {name!r} is configured") from None

    def select(self, role: str = "executor") -> ModelProvider:
        """Return the first configured provider for ``role``."""
        candidates = self._role_map.get(role, [])
        if not candidates:
            raise ModelNotAvailableError(f"No model configured for role: {role}")
        return self._providers[candidates[0]]

    def list_providers(self) -> list[dict]:
        """List all registered providers with their metadata."""
        return [
            {"name": name, "model": provider.name, "roles": provider.roles}
            for name, provider in self._providers.items()
        ]

    async def health(self) -> dict[str, bool]:
        """Check health of all configured models."""
        results = {}
        for name, provider in self._providers.items():
            try:
                results[name] = await provider.health_check()
            except Exception:
                results[name] = False
        return results

    async def close(self) -> None:
        """Close all provider HTTP clients."""
        for provider in self._providers.values():
            if hasattr(provider, "close"):
                await provider.close()


def _create_provider(name: str, config: ModelConfig) -> ModelProvider:
    """Create a model provider from configuration."""
    if config.provider == "ollama":
        return OllamaProvider(config, provider_name=name)
    if config.provider in ("openai_compatible", "openai"):
        return OpenAICompatibleProvider(config, provider_name=name)
    raise ValueError(f"Unknown provider type: {config.provider}")
