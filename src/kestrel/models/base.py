"""Abstract model interface.

All reasoning backends implement this interface, providing a unified
API for completions with action invocations and health checks.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from kestrel.exceptions import ModelError


@dataclass
class ActionInvocation:
    """A parsed action invocation from a model response.

    ``arguments`` is normally a dict. Some backends deliver the raw JSON
    string instead; the protocol codec decodes it before validation.
    """

    id: str
    name: str
    arguments: dict | str = field(default_factory=dict)

    def argument_dict(self) -> dict:
        """Best-effort dict view of the arguments; undecodable input gives {}."""
        if isinstance(self.arguments, dict):
            return self.arguments
        try:
            parsed = json.loads(self.arguments or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_message(self) -> dict:
        """Render in OpenAI tool_call shape for the message window."""
        args = self.arguments
        if not isinstance(args, str):
            args = json.dumps(args, ensure_ascii=False, default=str)
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": args},
        }


@dataclass
class TokenUsage:
    """Token usage statistics for a model response."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ModelResponse:
    """Structured response from a model completion."""

    text: str = ""
    invocations: list[ActionInvocation] = field(default_factory=list)
    raw: str | dict = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    latency_ms: int = 0

    def has_invocations(self) -> bool:
        return bool(self.invocations)

    def is_degenerate(self) -> bool:
        """True when the reply carries neither text nor an invocation."""
        return not (self.text or "").strip() and not self.invocations


class ModelProvider(ABC):
    """Abstract base class for all model providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict | None = None,
    ) -> ModelResponse:
        """Send a completion request and return structured response."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the model is available and responding."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable model name."""
        ...

    @property
    @abstractmethod
    def roles(self) -> list[str]:
        """Roles this provider can fulfill."""
        ...


class ModelNotAvailableError(ModelError):
    """Raised when no suitable model is available for a request."""


class ModelConnectionError(ModelError):
    """Raised when a model API call fails due to network or server issues.

    Wraps the underlying httpx/transport error with a user-friendly
    message and preserves the original exception for debugging.
    """

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original
