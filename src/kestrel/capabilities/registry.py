"""Capability registry and dispatch.

Provides registration, id lookup, execution with timeout, and schema
generation for model consumption. The engine never implements a
capability itself; it only looks them up here by id.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from kestrel.exceptions import CapabilitySafetyError

logger = logging.getLogger(__name__)

# Capability sets offered to the backend. Retry turns after a degenerate
# response narrow the offer to the read-only minimal set.
CORE_CAPABILITIES: frozenset[str] = frozenset({
    "ask-user-question",
    "read-file",
    "write-file",
    "edit-file",
    "list-dir",
    "get-cwd",
    "path-exists",
    "glob",
    "grep",
    "exec-command",
    "plan-task",
    "explore-agent",
    "structure-scout",
    "platform-detector",
    "dependency-checker",
    "error-researcher",
    "knowledge-query",
    "web-search",
})

MINIMAL_CAPABILITIES: frozenset[str] = frozenset({
    "read-file",
    "list-dir",
    "glob",
    "grep",
    "get-cwd",
    "path-exists",
    "structure-scout",
})


@dataclass
class CapabilityResult:
    """Result of a capability execution."""

    success: bool
    output: str
    data: dict | None = None
    error: str | None = None

    @classmethod
    def ok(cls, output: str, **kwargs) -> CapabilityResult:
        return cls(success=True, output=output, **kwargs)

    @classmethod
    def fail(cls, error: str) -> CapabilityResult:
        return cls(success=False, output="", error=error)


@dataclass
class CapabilityContext:
    """Context passed to capability execution."""

    workspace: Path | None
    turn: int = 0
    invocation_id: str = ""


class Capability(ABC):
    """Abstract base class for all capabilities.

    Concrete subclasses are auto-collected via ``__init_subclass__``.
    Call ``discover_capabilities()`` (from ``kestrel.capabilities``) to
    import plugin modules and retrieve the collected classes.
    """

    _registered_classes: ClassVar[set[type[Capability]]] = set()
    __kestrel_register__: ClassVar[bool] = True

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        # Only collect concrete classes (no remaining abstract methods)
        if (
            cls.__dict__.get("__kestrel_register__", True)
            and not getattr(cls, "__abstractmethods__", None)
        ):
            Capability._registered_classes.add(cls)

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema for parameters."""
        ...

    @property
    def timeout_seconds(self) -> int:
        return 30

    @abstractmethod
    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        ...

    def schema(self) -> dict:
        """Return OpenAI-format function definition."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class CapabilityRegistry:
    """Registry for capability registration and dispatch."""

    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}
        self._lock = threading.RLock()

    def register(self, capability: Capability) -> None:
        """Register a capability. Raises if name conflicts."""
        with self._lock:
            if capability.name in self._capabilities:
                raise ValueError(f"Capability already registered: {capability.name}")
            self._capabilities[capability.name] = capability

    def get(self, name: str) -> Capability | None:
        with self._lock:
            return self._capabilities.get(name)

    def exclude(self, name: str) -> bool:
        """Remove a capability. Returns True if it existed."""
        with self._lock:
            return self._capabilities.pop(name, None) is not None

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._capabilities

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._capabilities)

    async def execute(
        self,
        name: str,
        arguments: dict,
        ctx: CapabilityContext,
    ) -> CapabilityResult:
        """Execute a capability by id with timeout and context."""
        capability = self.get(name)
        if capability is None:
            return CapabilityResult.fail(f"Unknown capability: {name}")

        try:
            return await asyncio.wait_for(
                capability.execute(arguments, ctx),
                timeout=capability.timeout_seconds,
            )
        except TimeoutError:
            return CapabilityResult.fail(
                f"Capability '{name}' timed out after {capability.timeout_seconds}s"
            )
        except CapabilitySafetyError as e:
            return CapabilityResult.fail(f"Safety violation: {e}")
        except Exception as e:
            logger.debug("Capability %s raised", name, exc_info=True)
            return CapabilityResult.fail(f"{type(e).__name__}: {e}")

    def schemas(self, mode: str = "core") -> list[dict]:
        """Return function schemas for the given capability mode.

        ``core`` and ``minimal`` filter to the fixed id sets; ``all``
        offers everything registered. A filter that would leave the
        backend with nothing falls back to every registered capability.
        """
        with self._lock:
            capabilities = list(self._capabilities.values())
        if mode == "minimal":
            allowed: frozenset[str] | None = MINIMAL_CAPABILITIES
        elif mode == "core":
            allowed = CORE_CAPABILITIES
        else:
            allowed = None

        selected = capabilities
        if allowed is not None:
            selected = [c for c in capabilities if c.name in allowed]
            if not selected:
                selected = capabilities
        return [c.schema() for c in sorted(selected, key=lambda c: c.name)]
