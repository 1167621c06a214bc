"""Kestrel exception hierarchy.

Provides a structured exception tree so catch blocks can be specific
and callers can distinguish between different failure modes.
"""

from __future__ import annotations


class KestrelError(Exception):
    """Base for all Kestrel exceptions."""


class ConfigError(KestrelError):
    """Raised when configuration loading or validation fails."""


class EngineError(KestrelError):
    """Orchestrator and turn-loop failures."""


class NoPendingSessionError(EngineError):
    """resume() was called with no session parked at awaiting_input."""


class SessionBusyError(EngineError):
    """A session loop is already running on this orchestrator."""


class DegenerateResponseError(EngineError):
    """The backend kept returning neither text nor an action invocation."""

    def __init__(self, count: int, cause: str):
        self.count = count
        self.cause = cause
        super().__init__(
            f"Model returned empty responses {count} times. "
            f"Possible causes: {cause}. "
            "Try a different model or reduce task complexity."
        )


class ModelError(KestrelError):
    """Provider connection, timeout, parse failures."""


class CapabilityError(KestrelError):
    """Capability registration and execution failures."""


class CapabilitySafetyError(CapabilityError):
    """A capability refused an unsafe operation (e.g. path escape)."""
