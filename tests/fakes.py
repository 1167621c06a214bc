"""Scripted backend and fake capabilities shared by the test suite."""

from __future__ import annotations

from kestrel.capabilities.registry import (
    Capability,
    CapabilityContext,
    CapabilityResult,
)
from kestrel.models.base import ActionInvocation, ModelProvider, ModelResponse


class ScriptedProvider(ModelProvider):
    """Replays queued responses; an empty queue yields degenerate replies."""

    def __init__(self, responses: list | None = None):
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    async def complete(
        self,
        messages,
        tools=None,
        temperature=None,
        max_tokens=None,
        response_format=None,
    ) -> ModelResponse:
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "response_format": response_format,
        })
        if not self.responses:
            return ModelResponse()
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def health_check(self) -> bool:
        return True

    @property
    def name(self) -> str:
        return "scripted"

    @property
    def roles(self) -> list[str]:
        return ["executor"]


def reply(text: str = "", *calls: tuple[str, dict]) -> ModelResponse:
    """Build a backend reply with optional (name, args) invocations."""
    invocations = [
        ActionInvocation(id=f"call_{i}", name=name, arguments=args)
        for i, (name, args) in enumerate(calls)
    ]
    return ModelResponse(text=text, invocations=invocations)


class FakeScout(Capability):
    __kestrel_register__ = False

    name = "structure-scout"
    description = "Summarize the project layout."
    parameters = {
        "type": "object",
        "properties": {
            "maxDepth": {"type": "integer"},
            "maxTreeLines": {"type": "integer"},
        },
    }

    def __init__(self):
        self.calls: list[dict] = []

    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        self.calls.append(args)
        return CapabilityResult.ok("src/\n  app.py\n  views/\ntests/")


class FakeReadFile(Capability):
    __kestrel_register__ = False

    name = "read-file"
    description = "Read a file."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path."},
            "startLine": {"type": "integer"},
            "endLine": {"type": "integer"},
        },
        "required": ["path"],
    }

    def __init__(self, files: dict[str, str] | None = None):
        self.files = files or {}
        self.calls: list[dict] = []

    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        self.calls.append(args)
        if args["path"] not in self.files:
            return CapabilityResult.fail(f"File not found: {args['path']}")
        return CapabilityResult.ok(self.files[args["path"]])


class FakeEditFile(Capability):
    __kestrel_register__ = False

    name = "edit-file"
    description = "Apply structured edits to a file."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string"},
            "edits": {"type": "array", "items": {"type": "object"}},
        },
        "required": ["path", "edits"],
    }

    def __init__(self):
        self.calls: list[dict] = []

    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        self.calls.append(args)
        return CapabilityResult.ok(f"Edited {args['path']}")


class FakeCommand(Capability):
    __kestrel_register__ = False

    name = "exec-command"
    description = "Run a shell command."
    parameters = {
        "type": "object",
        "properties": {"command": {"type": "string"}},
        "required": ["command"],
    }

    def __init__(self, output: str = "ok", error: Exception | None = None):
        self.output = output
        self.error = error

    async def execute(self, args: dict, ctx: CapabilityContext) -> CapabilityResult:
        if self.error is not None:
            raise self.error
        return CapabilityResult.ok(self.output)
