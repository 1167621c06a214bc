"""Human-readable labels for capability activity events."""

from __future__ import annotations

import json

# id -> (start message, result message, argument keys for the detail)
_LABELS: dict[str, tuple[str, str, tuple[str, ...]]] = {
    "read-file": ("Reading file", "Read file", ("path",)),
    "write-file": ("Writing file", "Wrote file", ("path",)),
    "edit-file": ("Editing file", "Edited file", ("path",)),
    "list-dir": ("Listing directory", "Listed directory", ("path", "dir")),
    "glob": ("Scanning files", "Scanned files", ("pattern",)),
    "grep": ("Searching text", "Search results", ("pattern",)),
    "exec-command": ("Running command", "Command output", ("command",)),
    "get-cwd": ("Checking working directory", "Working directory", ()),
    "path-exists": ("Checking path", "Path check", ("path",)),
    "structure-scout": ("Scanning project structure", "Structure scan", ()),
    "explore-agent": ("Exploring context", "Exploration results", ("query",)),
    "plan-task": ("Planning steps", "Plan ready", ("goal",)),
    "ask-user-question": (
        "Requesting clarification", "Clarification requested", ("question",),
    ),
    "dependency-checker": ("Checking dependencies", "Dependency check", ()),
    "error-researcher": ("Analyzing error", "Error analysis", ("error", "message")),
    "web-search": ("Searching the web", "Web search results", ("query",)),
    "platform-detector": ("Detecting platform", "Platform detected", ()),
    "knowledge-synthesis": ("Querying knowledge base", "Knowledge synthesis", ()),
}


def describe_action(name: str, args: dict, phase: str = "start") -> tuple[str, str]:
    """Return ``(message, detail)`` for an action start or result event."""
    label = _LABELS.get(name)
    if label is None:
        message = f"Using {name}" if phase == "start" else f"{name} result"
        try:
            detail = json.dumps(args, ensure_ascii=False, default=str) if args else ""
        except (TypeError, ValueError):
            detail = ""
        return message, detail

    start, result, keys = label
    detail = ""
    for key in keys:
        value = args.get(key) if isinstance(args, dict) else None
        if value:
            detail = str(value)
            break
    if name == "read-file" and detail and isinstance(args, dict):
        start_line, end_line = args.get("startLine"), args.get("endLine")
        if start_line or end_line:
            detail += f" ({start_line or 1}-{end_line or 'end'})"
    return (start if phase == "start" else result), detail
