"""Action protocol codec.

Turns backend output into validated action invocations:

- structured invocations arrive on ``ModelResponse.invocations``;
- ``extract_text_invocations`` recovers invocation syntax a backend
  wrote into its free text instead;
- ``build_bootstrap_invocation`` synthesizes a read-only project probe
  when a turn would otherwise have nothing to run;
- ``validate_invocation`` checks arguments against the capability's
  parameter schema and returns a typed ``ValidationIssue`` rather than
  raising.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Collection
from dataclasses import dataclass
from enum import StrEnum

from kestrel.capabilities.registry import Capability
from kestrel.models.base import ActionInvocation

logger = logging.getLogger(__name__)

BOOTSTRAP_CAPABILITY = "structure-scout"
BOOTSTRAP_ARGUMENTS = {"maxDepth": 2, "maxTreeLines": 60}

_BRACKET_PATTERN = re.compile(r"\[([a-z-]+)\s+([^\]]+)\]", re.IGNORECASE)
_PAREN_PATTERN = re.compile(r"([a-z-]+)\(([^)]+)\)", re.IGNORECASE)
_QUOTED_ARG = re.compile(r"""(\w+)=["']([^"']+)["']""")
_UNQUOTED_ARG = re.compile(r"(\w+)=([^\s,]+)")

EDIT_OPERATION_TYPES = ("replace", "delete", "insert", "replace-between")
INSERT_POSITIONS = ("before", "after")
MATCH_MODES = ("exact", "normalized", "smart")

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


class ValidationErrorKind(StrEnum):
    UNKNOWN_CAPABILITY = "unknown_capability"
    MALFORMED_ARGUMENTS = "malformed_arguments"
    MISSING_FIELD = "missing_field"
    EMPTY_FIELD = "empty_field"
    WRONG_TYPE = "wrong_type"
    WRITE_MISSING_CONTENT = "write_missing_content"
    MALFORMED_EDITS = "malformed_edits"
    INVALID_EDIT_OPERATION = "invalid_edit_operation"
    MISSING_EDIT_FIELD = "missing_edit_field"
    INVALID_EDIT_FIELD = "invalid_edit_field"


@dataclass(frozen=True)
class ValidationIssue:
    kind: ValidationErrorKind
    field: str
    message: str

    def __str__(self) -> str:
        return self.message


# -- Text fallback -----------------------------------------------------------


def parse_text_arguments(raw: str) -> dict | None:
    """Parse ``{"json": ...}``, ``key="value"`` or ``key=value`` argument text."""
    text = raw.strip()
    if text.startswith("{"):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    args: dict = {}
    for match in _QUOTED_ARG.finditer(raw):
        args[match.group(1)] = match.group(2)
    for match in _UNQUOTED_ARG.finditer(raw):
        # Quoted values win.
        args.setdefault(match.group(1), match.group(2))
    return args or None


def extract_text_invocations(
    text: str,
    known_names: Collection[str] = (),
) -> tuple[list[ActionInvocation], str]:
    """Recover invocations written as text; return them and the cleaned text.

    Recognized forms:
        [name key="value" ...]
        [name {"key": "value"}]
        name(key="value")     (known capability ids only)
    """
    invocations: list[ActionInvocation] = []
    cleaned = text
    stamp = format(int(time.time() * 1000), "x")

    def _add(name: str, args: dict, matched: str) -> None:
        nonlocal cleaned
        invocations.append(ActionInvocation(
            id=f"parsed_{stamp}_{len(invocations)}",
            name=name,
            arguments=args,
        ))
        cleaned = cleaned.replace(matched, "", 1).strip()

    for match in _BRACKET_PATTERN.finditer(text):
        args = parse_text_arguments(match.group(2))
        if args is not None:
            _add(match.group(1), args, match.group(0))

    known = set(known_names)
    for match in _PAREN_PATTERN.finditer(text):
        name = match.group(1)
        if name not in known:
            continue
        args = parse_text_arguments(match.group(2))
        if args is not None:
            _add(name, args, match.group(0))

    if invocations:
        logger.warning(
            "Backend wrote %d invocation(s) as text; parsed them as actions",
            len(invocations),
        )
    return invocations, cleaned


# -- Bootstrap ---------------------------------------------------------------


def build_bootstrap_invocation(
    capability: str = BOOTSTRAP_CAPABILITY,
    *,
    suffix: str | None = None,
) -> ActionInvocation:
    """A single read-only project probe used when a turn has no invocations."""
    if suffix is None:
        suffix = format(int(time.time() * 1000), "x")
    args = dict(BOOTSTRAP_ARGUMENTS) if capability == BOOTSTRAP_CAPABILITY else {}
    return ActionInvocation(
        id=f"auto_{capability.replace('-', '_')}_{suffix}",
        name=capability,
        arguments=args,
    )


# -- Validation --------------------------------------------------------------


def decode_arguments(invocation: ActionInvocation) -> tuple[dict, ValidationIssue | None]:
    raw = invocation.arguments
    if isinstance(raw, dict):
        return raw, None
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}, None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        return {}, ValidationIssue(
            ValidationErrorKind.MALFORMED_ARGUMENTS,
            "",
            f"Arguments for {invocation.name} are not valid JSON: {e}",
        )
    if not isinstance(parsed, dict):
        return {}, ValidationIssue(
            ValidationErrorKind.MALFORMED_ARGUMENTS,
            "",
            f"Arguments for {invocation.name} must be a JSON object.",
        )
    return parsed, None


def _type_matches(value: object, declared: object) -> bool:
    names = declared if isinstance(declared, list) else [declared]
    for name in names:
        expected = _JSON_TYPES.get(str(name))
        if expected is None:
            return True  # unknown schema type: don't guess
        if isinstance(value, bool) and name in ("integer", "number"):
            continue
        if isinstance(value, expected):
            return True
    return False


def _type_label(declared: object) -> str:
    if isinstance(declared, list):
        return " or ".join(str(t) for t in declared)
    return str(declared)


def _missing_required(name: str, param: str, kind: ValidationErrorKind, schema: dict) -> ValidationIssue:
    if name == "write-file" and param == "content":
        return ValidationIssue(
            ValidationErrorKind.WRITE_MISSING_CONTENT,
            param,
            f'Missing REQUIRED parameter "{param}". write-file requires both "path" '
            'and "content". Did you mean to use edit-file instead for modifying '
            "existing files?",
        )
    if name == "edit-file" and param == "edits":
        return ValidationIssue(
            ValidationErrorKind.MALFORMED_EDITS,
            param,
            f'Missing REQUIRED parameter "{param}". edit-file requires: path and '
            "edits (array of replace/insert/delete operations).",
        )
    desc = schema.get("description", "") if isinstance(schema, dict) else ""
    return ValidationIssue(
        kind,
        param,
        f'Missing REQUIRED parameter "{param}" for {name}. Description: {desc}',
    )


def _non_empty_str(value: object) -> bool:
    return isinstance(value, str) and len(value) > 0


def validate_edit_operations(edits: object) -> ValidationIssue | None:
    """Check each edit entry against the fields its ``type`` requires."""
    if not isinstance(edits, list) or not edits:
        return ValidationIssue(
            ValidationErrorKind.MALFORMED_EDITS,
            "edits",
            'Parameter "edits" must be a non-empty array of edit operations.',
        )

    for i, edit in enumerate(edits):
        prefix = f"edit-file edits[{i}]"
        where = f"edits[{i}]"
        if not isinstance(edit, dict):
            return ValidationIssue(
                ValidationErrorKind.INVALID_EDIT_OPERATION, where,
                f"{prefix} must be an object.",
            )
        op = edit.get("type")
        if not _non_empty_str(op):
            return ValidationIssue(
                ValidationErrorKind.MISSING_EDIT_FIELD, f"{where}.type",
                f'{prefix} is missing required field "type".',
            )
        if op not in EDIT_OPERATION_TYPES:
            return ValidationIssue(
                ValidationErrorKind.INVALID_EDIT_OPERATION, f"{where}.type",
                f'{prefix} has unsupported type "{op}".',
            )
        match_mode = edit.get("matchMode")
        if match_mode and match_mode not in MATCH_MODES:
            return ValidationIssue(
                ValidationErrorKind.INVALID_EDIT_FIELD, f"{where}.matchMode",
                f'{prefix} has invalid matchMode "{match_mode}".',
            )

        issue = _validate_edit_fields(edit, op, prefix, where)
        if issue is not None:
            return issue
    return None


def _validate_edit_fields(edit: dict, op: str, prefix: str, where: str) -> ValidationIssue | None:
    def missing(field_name: str, message: str) -> ValidationIssue:
        kind = (
            ValidationErrorKind.MISSING_EDIT_FIELD
            if edit.get(field_name) in (None, "")
            else ValidationErrorKind.INVALID_EDIT_FIELD
        )
        return ValidationIssue(kind, f"{where}.{field_name}", f'{prefix} type "{op}" {message}')

    if op in ("replace", "delete") and not _non_empty_str(edit.get("match")):
        return missing("match", 'requires non-empty "match" string.')
    if op == "replace" and not isinstance(edit.get("replace"), str):
        return missing("replace", 'requires "replace" string.')
    if op == "insert":
        if not _non_empty_str(edit.get("anchor")):
            return missing("anchor", 'requires non-empty "anchor" string.')
        if edit.get("position") not in INSERT_POSITIONS:
            return missing("position", 'requires position "before" or "after".')
        if not isinstance(edit.get("content"), str):
            return missing("content", 'requires "content" string.')
    if op == "replace-between":
        if not _non_empty_str(edit.get("start")):
            return missing("start", 'requires non-empty "start" anchor.')
        if not _non_empty_str(edit.get("end")):
            return missing("end", 'requires non-empty "end" anchor.')
        if not isinstance(edit.get("replace"), str):
            return missing("replace", 'requires "replace" string.')
    return None


def validate_arguments(name: str, args: dict, parameters: dict) -> ValidationIssue | None:
    """Validate decoded ``args`` against a JSON-schema ``parameters`` block."""
    properties = parameters.get("properties") if isinstance(parameters, dict) else None
    if not isinstance(properties, dict):
        return None

    for param in parameters.get("required", []) or []:
        value = args.get(param)
        if value is None:
            return _missing_required(
                name, param, ValidationErrorKind.MISSING_FIELD, properties.get(param, {}),
            )
        if value == "":
            return _missing_required(
                name, param, ValidationErrorKind.EMPTY_FIELD, properties.get(param, {}),
            )

    if name == "write-file" and "content" in args and not isinstance(args["content"], str):
        return ValidationIssue(
            ValidationErrorKind.WRONG_TYPE,
            "content",
            f'Parameter "content" must be a string, got {type(args["content"]).__name__}. '
            "Make sure you're passing the file content as a string.",
        )
    if name == "edit-file":
        issue = validate_edit_operations(args.get("edits"))
        if issue is not None:
            return issue

    for param, value in args.items():
        prop = properties.get(param)
        if not isinstance(prop, dict) or "type" not in prop or value is None:
            continue
        if not _type_matches(value, prop["type"]):
            return ValidationIssue(
                ValidationErrorKind.WRONG_TYPE,
                param,
                f'Parameter "{param}" for {name} must be of type '
                f"{_type_label(prop['type'])}, got {type(value).__name__}.",
            )
    return None


def validate_invocation(
    invocation: ActionInvocation,
    capability: Capability | None,
) -> ValidationIssue | None:
    """Validate one invocation before its capability runs. Never raises."""
    if capability is None:
        return ValidationIssue(
            ValidationErrorKind.UNKNOWN_CAPABILITY,
            "",
            f"Unknown capability: {invocation.name}",
        )
    args, issue = decode_arguments(invocation)
    if issue is not None:
        return issue
    return validate_arguments(invocation.name, args, capability.parameters)
