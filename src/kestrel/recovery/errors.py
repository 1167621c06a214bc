"""Capability error categorization.

Capability and validation failures never abort a turn; they become an
error result the backend sees next round. A category hint is appended
so the backend gets actionable feedback instead of a bare traceback.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ErrorCategory(Enum):
    """Categories of capability failures with different recovery hints."""

    VALIDATION_ERROR = "validation_error"
    UNKNOWN_CAPABILITY = "unknown_capability"
    FILE_NOT_FOUND = "file_not_found"
    PERMISSION_ERROR = "permission_error"
    SAFETY_VIOLATION = "safety_violation"
    TIMEOUT = "timeout"
    COMMAND_FAILED = "command_failed"
    RUNTIME_ERROR = "runtime_error"
    UNKNOWN = "unknown"


@dataclass
class CategorizedError:
    category: ErrorCategory
    original_error: str
    recovery_hint: str


# First match wins.
_PATTERNS: list[tuple[re.Pattern, ErrorCategory, str]] = [
    (
        re.compile(
            r"Missing REQUIRED parameter|must be (?:a|of type)|edits\[\d+\]"
            r"|not valid JSON|must be a JSON object|non-empty array",
            re.IGNORECASE,
        ),
        ErrorCategory.VALIDATION_ERROR,
        "The arguments did not match the capability schema. Fix them and call again.",
    ),
    (
        re.compile(r"Unknown capability", re.IGNORECASE),
        ErrorCategory.UNKNOWN_CAPABILITY,
        "That capability does not exist. Use one of the offered tool names.",
    ),
    (
        re.compile(r"Safety violation|escapes workspace", re.IGNORECASE),
        ErrorCategory.SAFETY_VIOLATION,
        "This operation was blocked for safety. Stay inside the working directory.",
    ),
    (
        re.compile(r"File not found|FileNotFoundError|No such file|does not exist|ENOENT", re.IGNORECASE),
        ErrorCategory.FILE_NOT_FOUND,
        "The path doesn't exist. Verify it with list-dir or glob before reading.",
    ),
    (
        re.compile(r"PermissionError|Permission denied|EACCES", re.IGNORECASE),
        ErrorCategory.PERMISSION_ERROR,
        "Permission denied. Check file permissions or try a different path.",
    ),
    (
        re.compile(r"timed out|TimeoutError", re.IGNORECASE),
        ErrorCategory.TIMEOUT,
        "The operation timed out. Try a smaller, more targeted step.",
    ),
    (
        re.compile(r"exit code [1-9]\d*|exited with", re.IGNORECASE),
        ErrorCategory.COMMAND_FAILED,
        "The command failed. Read its output and fix the cause before rerunning.",
    ),
    (
        re.compile(r"Error|Exception|Traceback|Failed", re.IGNORECASE),
        ErrorCategory.RUNTIME_ERROR,
        "Review the error message and adjust your approach; do not retry blindly.",
    ),
]


def categorize_error(error_text: str) -> CategorizedError:
    if not error_text:
        return CategorizedError(
            category=ErrorCategory.UNKNOWN,
            original_error="",
            recovery_hint="Review what happened and try again.",
        )

    for pattern, category, hint in _PATTERNS:
        if pattern.search(error_text):
            return CategorizedError(
                category=category,
                original_error=error_text,
                recovery_hint=hint,
            )

    return CategorizedError(
        category=ErrorCategory.UNKNOWN,
        original_error=error_text,
        recovery_hint="Review the error and try a different approach.",
    )


def categorize_capability_failure(capability: str, error: str) -> CategorizedError:
    """Categorize with capability-specific hints."""
    result = categorize_error(error)
    if result.category == ErrorCategory.FILE_NOT_FOUND and capability in (
        "read-file", "edit-file",
    ):
        result.recovery_hint = (
            f"The path passed to {capability} doesn't exist. "
            "List the directory first to find the correct path, "
            "or create the file with write-file."
        )
    elif result.category == ErrorCategory.VALIDATION_ERROR and capability == "edit-file":
        result.recovery_hint = (
            "edit-file needs path and a non-empty edits array; each edit needs a "
            "type (replace, delete, insert, replace-between) and its fields."
        )
    return result


def format_error_result(capability: str, error: str) -> str:
    """Error result content as the backend sees it."""
    categorized = categorize_capability_failure(capability, error)
    return f"Error: {error}\nHint: {categorized.recovery_hint}"
