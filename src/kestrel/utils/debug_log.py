"""Structured debug log for the turn loop.

Appends one YAML document per record to ``debug-<session>.yaml`` so a
run that collapsed into degenerate responses can be inspected after
the fact without cluttering the terminal.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class DebugLog:
    """Append-only YAML record stream. Write failures are logged, never raised."""

    def __init__(self, directory: Path, session_id: str = "") -> None:
        self.session_id = session_id or datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        self.path = Path(directory).expanduser() / f"debug-{self.session_id}.yaml"

    def _write(self, record: dict) -> None:
        record = {"timestamp": datetime.now().isoformat(), **record}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                yaml.safe_dump(
                    record, f,
                    explicit_start=True,
                    default_flow_style=False,
                    sort_keys=False,
                )
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to write debug log %s: %s", self.path, e)

    def log_degenerate(
        self,
        *,
        attempt: int,
        cause: str,
        strategy: str,
        diagnostics: dict,
        messages_before: int,
        messages_after: int,
    ) -> None:
        self._write({
            "event": "degenerate_response",
            "attempt": attempt,
            "cause": str(cause),
            "strategy": strategy or None,
            "messages_before_retry": messages_before,
            "messages_after_retry": messages_after,
            "diagnostics": {k: v for k, v in diagnostics.items()},
        })

    def log_turn(
        self,
        *,
        turn: int,
        status: str,
        thought_length: int,
        invocations: list[str],
        plan: dict | None = None,
    ) -> None:
        record: dict = {
            "event": "turn",
            "turn": turn,
            "status": str(status),
            "thought_length": thought_length,
            "invocations": invocations,
        }
        if plan:
            record["plan"] = plan
        self._write(record)

    def read_records(self) -> list[dict]:
        """Load every record written so far."""
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [doc for doc in yaml.safe_load_all(f) if doc]
