"""Configuration loader for Kestrel.

Loads from kestrel.toml with sensible defaults when file is absent.
Configuration is loaded once at startup and passed via dependency injection.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from kestrel.exceptions import ConfigError

__all__ = [
    "Config",
    "ConfigError",
    "ContextConfig",
    "ExecutionConfig",
    "KnowledgeConfig",
    "LoggingConfig",
    "ModelConfig",
    "RecoveryConfig",
    "load_config",
]


@dataclass(frozen=True)
class ModelConfig:
    """Configuration for a single model provider."""

    provider: str  # "ollama" | "openai_compatible"
    base_url: str = ""
    model: str = ""
    max_tokens: int = 4096
    temperature: float = 0.1
    roles: list[str] = field(default_factory=lambda: ["executor"])
    api_key: str = ""

    def __repr__(self) -> str:
        key_display = f"***{self.api_key[-4:]}" if self.api_key else ""
        return (
            f"ModelConfig(provider={self.provider!r}, model={self.model!r}, "
            f"base_url={self.base_url!r}, api_key={key_display!r})"
        )


@dataclass(frozen=True)
class ExecutionConfig:
    max_turns: int = 0  # 0 = unbounded
    capability_mode: str = "core"  # "core" | "minimal" | "all"
    bootstrap_capability: str = "structure-scout"
    max_result_chars: int = 10_000
    knowledge_preflight: bool = True
    model_call_max_attempts: int = 3
    model_call_retry_base_delay_seconds: float = 0.5
    model_call_retry_max_delay_seconds: float = 8.0


@dataclass(frozen=True)
class ContextConfig:
    """Retention and truncation budgets for the message window."""

    recent_turns: int = 2
    verbatim_old_turns: int = 0
    recent_result_chars: int = 4000
    old_result_chars: int = 800
    summary_chars: int = 2000
    summary_line_chars: int = 160


@dataclass(frozen=True)
class RecoveryConfig:
    max_consecutive_empty: int = 5


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    debug_log_dir: str = ""  # empty = disabled


@dataclass(frozen=True)
class KnowledgeConfig:
    url: str = ""  # empty = no knowledge source
    timeout_seconds: float = 10.0
    limit: int = 5
    max_frame_chars: int = 800


@dataclass(frozen=True)
class Config:
    """Top-level Kestrel configuration."""

    models: dict[str, ModelConfig] = field(default_factory=dict)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)

    @property
    def debug_log_path(self) -> Path | None:
        if not self.logging.debug_log_dir:
            return None
        return Path(self.logging.debug_log_dir).expanduser()


def _parse_model_config(data: dict) -> ModelConfig:
    """Parse a single model configuration section."""
    roles = data.get("roles", ["executor"])
    if isinstance(roles, str):
        roles = [roles]

    return ModelConfig(
        provider=data["provider"],
        base_url=data.get("base_url", ""),
        model=data.get("model", ""),
        max_tokens=data.get("max_tokens", 4096),
        temperature=data.get("temperature", 0.1),
        roles=roles,
        api_key=data.get("api_key", ""),
    )


def _positive_int(value: object, default: int, *, allow_zero: bool = False) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if parsed < 0 or (parsed == 0 and not allow_zero):
        return default
    return parsed


def load_config(path: Path | None = None) -> Config:
    """Load configuration from a TOML file.

    If path is None, searches for kestrel.toml in current directory then
    ~/.kestrel/. Returns default config if no file is found.
    """
    if path is None:
        candidates = [
            Path.cwd() / "kestrel.toml",
            Path.home() / ".kestrel" / "kestrel.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return Config()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    models: dict[str, ModelConfig] = {}
    for name, model_data in raw.get("models", {}).items():
        if isinstance(model_data, dict) and "provider" in model_data:
            models[name] = _parse_model_config(model_data)

    exec_data = raw.get("execution", {})
    mode = str(exec_data.get("capability_mode", "core")).strip().lower()
    if mode not in {"core", "minimal", "all"}:
        raise ConfigError(
            f"execution.capability_mode must be core, minimal or all (got {mode!r})"
        )
    execution = ExecutionConfig(
        max_turns=_positive_int(exec_data.get("max_turns", 0), 0, allow_zero=True),
        capability_mode=mode,
        bootstrap_capability=str(
            exec_data.get("bootstrap_capability", "structure-scout")
        ),
        max_result_chars=_positive_int(
            exec_data.get("max_result_chars", 10_000), 10_000,
        ),
        knowledge_preflight=bool(exec_data.get("knowledge_preflight", True)),
        model_call_max_attempts=_positive_int(
            exec_data.get("model_call_max_attempts", 3), 3,
        ),
        model_call_retry_base_delay_seconds=float(
            exec_data.get("model_call_retry_base_delay_seconds", 0.5)
        ),
        model_call_retry_max_delay_seconds=float(
            exec_data.get("model_call_retry_max_delay_seconds", 8.0)
        ),
    )

    ctx_data = raw.get("context", {})
    defaults = ContextConfig()
    context = ContextConfig(
        recent_turns=_positive_int(
            ctx_data.get("recent_turns", defaults.recent_turns),
            defaults.recent_turns,
        ),
        verbatim_old_turns=_positive_int(
            ctx_data.get("verbatim_old_turns", 0), 0, allow_zero=True,
        ),
        recent_result_chars=_positive_int(
            ctx_data.get("recent_result_chars", defaults.recent_result_chars),
            defaults.recent_result_chars,
        ),
        old_result_chars=_positive_int(
            ctx_data.get("old_result_chars", defaults.old_result_chars),
            defaults.old_result_chars,
        ),
        summary_chars=_positive_int(
            ctx_data.get("summary_chars", defaults.summary_chars),
            defaults.summary_chars,
        ),
        summary_line_chars=_positive_int(
            ctx_data.get("summary_line_chars", defaults.summary_line_chars),
            defaults.summary_line_chars,
        ),
    )

    rec_data = raw.get("recovery", {})
    recovery = RecoveryConfig(
        max_consecutive_empty=_positive_int(
            rec_data.get("max_consecutive_empty", 5), 5,
        ),
    )

    log_data = raw.get("logging", {})
    logging_cfg = LoggingConfig(
        level=str(log_data.get("level", "INFO")).upper(),
        debug_log_dir=str(log_data.get("debug_log_dir", "")),
    )

    know_data = raw.get("knowledge", {})
    knowledge = KnowledgeConfig(
        url=str(know_data.get("url", "")),
        timeout_seconds=float(know_data.get("timeout_seconds", 10.0)),
        limit=_positive_int(know_data.get("limit", 5), 5),
        max_frame_chars=_positive_int(know_data.get("max_frame_chars", 800), 800),
    )

    return Config(
        models=models,
        execution=execution,
        context=context,
        recovery=recovery,
        logging=logging_cfg,
        knowledge=knowledge,
    )
