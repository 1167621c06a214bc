"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from kestrel.config import Config, ConfigError, load_config


class TestDefaultConfig:
    """Test default configuration values."""

    def test_default_models_empty(self):
        config = Config()
        assert config.models == {}

    def test_default_execution(self):
        config = Config()
        assert config.execution.max_turns == 0
        assert config.execution.capability_mode == "core"
        assert config.execution.bootstrap_capability == "structure-scout"
        assert config.execution.max_result_chars == 10_000
        assert config.execution.knowledge_preflight is True

    def test_default_context_budgets(self):
        config = Config()
        assert config.context.recent_turns == 2
        assert config.context.recent_result_chars == 4000
        assert config.context.old_result_chars == 800
        assert config.context.summary_chars == 2000

    def test_default_recovery(self):
        assert Config().recovery.max_consecutive_empty == 5

    def test_debug_log_disabled_by_default(self):
        assert Config().debug_log_path is None

    def test_default_knowledge_has_no_url(self):
        config = Config()
        assert config.knowledge.url == ""
        assert config.knowledge.limit == 5


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "nope.toml")
        assert config == Config()

    def test_load_full_config(self, tmp_path: Path):
        toml_file = tmp_path / "kestrel.toml"
        toml_file.write_text("""\
[models.local]
provider = "ollama"
base_url = "http://localhost:11434"
model = "qwen3:14b"
roles = "executor"

[models.remote]
provider = "openai_compatible"
base_url = "http://localhost:1234/v1"
model = "coder"
api_key = "sk-secret-1234"
roles = ["executor", "extractor"]

[execution]
max_turns = 40
capability_mode = "ALL"
max_result_chars = 5000
knowledge_preflight = false

[context]
recent_turns = 3
verbatim_old_turns = 1

[recovery]
max_consecutive_empty = 7

[logging]
level = "debug"
debug_log_dir = "~/kestrel-logs"

[knowledge]
url = "http://localhost:8700/query"
timeout_seconds = 2.5
limit = 8
""")
        config = load_config(toml_file)

        assert config.models["local"].roles == ["executor"]
        assert config.models["remote"].roles == ["executor", "extractor"]
        assert config.models["remote"].api_key == "sk-secret-1234"
        assert config.execution.max_turns == 40
        assert config.execution.capability_mode == "all"
        assert config.execution.max_result_chars == 5000
        assert config.execution.knowledge_preflight is False
        assert config.context.recent_turns == 3
        assert config.context.verbatim_old_turns == 1
        assert config.recovery.max_consecutive_empty == 7
        assert config.logging.level == "DEBUG"
        assert "~" not in str(config.debug_log_path)
        assert config.knowledge.url == "http://localhost:8700/query"
        assert config.knowledge.timeout_seconds == 2.5
        assert config.knowledge.limit == 8

    def test_model_repr_masks_api_key(self, tmp_path: Path):
        toml_file = tmp_path / "kestrel.toml"
        toml_file.write_text("""\
[models.remote]
provider = "openai_compatible"
api_key = "sk-secret-1234"
""")
        config = load_config(toml_file)
        text = repr(config.models["remote"])
        assert "sk-secret" not in text
        assert "***1234" in text

    def test_model_without_provider_is_skipped(self, tmp_path: Path):
        toml_file = tmp_path / "kestrel.toml"
        toml_file.write_text('[models.broken]\nmodel = "x"\n')
        assert load_config(toml_file).models == {}

    def test_negative_budgets_fall_back_to_defaults(self, tmp_path: Path):
        toml_file = tmp_path / "kestrel.toml"
        toml_file.write_text("""\
[execution]
max_turns = -3
max_result_chars = 0

[recovery]
max_consecutive_empty = "lots"
""")
        config = load_config(toml_file)
        assert config.execution.max_turns == 0
        assert config.execution.max_result_chars == 10_000
        assert config.recovery.max_consecutive_empty == 5

    def test_invalid_capability_mode_raises(self, tmp_path: Path):
        toml_file = tmp_path / "kestrel.toml"
        toml_file.write_text('[execution]\ncapability_mode = "everything"\n')
        with pytest.raises(ConfigError, match="capability_mode"):
            load_config(toml_file)

    def test_invalid_toml_raises(self, tmp_path: Path):
        toml_file = tmp_path / "kestrel.toml"
        toml_file.write_text("[execution\nmax_turns = ")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(toml_file)
