"""Shared test fixtures for Kestrel."""

from __future__ import annotations

from pathlib import Path

import pytest

from kestrel.capabilities.ask_user import AskUserQuestion
from kestrel.capabilities.plan_task import PlanTask
from kestrel.capabilities.registry import CapabilityRegistry
from kestrel.config import Config, ExecutionConfig
from kestrel.engine.orchestrator import Orchestrator
from kestrel.models.retry import ModelRetryPolicy
from tests.fakes import FakeEditFile, FakeReadFile, FakeScout, ScriptedProvider


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test workspace."""
    return tmp_path


@pytest.fixture
def config() -> Config:
    """Test configuration with instant transport retries."""
    return Config(
        execution=ExecutionConfig(
            model_call_max_attempts=2,
            model_call_retry_base_delay_seconds=0.0,
            model_call_retry_max_delay_seconds=0.0,
        ),
    )


@pytest.fixture
def scout() -> FakeScout:
    return FakeScout()


@pytest.fixture
def read_file() -> FakeReadFile:
    return FakeReadFile({"src/app.py": "print('hello')\n"})


@pytest.fixture
def edit_file() -> FakeEditFile:
    return FakeEditFile()


@pytest.fixture
def registry(scout, read_file, edit_file) -> CapabilityRegistry:
    reg = CapabilityRegistry()
    for capability in (scout, read_file, edit_file, AskUserQuestion(), PlanTask()):
        reg.register(capability)
    return reg


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def make_orchestrator(registry, config, tmp_dir, events):
    """Build an orchestrator around a scripted provider."""

    def _make(responses=None, **kwargs):
        provider = ScriptedProvider(responses)
        kwargs.setdefault("config", config)
        kwargs.setdefault("on_event", events.append)
        kwargs.setdefault(
            "retry_policy",
            ModelRetryPolicy(
                max_attempts=2,
                base_delay_seconds=0.0,
                max_delay_seconds=0.0,
                jitter_seconds=0.0,
            ),
        )
        orchestrator = Orchestrator(
            provider, registry, working_directory=tmp_dir, **kwargs,
        )
        return orchestrator, provider

    return _make
