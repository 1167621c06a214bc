"""CLI entry point for Kestrel."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click

from kestrel import __version__
from kestrel.config import Config, ConfigError, load_config
from kestrel.exceptions import CapabilityError

logger = logging.getLogger(__name__)


def _resolve_workspace(workspace: Path | None) -> Path:
    return (workspace or Path.cwd()).resolve()


def _configure_logging(config: Config) -> None:
    level = getattr(logging, config.logging.level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _build_event_bus():
    """Bus feeding the terminal display, with distress events also logged."""
    from kestrel import display
    from kestrel.events import types as ev
    from kestrel.events.bus import EventBus

    bus = EventBus()
    bus.subscribe_all(display.display_event)
    bus.subscribe(ev.DISTRESS, _log_distress)
    return bus


def _log_distress(event) -> None:
    logger.warning("%s: %s", event.message, event.detail)


@click.group()
@click.version_option(version=__version__, prog_name="kestrel")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to kestrel.toml configuration file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Kestrel: turn-based task execution for LLM coding agents."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


def _resolve_model(config: Config, model_name: str | None):
    """Resolve a model provider from config."""
    from kestrel.models.router import ModelRouter

    try:
        router = ModelRouter.from_config(config)
    except ValueError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    try:
        if model_name:
            return router.get(model_name)
        return router.select(role="executor")
    except Exception as e:
        click.echo(f"No model available: {e}", err=True)
        sys.exit(1)


def _build_registry(plugins: tuple[str, ...]):
    from kestrel.capabilities import create_default_registry

    try:
        return create_default_registry(plugins)
    except CapabilityError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("query")
@click.option(
    "--workspace", "-w",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory. Defaults to current directory.",
)
@click.option("--model", "-m", default=None, help="Model name from config to use.")
@click.option("--max-turns", type=int, default=None, help="Turn budget (0 = unbounded).")
@click.option(
    "--plugin", "plugins", multiple=True,
    help="Importable module that defines Capability subclasses. Repeatable.",
)
@click.option(
    "--no-preflight", is_flag=True, default=False,
    help="Skip the knowledge preflight.",
)
@click.pass_context
def run(
    ctx: click.Context,
    query: str,
    workspace: Path | None,
    model: str | None,
    max_turns: int | None,
    plugins: tuple[str, ...],
    no_preflight: bool,
) -> None:
    """Run QUERY to completion, asking for input whenever the session parks."""
    from kestrel import display
    from kestrel.engine.orchestrator import Orchestrator
    from kestrel.engine.preflight import HttpKnowledgeSource
    from kestrel.state.session import SessionStatus

    config: Config = ctx.obj["config"]
    _configure_logging(config)
    ws = _resolve_workspace(workspace)
    provider = _resolve_model(config, model)
    registry = _build_registry(plugins)
    bus = _build_event_bus()

    knowledge = None
    if config.knowledge.url and not no_preflight:
        knowledge = HttpKnowledgeSource(
            config.knowledge.url, timeout=config.knowledge.timeout_seconds,
        )

    orchestrator = Orchestrator(
        provider,
        registry,
        working_directory=ws,
        config=config,
        max_turns=max_turns,
        on_event=bus.emit,
        knowledge=knowledge,
    )

    display.display_welcome(ws, provider.name)
    result = asyncio.run(_drive(orchestrator, query, closers=[provider, knowledge]))
    display.display_result(result)
    if result.status == SessionStatus.FAILED:
        sys.exit(1)


async def _drive(orchestrator, query: str, *, closers: list):
    """Run the session, prompting for input each time it parks."""
    from kestrel import display
    from kestrel.state.session import SessionStatus

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.request_pause)
        pause_on_sigint = True
    except (NotImplementedError, RuntimeError):
        pause_on_sigint = False

    try:
        result = await orchestrator.execute(query)
        while result.status == SessionStatus.AWAITING_INPUT:
            reply = await asyncio.to_thread(
                display.display_question, result.question, result.pause,
            )
            result = await orchestrator.resume(reply)
        return result
    finally:
        if pause_on_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        for closer in closers:
            if closer is not None and hasattr(closer, "close"):
                await closer.close()


@cli.command()
@click.pass_context
def models(ctx: click.Context) -> None:
    """List configured models."""
    config: Config = ctx.obj["config"]

    if not config.models:
        click.echo("No models configured. Add model sections to kestrel.toml.")
        return

    for name, model in config.models.items():
        roles = ", ".join(model.roles)
        click.echo(f"  {name}: {model.model} ({model.provider}) [{roles}]")
        click.echo(f"    URL: {model.base_url}")


@cli.command()
@click.option(
    "--plugin", "plugins", multiple=True,
    help="Importable module that defines Capability subclasses. Repeatable.",
)
@click.pass_context
def capabilities(ctx: click.Context, plugins: tuple[str, ...]) -> None:
    """List registered capability ids."""
    registry = _build_registry(plugins)
    for name in registry.names():
        capability = registry.get(name)
        description = capability.description.split(". ")[0] if capability else ""
        click.echo(f"  {name}: {description}")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
