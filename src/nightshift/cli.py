from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from nightshift.config import CONFIG_FILE, NightshiftConfig, dumps_toml, load_config, save_config
from nightshift.frontmatter import FrontmatterError
from nightshift.models import STAGES
from nightshift.profiles import ProfileError, ProfileResolver, profile_from_mapping
from nightshift.prompt import PromptBuilder
from nightshift.runner import (
    ProcessSupervisor,
    RunnerAlreadyActiveError,
    RunnerEngine,
    RunResult,
)
from nightshift.store import MarkdownTaskStore, TaskNotFoundError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    workspace_root: Path
    config_path: Path
    config: NightshiftConfig
    store: MarkdownTaskStore
    profiles: ProfileResolver
    engine: RunnerEngine


def _resolve_config_path(workspace_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = workspace_root / config_path
    return config_path.resolve()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_event(event: dict[str, Any]) -> None:
    logger.debug("runner event: %s", event)
    name = event.get("event")
    if name == "stage_started":
        click.echo(
            f"[{event['task_id']}] {event['stage']} via {event['provider']}"
            f" (attempts: {event['attempts']})"
        )
    elif name == "stage_completed":
        click.echo(
            f"[{event['task_id']}] {event['stage']} {event['outcome']} -> {event['transition']}"
        )
    elif name == "task_failed":
        click.echo(f"[{event['task_id']}] {event['status']}: {event['error']}")
    elif name == "process_terminated":
        click.echo(f"Terminated agent process {event['pid']} ({event['reason']})")


def _load_runtime(workspace_root: Path, config_path: Path) -> Runtime:
    config = load_config(config_path)
    kanban_root = config.kanban_root(workspace_root)
    store = MarkdownTaskStore(kanban_root)
    profiles = ProfileResolver(kanban_root)
    supervisor = ProcessSupervisor(
        cwd=workspace_root,
        default_timeout_seconds=config.runner.default_timeout_seconds,
        terminate_grace_seconds=config.runner.terminate_grace_seconds,
        event_hook=_echo_event,
    )
    engine = RunnerEngine(
        store=store,
        profiles=profiles,
        prompts=PromptBuilder(kanban_root),
        supervisor=supervisor,
        workspace_root=workspace_root,
        config=config,
        event_hook=_echo_event,
    )
    return Runtime(
        workspace_root=workspace_root,
        config_path=config_path,
        config=config,
        store=store,
        profiles=profiles,
        engine=engine,
    )


async def _run_interruptible(
    engine: RunnerEngine, start: Callable[[], Awaitable[RunResult]]
) -> RunResult:
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, engine.stop)
        installed = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler unavailable; Ctrl-C will abort without a report")
    try:
        return await start()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _report(result: RunResult) -> None:
    click.echo(f"Run {result.status}: {len(result.tasks)} task(s) processed")
    for task in result.tasks:
        click.echo(f"  {task.task_id:<24} {task.status:<9} {task.error or ''}".rstrip())
    if result.report_path:
        click.echo(f"Report: {result.report_path}")
    if result.status == "failed":
        raise click.ClickException(result.error or "Run failed")


def _execute(runtime: Runtime, start: Callable[[], Awaitable[RunResult]]) -> None:
    try:
        result = asyncio.run(_run_interruptible(runtime.engine, start))
    except (RunnerAlreadyActiveError, TaskNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc
    except (OSError, UnicodeDecodeError, FrontmatterError) as exc:
        raise click.ClickException(f"Unable to read task: {exc}") from exc
    _report(result)


@click.group()
def cli() -> None:
    """Night shift runner for kanban tasks."""


@cli.command("run-task")
@click.argument("task_id")
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default=CONFIG_FILE, show_default=True)
def run_task_command(task_id: str, verbose: bool, config_value: str) -> None:
    _configure_logging(verbose)
    workspace_root = Path.cwd().resolve()
    runtime = _load_runtime(workspace_root, _resolve_config_path(workspace_root, config_value))
    _execute(runtime, lambda: runtime.engine.run_task(task_id))


@cli.command("run-column")
@click.argument("stage", type=click.Choice(list(STAGES)))
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default=CONFIG_FILE, show_default=True)
def run_column_command(stage: str, verbose: bool, config_value: str) -> None:
    _configure_logging(verbose)
    workspace_root = Path.cwd().resolve()
    runtime = _load_runtime(workspace_root, _resolve_config_path(workspace_root, config_value))
    _execute(runtime, lambda: runtime.engine.run_column(stage))  # type: ignore[arg-type]


@cli.command("tasks")
@click.option("--stage", type=click.Choice(list(STAGES)), default=None)
@click.option("--config", "config_value", default=CONFIG_FILE, show_default=True)
def tasks_command(stage: str | None, config_value: str) -> None:
    workspace_root = Path.cwd().resolve()
    runtime = _load_runtime(workspace_root, _resolve_config_path(workspace_root, config_value))
    if stage:
        tasks = runtime.store.list_tasks_in_stage(stage)  # type: ignore[arg-type]
    else:
        tasks = runtime.store.list_tasks()
    if not tasks:
        click.echo("No tasks found.")
        return
    for task in tasks:
        click.echo(f"{task.id:<24} {task.stage:<9} {task.title}")


@cli.command("profiles")
@click.option("--config", "config_value", default=CONFIG_FILE, show_default=True)
def profiles_command(config_value: str) -> None:
    workspace_root = Path.cwd().resolve()
    runtime = _load_runtime(workspace_root, _resolve_config_path(workspace_root, config_value))
    items = runtime.profiles.list_profiles()
    if not items:
        click.echo("No provider profiles found.")
        return
    for item in items:
        try:
            profile = profile_from_mapping(item.id, item.data)
        except ProfileError as exc:
            click.echo(f"{item.id:<20} invalid: {exc}")
            continue
        click.echo(f"{item.id:<20} {profile.cli:<10} {profile.model}")


@cli.command("config")
@click.option("--write", is_flag=True, default=False, help="Write the effective config to disk.")
@click.option("--config", "config_value", default=CONFIG_FILE, show_default=True)
def config_command(write: bool, config_value: str) -> None:
    workspace_root = Path.cwd().resolve()
    config_path = _resolve_config_path(workspace_root, config_value)
    config = load_config(config_path)
    if write:
        save_config(config_path, config)
        click.echo(f"Wrote {config_path}")
        return
    click.echo(dumps_toml(config), nl=False)
