from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from gateflow.config import CONFIG_FILENAME, ConfigError, GateflowConfig, load_config, save_config
from gateflow.context import ContextPrioritizer
from gateflow.engine import CompletionLoop
from gateflow.executor import GateTaskExecutor, WorkerFailedError
from gateflow.gates import GATES, UnknownGateError, get_gate
from gateflow.providers import CompletionProvider, ProviderError, create_provider
from gateflow.retry import RetryPolicy
from gateflow.state import ProjectStore, StateError
from gateflow.tools import CircuitBreaker, ProjectToolHandlers, ToolDispatcher, tools_for_role
from gateflow.tools.registry import WORKER_ROLES

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class Runtime:
    repo_root: Path
    config_path: Path
    config: GateflowConfig
    store: ProjectStore
    provider: CompletionProvider
    dispatcher: ToolDispatcher
    engine: CompletionLoop
    executor: GateTaskExecutor


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def _load_config(config_path: Path) -> GateflowConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_progress(event: dict[str, Any]) -> None:
    kind = event.get("event")
    if kind == "agent_chunk":
        click.echo(event.get("chunk", ""), nl=False)
    elif kind in {"agent_started", "agent_working", "agent_progress"}:
        click.echo(f"[{event.get('role')}] {event.get('message')}", err=True)
    elif kind == "agent_failed":
        click.echo(f"[{event.get('role')}] failed: {event.get('error')}", err=True)
    elif kind == "worker_retry":
        click.echo(
            f"[{event.get('role')}] retrying in {event.get('backoff_seconds'):g}s "
            f"after: {event.get('error')}",
            err=True,
        )


def _log_tool_event(event: dict[str, Any]) -> None:
    logger.info("Tool event: %s", json.dumps(event, ensure_ascii=False, default=str))


def _build_provider(config: GateflowConfig) -> CompletionProvider:
    return create_provider(
        config.provider.name,
        model=config.provider.model,
        api_key_env=config.provider.api_key_env,
        request_timeout_seconds=config.provider.request_timeout_seconds,
    )


def _load_runtime(repo_root: Path, config_path: Path) -> Runtime:
    config = _load_config(config_path)
    ctx = click.get_current_context(silent=True)
    level = (ctx.find_root().obj or {}).get("log_level") if ctx is not None else None
    _configure_logging(level or config.logging.level)

    store = ProjectStore(repo_root / config.state.root)
    provider = _build_provider(config)
    dispatcher = ToolDispatcher(
        ProjectToolHandlers(store).handler_map(),
        breaker=CircuitBreaker(
            max_failures=config.tools.max_failures,
            reset_seconds=config.tools.failure_reset_seconds,
        ),
        timeouts=config.tools.timeouts,
        default_timeout_seconds=config.tools.default_timeout_seconds,
        event_hook=_log_tool_event,
    )
    engine = CompletionLoop(
        provider,
        dispatcher,
        max_iterations=config.engine.max_iterations,
        max_tokens=config.provider.max_tokens,
    )
    prioritizer = ContextPrioritizer(
        store,
        document_limit=config.context.document_limit,
        max_documents=config.context.max_documents,
        max_document_chars=config.context.max_document_chars,
        handoff_limit=config.context.handoff_limit,
        decision_limit=config.context.decision_limit,
    )
    executor = GateTaskExecutor(
        store,
        engine,
        prioritizer=prioritizer,
        retry_policy=RetryPolicy(
            max_retries=max(0, int(config.retry.max_retries)),
            backoff_seconds=max(0.0, float(config.retry.backoff_seconds)),
        ),
        artifact_backoff_seconds=max(0.0, float(config.retry.artifact_backoff_seconds)),
        retry_window_seconds=max(0.0, float(config.retry.window_seconds)),
        event_hook=_echo_progress,
    )
    return Runtime(
        repo_root=repo_root,
        config_path=config_path,
        config=config,
        store=store,
        provider=provider,
        dispatcher=dispatcher,
        engine=engine,
        executor=executor,
    )


def _runtime(config_value: str) -> Runtime:
    repo_root = Path.cwd().resolve()
    return _load_runtime(repo_root, _resolve_config_path(repo_root, config_value))


config_option = click.option(
    "--config", "config_value", default=CONFIG_FILENAME, show_default=True
)


@click.group()
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Gateflow CLI."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@cli.command("init")
@click.option("--provider", type=click.Choice(["claude", "openai"]), default=None)
@config_option
def init_command(provider: str | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = _load_config(config_path)
    if provider and provider != config.provider.name:
        data = config.to_dict()
        data["provider"] = {"name": provider}
        config = GateflowConfig.from_dict(data)
    save_config(config_path, config)
    store = ProjectStore(repo_root / config.state.root)

    click.echo(f"Initialized Gateflow in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Provider: {config.provider.name} ({config.provider.model})")
    click.echo(f"State: {store.root}")


@cli.command("gates")
def gates_command() -> None:
    for gate in GATES:
        click.echo(f"{gate.id} {gate.name:<13} {', '.join(gate.roles)}")


@cli.command("tools")
@click.option("--role", type=click.Choice(list(WORKER_ROLES)), required=True)
def tools_command(role: str) -> None:
    for tool in tools_for_role(role):
        click.echo(f"{tool.name}: {tool.description}")


@cli.command("context")
@click.argument("project_id")
@click.argument("gate")
@click.option("--role", default=None)
@config_option
def context_command(project_id: str, gate: str, role: str | None, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        gate_id = get_gate(gate).id
        text = runtime.executor.prioritizer.build_handoff_context(project_id, gate_id, role)
    except (UnknownGateError, StateError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(text)


@cli.command("run-worker")
@click.argument("project_id")
@click.argument("role", type=click.Choice(list(WORKER_ROLES)))
@click.argument("gate")
@config_option
def run_worker_command(project_id: str, role: str, gate: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        run = asyncio.run(runtime.executor.run_worker(project_id, role, gate))
    except (WorkerFailedError, ProviderError, StateError, UnknownGateError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo("")
    click.echo(f"Worker {run.role} completed {run.gate} in {run.attempts} attempt(s)")
    if run.outcome is not None:
        usage = run.outcome.usage
        click.echo(f"Tokens: {usage.input_tokens} in / {usage.output_tokens} out")


@cli.command("run-gate")
@click.argument("project_id")
@click.argument("gate")
@config_option
def run_gate_command(project_id: str, gate: str, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        results = asyncio.run(runtime.executor.run_gate(project_id, gate))
    except (StateError, UnknownGateError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo("")
    failures: list[str] = []
    for role, result in results.items():
        if isinstance(result, BaseException):
            failures.append(role)
            click.echo(f"{role}: failed ({result})")
        else:
            click.echo(f"{role}: {result.status} in {result.attempts} attempt(s)")
    if failures:
        raise click.ClickException(f"Gate {gate} failed for: {', '.join(failures)}")


@cli.command("events")
@click.argument("project_id")
@click.option("--type", "event_type", default=None)
@config_option
def events_command(project_id: str, event_type: str | None, config_value: str) -> None:
    runtime = _runtime(config_value)
    try:
        events = runtime.store.list_events(project_id, event_type)
    except StateError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(events, ensure_ascii=False, indent=2))
