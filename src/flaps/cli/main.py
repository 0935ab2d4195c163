from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from flaps.config import FlapsConfig, load_config
from flaps.engine.bucketing import bucket as compute_bucket
from flaps.engine.bucketing import in_rollout
from flaps.errors import FlapsError
from flaps.loader import load_snapshot_file
from flaps.models.context import ContextBuilder
from flaps.runtime.engine import FlagEngine
from flaps.runtime.logging_config import (
    configure_from_config,
    ctx_environment,
    ctx_request_id,
)
from flaps.snapshot import Snapshot

load_dotenv()

log = logging.getLogger(__name__)

app = typer.Typer(help="flaps feature flag evaluation CLI")

console = Console()


def _config() -> FlapsConfig:
    try:
        return load_config()
    except FlapsError as exc:
        console.print(f"[red]{exc.code}:[/red] {escape(exc.message)}")
        raise typer.Exit(code=1) from exc


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    """Evaluate and inspect flag snapshots."""
    config = _config()
    configure_from_config(config.model_dump(), verbose=verbose)


def _parse_value(text: str) -> Any:
    """Read ``text`` as JSON when it parses, else as a plain string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _parse_attr(raw: str) -> tuple[str, Any]:
    name, sep, text = raw.partition("=")
    if not sep or not name:
        raise typer.BadParameter(f"expected name=value, got {raw!r}", param_hint="--attr")
    return name, _parse_value(text)


def _snapshot_path(path: Path | None, config: FlapsConfig) -> Path:
    if path is not None:
        return path
    if config.engine.snapshot_path:
        return Path(config.engine.snapshot_path)
    console.print("[red]No snapshot given and engine.snapshot_path is not configured.[/red]")
    raise typer.Exit(code=1)


def _load(path: Path) -> Snapshot:
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)
    try:
        return load_snapshot_file(path)
    except FlapsError as exc:
        console.print(f"[red]{exc.code}:[/red] {escape(exc.message)}")
        raise typer.Exit(code=1) from exc


@contextmanager
def _log_context(environment: str) -> Iterator[None]:
    """Tag log records with the environment and a per-invocation request id."""
    env_token = ctx_environment.set(environment)
    request_token = ctx_request_id.set(uuid.uuid4().hex)
    try:
        yield
    finally:
        ctx_request_id.reset(request_token)
        ctx_environment.reset(env_token)


@app.command()
def evaluate(
    snapshot_path: Path = typer.Argument(..., help="Snapshot document"),
    flag_key: str = typer.Argument(..., help="Flag key"),
    environment: str | None = typer.Option(None, "--env", "-e"),
    entity: str = typer.Option("", "--entity", help="Entity id used for bucketing"),
    attr: list[str] | None = typer.Option(None, "--attr", "-a", help="name=value, repeatable"),
    fallback: str | None = typer.Option(None, "--fallback", help="Served if the flag is missing"),
    at: datetime | None = typer.Option(None, "--at", help="Evaluation time (ISO 8601)"),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Evaluate one flag for one entity and show the decision."""
    config = _config()
    env = environment or config.engine.default_environment
    with _log_context(env):
        snapshot = _load(snapshot_path)

        builder = ContextBuilder(entity)
        try:
            builder.attributes(_parse_attr(raw) for raw in attr or [])
        except FlapsError as exc:
            raise typer.BadParameter(exc.message, param_hint="--attr") from exc
        context = builder.build()

        now = at.replace(tzinfo=UTC) if at is not None and at.tzinfo is None else at
        served_fallback = _parse_value(fallback) if fallback is not None else False
        if not isinstance(served_fallback, (bool, str)):
            served_fallback = fallback

        engine = FlagEngine(snapshot, reject_stale=config.engine.reject_stale_snapshots)
        decision = engine.evaluate(flag_key, env, context, served_fallback, now=now)
        log.debug("cli.evaluate flag=%s env=%s reason=%s", flag_key, env, decision.reason.value)

    if as_json:
        console.print_json(data=decision.to_dict())
        return

    console.print(f"[bold]{flag_key}[/bold] = {json.dumps(decision.value)}")
    console.print(f"  reason: {decision.reason.value}")
    if decision.rule_id:
        console.print(f"  rule: {decision.rule_id}")
    if decision.in_rollout is not None:
        console.print(f"  in rollout: {decision.in_rollout}")
    console.print(f"  enabled: {decision.is_enabled}")
    console.print(f"  snapshot: v{decision.snapshot_version}")


@app.command()
def bucket(
    scope_key: str = typer.Argument(..., help="Flag key, or flag_key:rule_id for a rule"),
    entity_id: str = typer.Argument(...),
    percentage: int | None = typer.Option(None, "--percentage", "-p", min=0, max=100),
) -> None:
    """Show the rollout bucket of an entity."""
    value = compute_bucket(scope_key, entity_id)
    console.print(f"bucket({scope_key!r}, {entity_id!r}) = {value}")
    if percentage is not None:
        verdict = "in" if in_rollout(scope_key, entity_id, percentage) else "out"
        console.print(f"{percentage}% rollout: {verdict}")


@app.command()
def validate(
    snapshot_path: Path | None = typer.Argument(None, help="Snapshot document"),
) -> None:
    """Validate a snapshot document without publishing it."""
    config = _config()
    snapshot = _load(_snapshot_path(snapshot_path, config))
    stats = snapshot.stats()
    console.print(
        f"[green]OK[/green] version {stats['version']}: {stats['flags']} flags, "
        f"{stats['states']} states, {stats['segments']} segments, "
        f"{stats['environments']} environments"
    )


@app.command()
def flags(
    snapshot_path: Path | None = typer.Argument(None, help="Snapshot document"),
    environment: str | None = typer.Option(None, "--env", "-e"),
) -> None:
    """List flags configured in an environment."""
    config = _config()
    env = environment or config.engine.default_environment
    snapshot = _load(_snapshot_path(snapshot_path, config))

    keys = snapshot.flag_keys(env)
    if not keys:
        console.print(f"No flags configured in {env}.")
        return

    table = Table(title=f"Flags ({env}, v{snapshot.version})")
    table.add_column("key")
    table.add_column("type")
    table.add_column("enabled")
    table.add_column("kill")
    table.add_column("default")
    table.add_column("rollout")
    table.add_column("rules")
    for key in keys:
        flag = snapshot.flags[key]
        state = snapshot.states[(key, env)]
        table.add_row(
            key,
            flag.flag_type.value,
            "yes" if state.enabled else "no",
            "ON" if state.kill_switch else "",
            json.dumps(state.default_value),
            "-" if state.rollout_percentage is None else f"{state.rollout_percentage}%",
            str(len(state.rules)),
        )
    console.print(table)


if __name__ == "__main__":
    app()
