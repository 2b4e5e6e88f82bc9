"""deltaq CLI entry point."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from deltaq import __version__
from deltaq.errors import DeltaqError

if TYPE_CHECKING:
    from collections.abc import Callable

    from deltaq.config import Settings


@click.group()
@click.version_option(version=__version__, prog_name="deltaq")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: $DELTAQ_CONFIG or ./deltaq.yml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, config_path: Path | None, verbose: bool, quiet: bool) -> None:
    """deltaq - coordinate delta index runs."""
    from deltaq.logging_setup import configure_logging

    configure_logging(verbose=verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _settings(ctx: click.Context) -> Settings:
    from deltaq.config import load_settings

    settings: Settings | None = ctx.obj.get("settings")
    if settings is None:
        settings = load_settings(ctx.obj.get("config_path"))
        ctx.obj["settings"] = settings
    return settings


def _guarded(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn a :class:`DeltaqError` into an ``Error:`` line and exit code 1."""
    import functools

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DeltaqError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    return wrapper


def _store(ctx: click.Context) -> Any:
    from deltaq.coordination import open_store

    store = ctx.obj.get("store")
    if store is None:
        store = open_store(_settings(ctx).coordination_url)
        ctx.obj["store"] = store
        ctx.call_on_close(store.close)
    return store


@main.command()
@click.argument("index")
@click.pass_context
@_guarded
def run(ctx: click.Context, index: str) -> None:
    """Run the delta job for INDEX now, in this process."""
    from deltaq.worker import DeltaJob

    job = DeltaJob.from_settings(_settings(ctx), _store(ctx))
    result = job.perform(index)

    click.echo(f"Index:    {result.index}")
    click.echo(f"Decision: {result.decision.value}")
    if result.cutoff is not None:
        click.echo(f"Cutoff:   {result.cutoff}")
    if result.cleared is not None:
        click.echo(f"Cleared:  {result.cleared}")
    if result.quorum is not None:
        quorum = result.quorum
        state = "triggered" if quorum.triggered else "waiting"
        click.echo(f"Quorum:   {quorum.seen} seen, {state}")


@main.command()
@click.argument("indices", nargs=-1, required=True)
@click.pass_context
@_guarded
def enqueue(ctx: click.Context, indices: tuple[str, ...]) -> None:
    """Queue delta runs for one or more INDICES."""
    from deltaq.queue import JobQueue

    queue = JobQueue(_store(ctx), _settings(ctx).queue)
    for index in indices:
        queue.enqueue(index)
    click.echo(f"Queued {len(indices)} job{'s' if len(indices) != 1 else ''} on {queue.name}")


@main.command()
@click.option("--once", is_flag=True, help="Drain the jobs queued now, then exit.")
@click.option("--poll", "poll_timeout", default=5.0, type=float, help="Queue wait in seconds.")
@click.pass_context
@_guarded
def work(ctx: click.Context, *, once: bool, poll_timeout: float) -> None:
    """Pop and perform queued delta jobs."""
    from deltaq.worker import DeltaJob

    job = DeltaJob.from_settings(_settings(ctx), _store(ctx))
    try:
        attempted = job.work(once=once, poll_timeout=poll_timeout)
    except KeyboardInterrupt:
        click.echo("\nWorker stopped.")
        return
    click.echo(f"Attempted {attempted} job{'s' if attempted != 1 else ''}")


@main.command()
@click.argument("index")
@click.pass_context
@_guarded
def plan(ctx: click.Context, index: str) -> None:
    """Show what a run for INDEX would do, without running it."""
    from deltaq.job import IndexJob
    from deltaq.planner import ActionPlanner

    settings = _settings(ctx)
    job = IndexJob(index)
    planner = ActionPlanner(settings)
    state = planner.inspect(job)
    decision = planner.plan(job)

    age = "n/a" if state.base_age is None else f"{state.base_age:.0f}s"
    click.echo(f"Index:    {job.name} -> {job.base_name}")
    click.echo(f"Marker:   {'present' if state.marker_present else 'absent'}")
    click.echo(f"Base:     {'present' if state.base_present else 'absent'} (age {age})")
    group = settings.shard_group_for(job.name)
    if group is not None:
        click.echo(f"Shard:    {group.namespace} (quorum {group.quorum})")
    click.echo(f"Decision: {decision.value}")


@main.command("mark-full")
@click.argument("index")
@click.pass_context
@_guarded
def mark_full(ctx: click.Context, index: str) -> None:
    """Force a full rebuild of INDEX's base index on its next run."""
    from deltaq.job import IndexJob

    marker = IndexJob(index).marker_path(_settings(ctx).marker_dir)
    marker.parent.mkdir(parents=True, exist_ok=True)
    marker.touch()
    click.echo(f"Marked {index} for full rebuild ({marker})")


@main.command("lock")
@click.argument("index")
@click.pass_context
@_guarded
def lock_cmd(ctx: click.Context, index: str) -> None:
    """Pause delta runs for INDEX until unlocked."""
    from deltaq.lock_guard import LockGuard

    LockGuard(_store(ctx), _settings(ctx).lock_timeout).lock_index(index)
    click.echo(f"Locked {index}")


@main.command("unlock")
@click.argument("index")
@click.pass_context
@_guarded
def unlock_cmd(ctx: click.Context, index: str) -> None:
    """Resume delta runs for INDEX."""
    from deltaq.lock_guard import LockGuard

    LockGuard(_store(ctx), _settings(ctx).lock_timeout).unlock_index(index)
    click.echo(f"Unlocked {index}")


@main.command("quorum-status")
@click.pass_context
@_guarded
def quorum_status(ctx: click.Context) -> None:
    """Show recorded partitions for every shard group."""
    from rich.console import Console
    from rich.table import Table

    from deltaq.quorum import QuorumTracker
    from deltaq.records import RecordStore

    settings = _settings(ctx)
    if not settings.shard_groups:
        click.echo("No shard groups configured.")
        return

    store = _store(ctx)
    records = RecordStore(settings.records_db_path)
    console = Console()
    for group in settings.shard_groups:
        entries = QuorumTracker(store, records, group).status()
        table = Table(title=f"{group.namespace} ({len(entries)}/{group.quorum})")
        table.add_column("Partition")
        table.add_column("Cutoff")
        for partition, cutoff in sorted(entries.items()):
            table.add_row(partition, str(cutoff))
        console.print(table)
