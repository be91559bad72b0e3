"""Typer CLI entrypoint for feed-relay."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, FeedSubscription
from .delivery import CoordinationBackendError, DeliveryClient, build_delivery_lock
from .engine import WorkerPool
from .infra import HistoryRepository, SQLiteManager, SubscriberRepository
from .logging_conf import (
    available_link_logs,
    configure_logging,
    link_log_path,
    relay_log_path,
    tail_log,
)
from .orchestrator import CycleSummary, Orchestrator
from .scheduler import APSchedulerAdapter

app = typer.Typer(help="feed-relay command line", no_args_is_help=True)
feed_app = typer.Typer(name="feed", help="Feed subscription commands", no_args_is_help=True)
subscriber_app = typer.Typer(name="subscribers", help="Subscriber commands", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing commands", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    scheduler: APSchedulerAdapter
    orchestrator: Orchestrator
    storage: SQLiteManager


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    scheduler = APSchedulerAdapter()
    storage = SQLiteManager()
    db_path = global_config.resolved_history_path(repository.locator.project_root)
    pool_config = global_config.worker_pool
    worker_pool = WorkerPool(
        max_workers=pool_config.max_workers, start_method=pool_config.start_method
    )
    try:
        lock = build_delivery_lock(global_config.delivery)
    except CoordinationBackendError as exc:
        console.print(f"Coordination backend unavailable: {exc}", style="red")
        raise typer.Exit(code=2) from exc
    orchestrator = Orchestrator(
        config_repository=repository,
        scheduler=scheduler,
        worker_pool=worker_pool,
        history=HistoryRepository(storage, db_path),
        subscribers=SubscriberRepository(storage, db_path),
        delivery=DeliveryClient.from_config(global_config.delivery, lock),
    )
    return AppState(
        repository=repository,
        scheduler=scheduler,
        orchestrator=orchestrator,
        storage=storage,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _render_feeds_table(feeds: Sequence[FeedSubscription]) -> Table:
    table = Table(title=f"Feeds · {len(feeds)} total", box=box.SIMPLE_HEAD)
    table.add_column("Feed", style="cyan", no_wrap=True)
    table.add_column("Link", overflow="fold")
    table.add_column("Destination", style="green")
    table.add_column("Comparisons", style="magenta")
    table.add_column("State", style="yellow")
    for feed in feeds:
        destination = f"webhook {feed.webhook.id}" if feed.webhook else f"#{feed.channel_id}"
        comparisons = " ".join(
            [f"-{name}" for name in feed.negative_comparisons]
            + [f"+{name}" for name in feed.positive_comparisons]
        )
        table.add_row(
            feed.feed_id,
            feed.link,
            destination,
            comparisons or "-",
            "disabled" if feed.disabled else "active",
        )
    return table


def _render_jobs_table(jobs: Iterable[dict[str, str]]) -> Table:
    table = Table(title="Scheduled jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job.get("id", "-")),
            str(job.get("next_run_time", "-")),
            str(job.get("trigger", "-")),
        )
    return table


def _render_summary(summary: CycleSummary) -> Table:
    table = Table(title="Cycle summary", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for key, value in summary.as_dict().items():
        table.add_row(key, str(value))
    return table


app.add_typer(feed_app, name="feed")
app.add_typer(subscriber_app, name="subscribers")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    ctx.obj = build_state(verbose)


@app.command("run", help="Run one feed cycle now.")
def run_now(
    ctx: typer.Context,
    link: Optional[list[str]] = typer.Option(None, "--link", help="Restrict the cycle to these links."),
) -> None:
    state = _get_state(ctx)
    try:
        summary = state.orchestrator.run_cycle(links=link or None)
    except CoordinationBackendError as exc:
        console.print(f"Cycle aborted, coordination backend unavailable: {exc}", style="red")
        raise typer.Exit(code=2) from exc
    finally:
        state.orchestrator.worker_pool.shutdown()
    if summary.skipped:
        console.print("A cycle is already running.", style="yellow")
        return
    console.print(_render_summary(summary))
    if summary.failed:
        raise typer.Exit(code=1)


@app.command("serve", help="Run cycles and maintenance on their schedules until interrupted.")
def serve(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    state.orchestrator.register_schedules()
    jobs = list(state.scheduler.list_jobs())
    if jobs:
        console.print(_render_jobs_table(jobs))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping...", style="yellow")
    finally:
        state.orchestrator.shutdown()


@feed_app.command("list", help="List configured feed subscriptions.")
def feed_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    feeds = state.repository.list_subscriptions()
    if not feeds:
        console.print(
            f"No feeds configured. Add YAML files under {state.repository.locator.feeds_dir}.",
            style="yellow",
        )
        raise typer.Exit(code=0)
    console.print(_render_feeds_table(feeds))


@feed_app.command("show", help="Show one feed subscription.")
def feed_show(ctx: typer.Context, feed_id: str = typer.Argument(..., help="Feed id.")) -> None:
    state = _get_state(ctx)
    try:
        feed = state.repository.load_subscription(feed_id)
    except FileNotFoundError:
        console.print(f"Feed `{feed_id}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print_json(data=feed.model_dump(mode="json", exclude_none=True))
    subscribers = state.orchestrator.subscribers.for_feed(feed_id)
    console.print(f"Subscribers: {len(subscribers)}", style="cyan")


@feed_app.command("remove", help="Delete a feed subscription and its subscribers.")
def feed_remove(
    ctx: typer.Context,
    feed_id: str = typer.Argument(..., help="Feed id."),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation."),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm(f"Delete feed `{feed_id}`?", default=False):
        console.print("Cancelled.", style="yellow")
        raise typer.Exit(code=0)
    if not state.repository.delete_subscription(feed_id):
        console.print(f"Feed `{feed_id}` not found.", style="red")
        raise typer.Exit(code=1)
    subscribers = state.orchestrator.subscribers
    for subscriber in subscribers.for_feed(feed_id):
        subscribers.delete(subscriber)
    console.print(f"Feed `{feed_id}` deleted.", style="green")


@feed_app.command("history", help="Show recently recorded articles of a feed's link.")
def feed_history(
    ctx: typer.Context,
    feed_id: str = typer.Argument(..., help="Feed id."),
    limit: int = typer.Option(20, "--limit", help="Number of rows."),
) -> None:
    state = _get_state(ctx)
    try:
        rows = state.orchestrator.view_history(feed_id, limit=limit)
    except FileNotFoundError:
        console.print(f"Feed `{feed_id}` not found.", style="red")
        raise typer.Exit(code=1)
    if not rows:
        console.print("No history recorded.", style="dim")
        return
    table = Table(title=f"{feed_id} · last {len(rows)} articles", box=box.SIMPLE_HEAD)
    table.add_column("First seen", style="green")
    table.add_column("Article id", overflow="fold")
    for article_id, first_seen in rows:
        table.add_row(str(first_seen), str(article_id))
    console.print(table)


@feed_app.command("reset", help="Forget the recorded history of a feed's link.")
def feed_reset(
    ctx: typer.Context,
    feed_id: str = typer.Argument(..., help="Feed id."),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation."),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm(
        f"Reset history of `{feed_id}`? The next cycle will only record articles.", default=False
    ):
        console.print("Cancelled.", style="yellow")
        raise typer.Exit(code=0)
    try:
        removed = state.orchestrator.reset_history(feed_id)
    except FileNotFoundError:
        console.print(f"Feed `{feed_id}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Removed {removed} history rows for `{feed_id}`.", style="green")


@subscriber_app.command("list", help="List subscribers.")
def subscribers_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    subscribers = state.orchestrator.subscribers.get_all()
    if not subscribers:
        console.print("No subscribers.", style="dim")
        return
    table = Table(title=f"Subscribers · {len(subscribers)} total", box=box.SIMPLE_HEAD)
    table.add_column("Id", style="cyan")
    table.add_column("Feed")
    table.add_column("Type", style="magenta")
    table.add_column("Target", style="green")
    for subscriber in subscribers:
        table.add_row(subscriber.id, subscriber.feed_id, subscriber.type, subscriber.target_id)
    console.print(table)


@subscriber_app.command("prune", help="Delete subscribers whose feed, role or user is gone.")
def subscribers_prune(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    deleted = state.orchestrator.prune_subscribers()
    console.print(f"Deleted {deleted} subscribers.", style="green")


@log_app.command("list", help="List per-link log files.")
def log_list() -> None:
    logs = list(available_link_logs())
    if not logs:
        console.print("No link logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the relay log or of one link's log.")
def log_show(
    link: Optional[str] = typer.Option(None, "--link", help="Feed link (default: relay log)."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    path = link_log_path(link) if link else relay_log_path()
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines))


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
