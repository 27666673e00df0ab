"""Command-line interface for inbox triage.

Provides commands for configuration validation, offline triage of a thread
export, a single guarded sync, and a periodic sync watcher.

Usage:
    python -m inbox_triage validate-config
    python -m inbox_triage triage threads.json --view waiting
    python -m inbox_triage triage threads.json --filter unlinked --search invoice
    python -m inbox_triage counts threads.json
    python -m inbox_triage sync
    python -m inbox_triage watch
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from inbox_triage.classifier.direction import OrgAddressBook
from inbox_triage.config import (
    get_config,
    load_config,
    reload_config_if_changed,
    validate_config_file,
)
from inbox_triage.core.errors import ConfigLoadError, ConfigValidationError
from inbox_triage.core.logging import configure_logging, get_logger
from inbox_triage.core.notices import NoticeBuffer
from inbox_triage.engine.annotate import AnnotatedThread, ThreadAnnotator
from inbox_triage.engine.cache import ThreadCache
from inbox_triage.engine.sync import SyncAttempt, SyncOrchestrator
from inbox_triage.engine.threads import Thread
from inbox_triage.engine.views import (
    FILTER_PRIORITY,
    WORKFLOW_VIEWS,
    FilterToggles,
    count_workflow,
    filter_inbox,
    filter_workflow_view,
)
from inbox_triage.remote.client import API_KEY_ENV, RemoteClient

if TYPE_CHECKING:
    from inbox_triage.config_schema import AppConfig

console = Console()
logger = get_logger(__name__)

NOTICE_STYLES = {"info": "cyan", "success": "green", "error": "red"}

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)


def _load_cli_config(config_path: Path | None) -> AppConfig:
    """Load config or exit with an actionable message."""
    try:
        return load_config(config_path)
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml with at least an [cyan]actor[/cyan] section.\n"
            "See config/config.yaml.example."
        )
        sys.exit(1)


def _load_records(path: Path) -> list[dict[str, Any]]:
    """Read thread records from a JSON or YAML export.

    Accepts a top-level list or a mapping with a "threads" list (optionally
    wrapped in "data").
    """
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise click.ClickException(f"Cannot parse {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("data", data)
        data = data.get("threads") if isinstance(data, dict) else data
    if not isinstance(data, list):
        raise click.ClickException(f"{path} must contain a list of thread records")
    return [r for r in data if isinstance(r, dict)]


def _print_notices(notices: NoticeBuffer) -> None:
    for notice in notices.drain():
        style = NOTICE_STYLES.get(notice.level, "white")
        console.print(f"[{style}]{notice.message}[/{style}]")


def _render_threads(rows: list[AnnotatedThread], title: str) -> None:
    table = Table(title=title, show_lines=False)
    table.add_column("Status")
    table.add_column("Dir")
    table.add_column("Intent")
    table.add_column("Category")
    table.add_column("Subject", overflow="fold")
    table.add_column("From")
    table.add_column("Last message")

    for row in rows:
        thread = row.thread
        last = thread.last_message_date
        table.add_row(
            row.status,
            row.direction,
            row.intent.bucket if row.intent else "-",
            f"{row.category.label} ({row.category.confidence})",
            thread.subject or "(no subject)",
            thread.from_address or "-",
            last.strftime("%Y-%m-%d %H:%M") if last else "-",
        )
    console.print(table)


def _print_attempt(attempt: SyncAttempt) -> None:
    if attempt.outcome == "completed" and attempt.summary is not None:
        console.print(
            f"[green]Sync complete:[/green] {attempt.summary.threads_synced} threads, "
            f"{attempt.summary.messages_synced} messages"
        )
    elif attempt.outcome == "completed":
        console.print("[green]Sync complete.[/green]")
    elif attempt.outcome == "locked":
        console.print(f"[yellow]Remote sync locked[/yellow] until {attempt.locked_until or '?'}")
    elif attempt.outcome == "skipped":
        console.print(f"[dim]Sync skipped ({attempt.skip_reason}).[/dim]")
    if attempt.errors:
        console.print(f"[yellow]Completed with {len(attempt.errors)} error(s)[/yellow]")


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Inbox triage - email thread triage and sync engine."""
    log_level = "DEBUG" if debug else "INFO"
    # Human-readable output for the CLI
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@config_option
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes Pydantic schema validation.
    Reports specific errors for invalid fields.
    """
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("triage")
@click.argument("threads_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--view",
    type=click.Choice(WORKFLOW_VIEWS),
    default=None,
    help="Workflow view to show (default: unassigned; not combinable with --filter)",
)
@click.option(
    "--filter",
    "filters",
    type=click.Choice(FILTER_PRIORITY),
    multiple=True,
    help="Simple-surface filter toggle (repeatable; highest priority wins)",
)
@click.option("--search", default="", help="Case-insensitive free-text search")
@config_option
def triage(
    threads_file: Path,
    view: str | None,
    filters: tuple[str, ...],
    search: str,
    config_path: Path | None,
) -> None:
    """Annotate and list threads from an exported THREADS_FILE (JSON or YAML)."""
    if filters and view is not None:
        raise click.UsageError("--view and --filter cannot be combined")
    config = _load_cli_config(config_path)
    threads = [Thread.from_record(r) for r in _load_records(threads_file)]
    org = OrgAddressBook().addresses(config.actor.email, config.team_members())
    annotator = ThreadAnnotator.from_config(config.classifier)

    if filters:
        toggles = FilterToggles.from_names(filters)
        rows = filter_inbox(
            threads,
            toggles,
            search=search,
            actor_email=config.actor.email,
            org_addresses=org,
            annotator=annotator,
        )
        title = f"Filter: {toggles.active()}"
    else:
        selected = view or "unassigned"
        rows = filter_workflow_view(
            threads,
            selected,  # type: ignore[arg-type]
            search=search,
            actor_email=config.actor.email,
            org_addresses=org,
            annotator=annotator,
        )
        title = f"View: {selected}"

    _render_threads(rows, f"{title} ({len(rows)} threads)")


@cli.command("counts")
@click.argument("threads_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@config_option
def counts(threads_file: Path, config_path: Path | None) -> None:
    """Show how many threads fall into each workflow view."""
    config = _load_cli_config(config_path)
    threads = [Thread.from_record(r) for r in _load_records(threads_file)]
    result = count_workflow(threads, actor_email=config.actor.email)

    table = Table(title="Workflow counts")
    table.add_column("View")
    table.add_column("Threads", justify="right")
    for name, value in result.as_dict().items():
        table.add_row(name, str(value))
    console.print(table)


@cli.command("sync")
@config_option
def sync(config_path: Path | None) -> None:
    """Run one guarded sync and refresh the thread list."""
    config = _load_cli_config(config_path)
    try:
        attempt = asyncio.run(_run_sync_once(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)

    if attempt.outcome == "failed":
        sys.exit(1)


async def _run_sync_once(config: AppConfig) -> SyncAttempt:
    notices = NoticeBuffer()
    async with RemoteClient.from_config(config.remote, os.environ.get(API_KEY_ENV)) as client:
        cache = ThreadCache(client, notices, page_size=config.threads.page_size)
        orchestrator = SyncOrchestrator(client, cache, notices, config.sync)
        attempt = await orchestrator.mount()
        orchestrator.teardown()

    _print_notices(notices)
    _print_attempt(attempt)
    if attempt.outcome == "completed":
        counts = count_workflow(cache.threads, actor_email=config.actor.email)
        summary = "  ".join(f"{name}={value}" for name, value in counts.as_dict().items())
        console.print(f"  {summary}")
    return attempt


@cli.command("watch")
@config_option
def watch(config_path: Path | None) -> None:
    """Trigger a sync on a fixed interval until interrupted."""
    if config_path is not None:
        os.environ["INBOX_TRIAGE_CONFIG_PATH"] = str(config_path)
    try:
        asyncio.run(_run_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
        sys.exit(0)


class SyncWatcher:
    """Interval sync driver behind `watch`.

    Each tick checks the config file first; a valid change is applied to the
    orchestrator, the cache and the job interval before the sync runs.
    """

    JOB_ID = "sync_tick"

    def __init__(
        self,
        config: AppConfig,
        orchestrator: SyncOrchestrator,
        cache: ThreadCache,
        notices: NoticeBuffer,
        scheduler: Any,
    ) -> None:
        self.config = config
        self._orchestrator = orchestrator
        self._cache = cache
        self._notices = notices
        self._scheduler = scheduler

    def start(self) -> None:
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.config.sync.interval_seconds,
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.shutdown(wait=False)

    async def tick(self) -> SyncAttempt:
        if reload_config_if_changed():
            self.apply_config(get_config())
        attempt = await self._orchestrator.trigger("interval")
        _print_notices(self._notices)
        if attempt.outcome != "skipped":
            _print_attempt(attempt)
        return attempt

    def apply_config(self, config: AppConfig) -> None:
        """Push a reloaded config into the running components."""
        previous = self.config
        self.config = config
        self._orchestrator.reconfigure(config.sync)
        self._cache.reconfigure(
            page_size=config.threads.page_size,
            live_update_debounce=config.sync.live_update_debounce_seconds,
            live_update_min_age=config.sync.live_update_min_age_minutes * 60,
        )
        if config.sync.interval_seconds != previous.sync.interval_seconds:
            self._scheduler.reschedule_job(
                self.JOB_ID, trigger="interval", seconds=config.sync.interval_seconds
            )
        console.print(
            f"[dim]Config reloaded; syncing every {config.sync.interval_seconds} seconds.[/dim]"
        )
        if config.remote != previous.remote:
            console.print("[yellow]Remote settings changed; restart watch to apply them.[/yellow]")


async def _run_watch() -> None:
    """Run interval syncs with APScheduler, hot-reloading config each tick."""
    import signal

    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    notices = NoticeBuffer()
    async with RemoteClient.from_config(config.remote, os.environ.get(API_KEY_ENV)) as client:
        cache = ThreadCache(
            client,
            notices,
            page_size=config.threads.page_size,
            live_update_debounce=config.sync.live_update_debounce_seconds,
            live_update_min_age=config.sync.live_update_min_age_minutes * 60,
        )
        orchestrator = SyncOrchestrator(client, cache, notices, config.sync)

        first = await orchestrator.mount()
        _print_notices(notices)
        _print_attempt(first)

        watcher = SyncWatcher(config, orchestrator, cache, notices, AsyncIOScheduler())
        watcher.start()

        console.print(
            f"Syncing every {config.sync.interval_seconds} seconds. Press Ctrl+C to stop."
        )

        # Wait until interrupted
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        await stop_event.wait()

        watcher.stop()
        orchestrator.teardown()
        cache.close()


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
