"""The ``plugaudit run`` command."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from plugaudit.audit.models import AuditSummary
from plugaudit.audit.orchestrator import AuditOrchestrator, RunContext, RunResult
from plugaudit.audit.store import LastRun, save_last_run
from plugaudit.config.loader import ConfigError, apply_overrides, load_config
from plugaudit.config.schema import PlugauditConfig

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(debug: bool) -> None:
    """Route log records through rich; WARNING by default, DEBUG on request."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def load_settings(config_path: str | None, **overrides) -> PlugauditConfig:
    """Load the config file and apply command-line overrides, exiting on errors."""
    try:
        config = load_config(Path(config_path).expanduser() if config_path else None)
        return apply_overrides(config, **overrides)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1) from None


class RichProgressSink:
    """Progress sink backed by a rich progress bar."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task_id = progress.add_task("Starting...", total=100)
        self.summary: AuditSummary | None = None

    def __call__(self, percent: float, message: str, summary: AuditSummary | None = None) -> None:
        if summary is not None:
            self.summary = summary
        self.progress.update(self.task_id, completed=percent, description=message)


async def _run(config: PlugauditConfig) -> RunResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        # First Ctrl-C stops the run between plugins
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError) as e:
        logger.debug("Cancellation on Ctrl-C unavailable: %s", e)

    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        ) as progress:
            sink = RichProgressSink(progress)
            context = RunContext(config=config, progress=sink, cancel_event=cancel_event)
            return await AuditOrchestrator().run(context)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError) as e:
            logger.debug("Could not remove signal handler: %s", e)


def run_audit(
    config_path: str | None = None,
    vault: str | None = None,
    token: str | None = None,
    workers: int | None = None,
    debug: bool = False,
) -> None:
    """Run a full audit and print its summary."""
    from plugaudit.cli.report_cmd import summary_table

    config = load_settings(config_path, vault=vault, token=token, workers=workers, debug=debug)
    setup_logging(config.debug)

    result = asyncio.run(_run(config))

    if result.cancelled:
        console.print(f"[yellow]{escape(result.message)}[/yellow]")
        raise typer.Exit(130)
    if not result.ok:
        console.print(f"[red]{escape(result.message)}[/red]")
        raise typer.Exit(1)

    save_last_run(
        config.paths.state_file_path(),
        LastRun(timestamp=result.finished_at, summary=result.summary, message=result.message),
    )

    console.print(f"[green]{result.message}[/green]")
    if result.summary is not None and result.summary.total:
        console.print(summary_table(result.summary, title="Security Audit Report"))
