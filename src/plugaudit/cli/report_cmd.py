"""CLI commands that read the results of the latest audit."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from plugaudit.audit.aggregator import failures_report, insecurities_report, issue_label, label_rank
from plugaudit.audit.models import AuditSummary
from plugaudit.audit.store import CacheStore, load_last_run

console = Console()

_SUMMARY_ROWS = [
    ("Critical issues", "critical"),
    ("High issues", "high"),
    ("Moderate issues", "moderate"),
    ("Low issues", "low"),
    ("Info issues", "info"),
    ("No issues", "no_issues"),
    ("Unable to download", "failed_download"),
    ("Audit incomplete", "audit_incomplete"),
    ("No online repository", "no_repo"),
]

_LABEL_STYLES = {
    "Critical": "bold red",
    "High": "red",
    "Moderate": "yellow",
    "Low": "cyan",
    "Info": "blue",
    "No issues": "green",
    "Audit failed": "magenta",
    "Not audited": "dim",
}


def _store(config_path: str | None) -> CacheStore:
    from plugaudit.cli.audit_cmd import load_settings

    return CacheStore(load_settings(config_path).paths.cache_dir_path())


def _format_millis(value: int | None) -> str:
    if not value:
        return "N/A"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def summary_table(summary: AuditSummary, title: str | None = None) -> Table:
    """Plugin counts per category."""
    table = Table(title=title)
    table.add_column("Plugin category", style="cyan")
    table.add_column("Plugin count", justify="right")
    for label, attr in _SUMMARY_ROWS:
        table.add_row(label, str(getattr(summary, attr)), end_section=attr == "no_issues")
    return table


def show_report(config_path: str | None = None) -> None:
    """Show the last audit's timestamp and summary."""
    from plugaudit.cli.audit_cmd import load_settings

    config = load_settings(config_path)
    last_run = load_last_run(config.paths.state_file_path())
    if last_run is None or last_run.summary is None:
        console.print("[dim]No audit information available.[/dim]")
        return

    local_time = last_run.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    console.print(f"Last audit: {local_time}")
    console.print(summary_table(last_run.summary, title="Security Audit Report"))


def show_insecurities(config_path: str | None = None) -> None:
    outcomes = _store(config_path).load_outcomes()
    if outcomes is None:
        console.print("[dim]No audit log available.[/dim]")
        return
    console.print(insecurities_report(outcomes), markup=False, highlight=False)


def show_failures(config_path: str | None = None) -> None:
    outcomes = _store(config_path).load_outcomes()
    if outcomes is None:
        console.print("[dim]No audit log available.[/dim]")
        return
    console.print(failures_report(outcomes), markup=False, highlight=False)


def list_plugins(config_path: str | None = None) -> None:
    """Installed plugins, most urgent first."""
    store = _store(config_path)
    plugins = store.load_manifest()
    if not plugins:
        console.print("[dim]No community plugin data. Please run security audit.[/dim]")
        return

    outcomes = {outcome.plugin_id: outcome for outcome in store.load_outcomes() or []}
    labelled = [(plugin, issue_label(outcomes.get(plugin.id))) for plugin in plugins]
    labelled.sort(key=lambda item: label_rank(item[1]))

    table = Table(title="Installed Plugins")
    table.add_column("Plugin", style="cyan")
    table.add_column("Repository")
    table.add_column("Issues")
    table.add_column("Last Updated")
    for plugin, label in labelled:
        style = _LABEL_STYLES.get(label, "")
        table.add_row(
            escape(plugin.display_name),
            f"https://github.com/{plugin.repo}" if plugin.repo else "-",
            f"[{style}]{label}[/{style}]" if style else label,
            _format_millis(plugin.last_updated),
        )
    console.print(table)


def show_log(config_path: str | None = None) -> None:
    text = _store(config_path).load_log()
    if text is None:
        console.print("[dim]No audit log available.[/dim]")
        return
    console.print(text, markup=False, highlight=False)


def clear_cache_command(config_path: str | None = None) -> None:
    store = _store(config_path)
    store.clear()
    console.print(f"[green]Cleared cache at {store.root}[/green]")
