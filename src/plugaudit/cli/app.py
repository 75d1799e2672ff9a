"""Main CLI application using Typer."""

import sys

import typer
from rich.console import Console

from plugaudit import __version__

app = typer.Typer(
    name="plugaudit",
    help="Plugaudit - audit the dependency trees of installed community plugins",
    no_args_is_help=True,
)

console = Console()


@app.command()
def version():
    """Show plugaudit version."""
    console.print(f"plugaudit version {__version__}")


@app.command()
def run(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ~/.plugaudit/plugaudit.yaml)",
    ),
    vault: str = typer.Option(
        None,
        "--vault",
        "-V",
        help="Vault folder holding the installed plugin list",
    ),
    token: str = typer.Option(
        None,
        "--token",
        "-t",
        envvar="GITHUB_TOKEN",
        help="GitHub access token, raises the API rate limit",
    ),
    workers: int = typer.Option(
        None,
        "--workers",
        "-w",
        help="Number of plugins downloaded concurrently",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Run a security audit of all installed plugins."""
    from plugaudit.cli.audit_cmd import run_audit

    run_audit(config_path=config_path, vault=vault, token=token, workers=workers, debug=debug)


@app.command()
def report(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Show the summary of the latest audit."""
    from plugaudit.cli.report_cmd import show_report

    show_report(config_path=config_path)


@app.command()
def insecurities(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """List plugins with vulnerable dependencies, worst first."""
    from plugaudit.cli.report_cmd import show_insecurities

    show_insecurities(config_path=config_path)


@app.command()
def failures(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """List plugins that could not be audited."""
    from plugaudit.cli.report_cmd import show_failures

    show_failures(config_path=config_path)


@app.command()
def plugins(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """List installed plugins with their latest audit result."""
    from plugaudit.cli.report_cmd import list_plugins

    list_plugins(config_path=config_path)


@app.command()
def log(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Print the full log of the latest audit."""
    from plugaudit.cli.report_cmd import show_log

    show_log(config_path=config_path)


@app.command("clear-cache")
def clear_cache(
    config_path: str = typer.Option(None, "--config", "-c", help="Path to config file"),
):
    """Delete downloaded packages, metadata and logs."""
    from plugaudit.cli.report_cmd import clear_cache_command

    clear_cache_command(config_path=config_path)


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
