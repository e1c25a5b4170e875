"""Main CLI implementation using Typer."""

from pathlib import Path
from typing import Any, Callable

import typer
from rich.console import Console

from stratus.cli.commands import show_plan, show_snapshot, validate_config
from stratus.errors import StratusError
from stratus.utils.logging import setup_logging


# Create Typer app
app = typer.Typer(
    name="stratusctl",
    help="Stratus - declarative VM lifecycle reconciliation",
    add_completion=False,
)

# Console for rich output
console = Console()


def _run_cli_command(handler: Callable[..., Any], **kwargs: Any):
    """Helper to run a CLI command with error handling."""
    try:
        handler(**kwargs)
    except StratusError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Stratus VM lifecycle tools."""
    if verbose:
        setup_logging("DEBUG")


@app.command("validate")
def validate_command(
    config_dir: Path = typer.Option(
        Path("./configs"), "--config-dir", "-c", help="Configuration directory"
    ),
):
    """Validate configuration and VM declarations."""
    _run_cli_command(validate_config, config_dir=config_dir)


@app.command("plan")
def plan_command(
    name: str = typer.Argument(..., help="VM name"),
    state: Path = typer.Option(..., "--state", help="Saved snapshot of the VM"),
    config_dir: Path = typer.Option(
        Path("./configs"), "--config-dir", "-c", help="Configuration directory"
    ),
):
    """Show the changes an update would apply to a VM."""
    _run_cli_command(show_plan, config_dir=config_dir, name=name, state_file=state)


@app.command("show")
def show_command(
    state: Path = typer.Option(..., "--state", help="Saved snapshot of the VM"),
):
    """Show a saved VM snapshot."""
    _run_cli_command(show_snapshot, state_file=state)


def main():
    """Main entry point for CLI."""
    app()
