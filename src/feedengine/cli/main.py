#!/usr/bin/env python3
"""
feedengine CLI Main Application

Typer-based command-line interface for compiling filter blocks and
evaluating them against fixture corpora.
"""

from typing import Annotated, Optional

import typer
from rich.console import Console

from feedengine.cli import __version__
from feedengine.cli.commands import config, feeds
from feedengine.cli.error_handling import handle_error
from feedengine.cli.utils import configure_logging, load_config
from feedengine.core.exceptions import ConfigurationError

console = Console()

app = typer.Typer(
    name="feedengine",
    help="User-defined feed filter engine",
    context_settings={"help_option_names": ["-h", "--help"]},
    rich_markup_mode="rich",
    no_args_is_help=True,
)

app.command("compile", help="Compile a block list and show the resolved tree")(feeds.compile_command)
app.command("evaluate", help="Evaluate a block list against a fixture corpus")(feeds.evaluate_command)
app.add_typer(config.app, name="config", help="Manage engine configuration")


def version_callback(value: bool):
    """Show version information."""
    if value:
        console.print(f"[bold cyan]feedengine[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def app_callback(
    ctx: typer.Context,
    config_file: Annotated[Optional[str], typer.Option("--config", "-c", help="Configuration file path")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Override the configured log level")] = None,
    version: Annotated[Optional[bool], typer.Option(
        "--version", "-v", callback=version_callback, is_eager=True, help="Show version information and exit"
    )] = None,
):
    """
    feedengine - user-defined feed filters

    [bold]Quick Start:[/bold]

    • Inspect a feed: [cyan]feedengine compile blocks.yaml[/cyan]
    • Try it out: [cyan]feedengine evaluate blocks.yaml --corpus corpus.yaml --viewer alice[/cyan]
    • Write a config: [cyan]feedengine config init[/cyan]
    """
    overrides = {"log_level": log_level} if log_level else None
    try:
        engine_config = load_config(config_file, overrides=overrides)
    except ConfigurationError as e:
        handle_error(e)
        return
    configure_logging(engine_config.get_effective_log_level())
    ctx.obj = {"config": engine_config}


def main():
    """Entry point for the feedengine console script."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
