"""
CLI Error Handling

Renders FeedEngineError instances as rich panels with their recovery
suggestions and exits with a non-zero status.
"""

import typer
from rich.console import Console
from rich.padding import Padding
from rich.panel import Panel
from rich.text import Text

from feedengine.core.exceptions import FeedEngineError

console = Console(stderr=True)


def handle_error(err: FeedEngineError) -> None:
    """Print an engine error and exit with status 1."""
    console.print()
    console.print(Panel(
        Text(err.message, justify="full"),
        title=f"[bold red]Error: {type(err).__name__}[/bold red]",
        subtitle=f"code {err.error_code.value}",
        border_style="red",
        expand=False,
    ))

    if err.suggestions:
        console.print("\n[bold green]Suggested solutions:[/bold green]")
        for i, suggestion in enumerate(err.suggestions, 1):
            console.print(Padding(Text(f"{i}. {suggestion.action}: {suggestion.description}"), (0, 1)))

    if err.context.correlation_id:
        console.print(Padding(f"Trace ID: [yellow]{err.context.correlation_id}[/yellow]", (1, 0, 0, 0)))

    raise typer.Exit(code=1)
