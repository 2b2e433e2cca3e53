"""
CLI Utilities

Shared helpers for CLI commands: document loading, fixture corpora,
logging setup and formatting.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from feedengine.core.config import ConfigManager, EngineConfig
from feedengine.models import ContentEntry, ResultPage
from feedengine.providers import InMemoryCorpus, InMemorySocialGraph

console = Console()


def configure_logging(level: str) -> None:
    """Route library logging to stderr at the given level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        force=True,
    )


def load_config(config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """Load engine configuration the way every command does."""
    manager = ConfigManager(config_file)
    config = manager.load_config(overrides=overrides)
    for warning in manager.validate_config(config):
        console.print(f"[yellow]Config warning:[/yellow] {warning}")
    return config


def load_document(path: Path) -> Any:
    """
    Read a YAML or JSON file.

    Raises:
        typer.BadParameter: If the file is missing or unparsable
    """
    if not path.is_file():
        raise typer.BadParameter(f"File not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == '.json':
                return json.load(f)
            return yaml.safe_load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise typer.BadParameter(f"Cannot parse {path}: {e}")


def load_blocks(path: Path) -> List[Dict[str, Any]]:
    """Load a block list, either a bare list or a mapping with a `blocks` key."""
    data = load_document(path)
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get('blocks', [])
    if not isinstance(data, list):
        raise typer.BadParameter(f"{path} must contain a list of filter blocks")
    return data


def load_fixture(path: Path) -> Tuple[InMemoryCorpus, InMemorySocialGraph]:
    """
    Build an in-memory corpus and social graph from a fixture file.

    The fixture is a mapping with optional keys:
        users: list of user ids
        follows: mapping of follower id to followed ids
        blocks: list of [blocker, blocked] pairs
        posts: list of content entries
    """
    data = load_document(path) or {}
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{path} must contain a mapping")

    social = InMemorySocialGraph()
    social.add_user(*[str(u) for u in data.get('users', [])])
    for follower, followed in (data.get('follows') or {}).items():
        for author in followed or []:
            social.follow(str(follower), str(author))
    for pair in data.get('blocks') or []:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise typer.BadParameter(f"Block entries must be [blocker, blocked] pairs, got {pair!r}")
        social.block(str(pair[0]), str(pair[1]))

    corpus = InMemoryCorpus()
    for raw in data.get('posts') or []:
        try:
            entry = ContentEntry.from_dict(raw)
        except (KeyError, ValueError, TypeError) as e:
            raise typer.BadParameter(f"Invalid post {raw!r}: {e}")
        social.add_user(entry.author_id)
        corpus.add(entry)
    return corpus, social


def print_header(title: str, subtitle: Optional[str] = None) -> None:
    """Print a formatted header."""
    content = f"[bold cyan]{title}[/bold cyan]"
    if subtitle:
        content += f"\n[dim]{subtitle}[/dim]"
    console.print(Panel(content, expand=False))


def page_table(page: ResultPage) -> Table:
    """Render a result page as a table."""
    table = Table(title="Feed Results", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Author", style="green")
    table.add_column("Type")
    table.add_column("Created", style="dim")
    table.add_column("Tags")
    table.add_column("Score", justify="right")
    for entry in page.items:
        table.add_row(
            entry.id,
            entry.author_id,
            entry.kind.value,
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            ", ".join(sorted(entry.tags)),
            f"{entry.engagement_score:g}",
        )
    return table

