"""
Feed Commands

`compile` shows how a block list resolves into an expression tree;
`evaluate` runs it against a fixture corpus for one viewer.
"""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer

from feedengine.cli.error_handling import handle_error
from feedengine.cli.utils import console, load_blocks, load_fixture, page_table, print_header
from feedengine.compiler.compiler import FilterTreeCompiler
from feedengine.core.config import EngineConfig
from feedengine.core.exceptions import FeedEngineError
from feedengine.engine.evaluator import EvaluationEngine


def _config(ctx: typer.Context) -> EngineConfig:
    return ctx.obj["config"] if ctx.obj and "config" in ctx.obj else EngineConfig()


def compile_command(
    ctx: typer.Context,
    blocks_file: Annotated[Path, typer.Argument(help="YAML or JSON file with filter blocks")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the compiled tree as JSON")] = False,
):
    """Compile a block list and print the precedence-resolved tree."""
    config = _config(ctx)
    blocks = load_blocks(blocks_file)
    try:
        result = FilterTreeCompiler(config.compiler).compile(blocks)
    except FeedEngineError as e:
        handle_error(e)
        return

    expression = result.expression
    if as_json:
        console.print_json(json.dumps(expression.to_dict()))
        return

    print_header("Compiled feed", f"{expression.block_count} block(s), fingerprint {expression.fingerprint}")
    console.print(expression.describe(), markup=False, highlight=False)
    console.print(f"\nEstimated cost: [cyan]{expression.cost:g}[/cyan]")
    if expression.is_following_scope:
        console.print("[dim]No blocks: the feed shows everyone the viewer follows.[/dim]")
    for notice in result.notices:
        console.print(f"[yellow]⚠ {notice}[/yellow]")


def evaluate_command(
    ctx: typer.Context,
    blocks_file: Annotated[Path, typer.Argument(help="YAML or JSON file with filter blocks")],
    corpus: Annotated[Path, typer.Option("--corpus", help="Fixture with posts, follows and blocks")],
    viewer: Annotated[str, typer.Option("--viewer", help="User the feed is evaluated for")],
    limit: Annotated[Optional[int], typer.Option("--limit", "-l", help="Page size")] = None,
    cursor: Annotated[Optional[str], typer.Option("--cursor", help="Cursor from a previous page")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the page as JSON")] = False,
):
    """Evaluate a block list against a fixture corpus."""
    config = _config(ctx)
    page_size = limit if limit is not None else config.evaluation.default_page_size
    if page_size < 1 or page_size > config.evaluation.max_page_size:
        raise typer.BadParameter(
            f"--limit must be between 1 and {config.evaluation.max_page_size}", param_hint="--limit"
        )

    blocks = load_blocks(blocks_file)
    content, social = load_fixture(corpus)
    engine = EvaluationEngine(content, social, default_budget=config.page_budget_seconds())
    try:
        compiled = FilterTreeCompiler(config.compiler).compile(blocks, social=social)
        page = engine.evaluate(compiled.expression, viewer, cursor=cursor, limit=page_size)
    except FeedEngineError as e:
        handle_error(e)
        return

    if as_json:
        console.print_json(json.dumps(page.to_dict()))
        return

    for notice in compiled.notices:
        console.print(f"[yellow]⚠ {notice}[/yellow]")
    if page.items:
        console.print(page_table(page))
    else:
        console.print("[dim]No entries match this feed.[/dim]")
    if page.degraded:
        console.print("[yellow]Time budget ran out; this page may be incomplete.[/yellow]")
    console.print(f"Scanned {page.scanned} candidate(s)")
    if page.next_cursor:
        console.print(f"Next cursor: [cyan]{page.next_cursor}[/cyan]", highlight=False)
