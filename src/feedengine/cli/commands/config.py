"""
Config Command

Create, inspect and describe engine configuration files.
"""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
import yaml
from rich.table import Table

from feedengine.cli.utils import console, load_config
from feedengine.cli.error_handling import handle_error
from feedengine.core.config import ConfigManager
from feedengine.core.exceptions import ConfigurationError

app = typer.Typer(
    name="config",
    help="Manage engine configuration",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


@app.command("init")
def config_init(
    path: Annotated[Path, typer.Argument(help="Where to write the configuration file")] = Path("feedengine.yaml"),
    profile: Annotated[str, typer.Option("--profile", "-p", help="default, persistent or high-traffic")] = "default",
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite an existing file")] = False,
):
    """Write an example configuration file."""
    if profile not in {"default", "persistent", "high-traffic"}:
        raise typer.BadParameter("Profile must be default, persistent or high-traffic", param_hint="--profile")
    if path.exists() and not force:
        console.print(f"[red]{path} already exists[/red] (use --force to overwrite)")
        raise typer.Exit(code=1)
    ConfigManager().create_example_config(path, profile=profile)
    console.print(f"[green]✓[/green] Wrote {profile} configuration to {path}")


@app.command("show")
def config_show(
    ctx: typer.Context,
    as_yaml: Annotated[bool, typer.Option("--yaml", help="Print the full configuration as YAML")] = False,
):
    """Show the effective configuration."""
    config = ctx.obj.get("config") if ctx.obj else None
    if config is None:
        try:
            config = load_config()
        except ConfigurationError as e:
            handle_error(e)
            return

    data = config.model_dump(mode="json")
    if as_yaml:
        console.print(yaml.dump(data, default_flow_style=False, indent=2), markup=False, highlight=False)
        return

    table = Table(title="Effective Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for section, values in data.items():
        if isinstance(values, dict):
            for key, value in values.items():
                table.add_row(f"{section}.{key}", str(value))
        else:
            table.add_row(section, str(values))
    console.print(table)


@app.command("schema")
def config_schema(
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write the schema to this file")] = None,
):
    """Print the JSON schema of the configuration file."""
    schema = ConfigManager().generate_schema(output)
    if output:
        console.print(f"[green]✓[/green] Wrote schema to {output}")
    else:
        console.print_json(json.dumps(schema))
