"""Dependency check for the external codec."""

import json

import click
from rich.panel import Panel
from rich.table import Table

from ..system_tools import discover_tool
from .utils import console


@click.command("deps")
@click.option("--json", "output_json", is_flag=True, help="Output results in JSON format")
def deps(output_json: bool) -> None:
    """Check that FFmpeg (with libwebp) is available."""
    info = discover_tool("ffmpeg")

    if output_json:
        click.echo(
            json.dumps(
                {"ffmpeg": {"path": info.name, "available": info.available, "version": info.version}},
                indent=2,
            )
        )
        return

    table = Table(title="📦 External Tools", show_header=True, header_style="bold magenta")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Details", style="dim")

    status = "[green]✅ Available[/green]" if info.available else "[red]❌ Missing[/red]"
    details = f"{info.name} ({info.version or 'unknown version'})" if info.available else info.name
    table.add_row("FFmpeg", status, details)
    console.print(table)

    if not info.available:
        console.print(
            Panel(
                "⚠️  [yellow]FFmpeg was not found.[/yellow]\n"
                "Install FFmpeg built with libwebp, or point WEBPLAB_FFMPEG_PATH at it.",
                title="System Status",
                border_style="yellow",
            )
        )
