"""Shared utilities for CLI commands."""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ..metrics import QualityMetrics

console = Console()


def handle_generic_error(command_name: str, error: Exception) -> None:
    """Handle generic command errors with consistent formatting."""
    click.echo(f"❌ {command_name} failed: {error}", err=True)
    sys.exit(1)


def handle_keyboard_interrupt(command_name: str) -> None:
    """Handle keyboard interrupt with consistent formatting."""
    click.echo(f"\n⏹️  {command_name} interrupted by user", err=True)
    sys.exit(1)


def read_source(path: Path) -> bytes:
    """Read an input file, exiting with a readable message on failure."""
    try:
        return path.read_bytes()
    except OSError as e:
        click.echo(f"❌ Cannot read {path}: {e}", err=True)
        sys.exit(1)


def default_output_path(source: Path) -> Path:
    return source.with_name(f"{source.stem}_optimized.webp")


def display_common_header(title: str) -> None:
    click.echo(f"🎞️  {title}")


def format_metric(value: float, digits: int = 4) -> str:
    if value == float("inf"):
        return "∞"
    return f"{value:.{digits}f}"


def metrics_table(metrics: QualityMetrics, title: str = "📐 Quality Metrics") -> Table:
    """Render quality metrics as a two-column rich table."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")
    table.add_column("Better", style="dim")

    table.add_row("SSIM", format_metric(metrics.ssim), "higher (0-1)")
    table.add_row("PSNR (dB)", format_metric(metrics.psnr, 2), "higher")
    table.add_row("ΔE", format_metric(metrics.delta_e, 3), "lower")
    table.add_row("Edge preservation", format_metric(metrics.edge_preservation), "higher (0-1)")
    return table
