"""Optimize command: search for the best WebP rendition of a GIF."""

import sys
from pathlib import Path

import click
from rich.table import Table

from ..candidates import PRESETS
from ..error_handling import OptimizationFailed, WebpLabError
from ..frame_dedup import analyze_frames
from ..io import save_json, setup_logging, write_bytes_atomic
from ..optimizer import convert_with_preset, optimize
from ..progress import ProgressUpdate
from .utils import (
    console,
    default_output_path,
    display_common_header,
    handle_generic_error,
    handle_keyboard_interrupt,
    metrics_table,
    read_source,
)


def _print_progress(update: ProgressUpdate) -> None:
    click.echo(f"   [{update.percent:5.1f}%] {update.message}")


@click.command("optimize")
@click.argument(
    "source",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output WebP path (default: <source>_optimized.webp)",
)
@click.option(
    "--lossless/--size",
    "lossless_preferred",
    default=False,
    help="Quality-preserving strategy search instead of the size-preserving grid",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Skip the search and convert with a fixed preset",
)
@click.option(
    "--dedup/--no-dedup",
    default=True,
    help="Drop near-duplicate frames before encoding (default: on)",
)
@click.option(
    "--workers",
    "-j",
    type=int,
    default=None,
    help="Parallel candidate encodes (default: WEBPLAB_MAX_WORKERS or 1)",
)
@click.option(
    "--report",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a JSON report of the run",
)
@click.option("--verbose", "-v", is_flag=True, help="Show progress and debug logging")
def optimize_cmd(
    source: Path,
    output: Path | None,
    lossless_preferred: bool,
    preset: str | None,
    dedup: bool,
    workers: int | None,
    report: Path | None,
    verbose: bool,
) -> None:
    """Convert SOURCE (GIF) to an optimized animated WebP."""
    setup_logging(log_level="DEBUG" if verbose else "WARNING")
    output = output or default_output_path(source)
    data = read_source(source)
    progress = _print_progress if verbose else None

    display_common_header(f"WebpLab optimize: {source.name}")

    try:
        if preset:
            analysis = analyze_frames(data) if dedup else None
            conversion = convert_with_preset(
                data, preset, analysis=analysis, progress=progress
            )
            write_bytes_atomic(output, conversion.buffer)
            click.echo(
                f"✅ {preset} preset: {conversion.stats.compressed_size_kb:.1f}KB "
                f"({conversion.stats.savings_percent:.1f}% smaller)"
            )
            click.echo(f"💾 Saved to: {output}")
            return

        result = optimize(
            data,
            lossless_preferred=lossless_preferred,
            progress=progress,
            deduplicate=dedup,
            max_workers=workers,
        )
    except KeyboardInterrupt:
        handle_keyboard_interrupt("Optimization")
        return
    except OptimizationFailed as e:
        click.echo(f"❌ No usable encoding found: {e}", err=True)
        sys.exit(1)
    except (WebpLabError, RuntimeError, ValueError) as e:
        handle_generic_error("Optimization", e)
        return

    write_bytes_atomic(output, result.buffer)

    summary = Table(title="📦 Result", show_header=True, header_style="bold magenta")
    summary.add_column("Field", style="cyan", no_wrap=True)
    summary.add_column("Value", justify="right")
    summary.add_row("Strategy", result.config.label)
    summary.add_row("Original", f"{result.stats.original_size_kb:.1f} KB")
    summary.add_row("Optimized", f"{result.stats.compressed_size_kb:.1f} KB")
    summary.add_row("Savings", f"{result.stats.savings_percent:.1f}%")
    summary.add_row("Bits per pixel", f"{result.stats.bits_per_pixel:.3f}")
    summary.add_row(
        "Candidates", f"{result.candidates_succeeded}/{result.candidates_tried} encoded"
    )
    if result.analysis is not None:
        summary.add_row(
            "Frames kept",
            f"{result.analysis.unique_frames}/{result.analysis.total_frames}",
        )
    console.print(summary)
    console.print(metrics_table(result.metrics))

    if result.used_fallback:
        click.echo("⚠️  No candidate met its quality bar; kept the highest-quality encode")
    if result.stats.is_larger_than_original:
        click.echo("⚠️  Output is larger than the source")

    click.echo(f"💾 Saved to: {output}")
    if report:
        save_json(result.to_dict(), report)
        click.echo(f"📝 Report: {report}")
