"""Analyze command: source metadata and frame deduplication report."""

from pathlib import Path

import click
from rich.table import Table

from ..config import DedupConfig
from ..error_handling import WebpLabError
from ..external_engines import FFmpegCodec
from ..frame_dedup import analyze_frames
from ..io import save_json, setup_logging
from ..meta import extract_source_metadata
from .utils import console, display_common_header, handle_generic_error, read_source


@click.command("analyze")
@click.argument(
    "source",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--threshold",
    "-t",
    type=int,
    default=None,
    help="Hamming distance at or below which frames count as duplicates (default: 3)",
)
@click.option(
    "--no-metadata",
    is_flag=True,
    help="Skip the FFmpeg-based metadata pass (frame analysis only)",
)
@click.option(
    "--json",
    "output_json",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write the analysis as JSON",
)
def analyze(
    source: Path, threshold: int | None, no_metadata: bool, output_json: Path | None
) -> None:
    """Report metadata and duplicate frames of SOURCE (GIF)."""
    setup_logging(log_level="WARNING")
    data = read_source(source)
    display_common_header(f"WebpLab analyze: {source.name}")

    dedup_config = DedupConfig(SIMILARITY_THRESHOLD=threshold) if threshold is not None else None

    try:
        analysis = analyze_frames(data, config=dedup_config)
        metadata = None
        if not no_metadata:
            with FFmpegCodec() as codec:
                metadata = extract_source_metadata(data, codec)
    except (WebpLabError, RuntimeError, ValueError) as e:
        handle_generic_error("Analysis", e)
        return

    report: dict = {
        "source": str(source),
        "frames": {
            "total_frames": analysis.total_frames,
            "unique_frames": analysis.unique_frames,
            "duplicate_frames": analysis.duplicate_frames,
            "compression_ratio": analysis.compression_ratio,
            "frames_to_keep": list(analysis.frames_to_keep),
            "avg_delay_ms": analysis.avg_delay_ms,
            "fps": analysis.fps,
            "width": analysis.width,
            "height": analysis.height,
            "has_alpha": analysis.has_alpha,
        },
    }

    table = Table(title="🔍 Frame Analysis", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")
    table.add_row("Dimensions", f"{analysis.width}x{analysis.height}")
    table.add_row("Frames", str(analysis.total_frames))
    table.add_row("Unique frames", str(analysis.unique_frames))
    table.add_row("Duplicates", str(analysis.duplicate_frames))
    table.add_row("Keep ratio", f"{analysis.compression_ratio:.2%}")
    table.add_row("Average delay", f"{analysis.avg_delay_ms:.1f} ms ({analysis.fps:g} fps)")
    table.add_row("Alpha", "yes" if analysis.has_alpha else "no")
    console.print(table)

    if metadata is not None:
        report["metadata"] = {
            "frame_count": metadata.frame_count,
            "width": metadata.width,
            "height": metadata.height,
            "has_alpha": metadata.has_alpha,
            "palette_size": metadata.palette_size,
            "file_size_bytes": metadata.file_size_bytes,
        }
        meta_table = Table(title="📦 Container", show_header=True, header_style="bold magenta")
        meta_table.add_column("Field", style="cyan", no_wrap=True)
        meta_table.add_column("Value", justify="right")
        meta_table.add_row("Decoded frames", str(metadata.frame_count))
        meta_table.add_row("Palette size", str(metadata.palette_size))
        meta_table.add_row("File size", f"{metadata.file_size_bytes / 1024:.1f} KB")
        console.print(meta_table)

    if output_json:
        save_json(report, output_json)
        click.echo(f"📝 Report: {output_json}")
