"""Compare command: quality metrics between two images."""

from pathlib import Path

import click

from ..candidates import EncodingStrategy
from ..error_handling import MetricsError
from ..metrics import compare_buffers
from ..selection import meets_quality_criteria
from .utils import console, handle_generic_error, metrics_table, read_source


@click.command("compare")
@click.argument(
    "reference",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.argument(
    "candidate",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in EncodingStrategy]),
    help="Also check the candidate against this strategy's quality bar",
)
def compare(reference: Path, candidate: Path, strategy: str | None) -> None:
    """Compare the first frames of REFERENCE and CANDIDATE."""
    try:
        metrics = compare_buffers(read_source(reference), read_source(candidate))
    except MetricsError as e:
        handle_generic_error("Comparison", e)
        return

    console.print(metrics_table(metrics, title=f"📐 {reference.name} vs {candidate.name}"))

    if strategy:
        if meets_quality_criteria(strategy, metrics, relaxed=False):
            click.echo(f"✅ Meets the {strategy} quality bar")
        else:
            click.echo(f"❌ Below the {strategy} quality bar")
