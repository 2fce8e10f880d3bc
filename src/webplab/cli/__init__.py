"""CLI module for WebpLab commands.

Each command lives in its own module; this package assembles them under the
``webplab`` group.
"""

import click

from .. import __version__
from .analyze_cmd import analyze
from .compare_cmd import compare
from .deps_cmd import deps
from .optimize_cmd import optimize_cmd


@click.group()
@click.version_option(version=__version__, prog_name="webplab")
def main() -> None:
    """🎞️ WebpLab: quality-guided GIF to animated WebP optimizer."""
    pass


main.add_command(optimize_cmd)
main.add_command(analyze)
main.add_command(compare)
main.add_command(deps)

__all__ = [
    "analyze",
    "compare",
    "deps",
    "main",
    "optimize_cmd",
]
