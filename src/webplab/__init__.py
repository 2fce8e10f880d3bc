"""WebpLab - quality-guided GIF to animated WebP optimizer."""

__version__: str = "0.1.0"
__author__: str = "WebpLab Team"

from .error_handling import OptimizationCancelled, OptimizationFailed, WebpLabError  # noqa: E402
from .optimizer import (  # noqa: E402
    OptimizationResult,
    convert_basic,
    convert_with_preset,
    optimize,
)

__all__ = [
    "OptimizationCancelled",
    "OptimizationFailed",
    "OptimizationResult",
    "WebpLabError",
    "__version__",
    "convert_basic",
    "convert_with_preset",
    "optimize",
]
