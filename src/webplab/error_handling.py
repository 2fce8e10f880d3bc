"""Exception taxonomy and logging helpers shared across WebpLab.

Taxonomy:
    ValidationError        malformed source container or unreadable frames
    EngineError            a single codec invocation failed
    MetricsError           a candidate could not be compared to the reference
    OptimizationFailed     terminal failure surfaced to the caller

Per-candidate errors (EngineError, MetricsError) are logged and the candidate
is dropped; only ValidationError and OptimizationFailed reach the caller of
``optimize``.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from enum import Enum

_module_logger = logging.getLogger(__name__)


class ErrorLevel(Enum):
    """Log level used when reporting a handled error."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class WebpLabError(Exception):
    """Root of every error raised by WebpLab.

    ``cause`` keeps the lower-level exception and ``context`` any structured
    details worth logging (command line, candidate order, ...).
    """

    def __init__(
        self, message: str, cause: Exception | None = None, context: dict | None = None
    ):
        super().__init__(message)
        self.cause = cause
        self.context = dict(context) if context else {}

    def __str__(self) -> str:
        text = super().__str__()
        return f"{text} (caused by: {self.cause})" if self.cause else text


class ValidationError(WebpLabError):
    """The source buffer is malformed or none of its frames decode."""


class EngineError(WebpLabError):
    """A codec invocation failed or produced no output."""


class MetricsError(WebpLabError):
    """A buffer could not be decoded or compared."""


class DimensionMismatchError(MetricsError):
    """Two pixel grids being compared differ in size."""


class OptimizationFailed(WebpLabError):
    """No usable output could be produced."""


class OptimizationCancelled(OptimizationFailed):
    """The caller abandoned an in-flight optimization."""


def _format_context(context: Mapping | None) -> str:
    if not context:
        return ""
    pairs = ", ".join(f"{key}={value}" for key, value in context.items())
    return f" (context: {pairs})"


def handle_error(
    error: Exception,
    operation: str,
    error_type: type[WebpLabError] = EngineError,
    level: ErrorLevel = ErrorLevel.ERROR,
    context: dict | None = None,
    logger: logging.Logger | None = None,
    reraise: bool = True,
) -> WebpLabError | None:
    """Log *error* and convert it into a WebpLab exception.

    Args:
        error: The exception that was caught
        operation: Short verb phrase, e.g. ``"decode candidate"``
        error_type: WebpLabError subclass to convert into
        level: Severity to log at
        context: Extra details attached to the new exception
        logger: Logger to report through (this module's when None)
        reraise: Raise the converted error instead of returning it

    Returns:
        The converted error when *reraise* is False
    """
    log = logger or _module_logger

    details = {**(context or {}), "original_error_type": type(error).__name__}
    converted = error_type(
        f"Failed to {operation}: {error}",
        cause=error,
        context={**details, "operation": operation},
    )

    getattr(log, level.value)(
        f"🚨 {operation.capitalize()} failed: {error}{_format_context(details)}"
    )
    if level in (ErrorLevel.ERROR, ErrorLevel.CRITICAL):
        log.debug(f"Traceback for {operation}:\n{traceback.format_exc()}")

    if reraise:
        raise converted from error
    return converted


@contextmanager
def error_context(
    operation: str,
    error_type: type[WebpLabError] = EngineError,
    level: ErrorLevel = ErrorLevel.ERROR,
    context: dict | None = None,
    logger: logging.Logger | None = None,
) -> Iterator[None]:
    """Convert foreign exceptions raised in the block via :func:`handle_error`.

    WebpLab errors propagate unchanged.

        with error_context("parse source animation", ValidationError):
            img = Image.open(io.BytesIO(buffer))
    """
    try:
        yield
    except WebpLabError:
        raise
    except Exception as e:
        handle_error(e, operation, error_type, level, context, logger)


def log_warning_with_context(
    message: str, context: dict | None = None, logger: logging.Logger | None = None
) -> None:
    (logger or _module_logger).warning(f"⚠️  {message}{_format_context(context)}")


def log_info_with_context(
    message: str, context: dict | None = None, logger: logging.Logger | None = None
) -> None:
    (logger or _module_logger).info(f"ℹ️  {message}{_format_context(context)}")
