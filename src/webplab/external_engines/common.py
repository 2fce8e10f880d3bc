"""Subprocess helper shared by codec implementations."""

from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Any

from ..error_handling import EngineError

__all__ = [
    "run_command",
]


def _output_kilobytes(output_path: Path | None) -> float:
    if output_path is None or not output_path.is_file():
        # Pattern outputs (frame_%04d.png) have no single file to measure
        return 0.0
    return output_path.stat().st_size / 1024


def run_command(
    cmd: list[str],
    *,
    engine: str,
    output_path: Path | None = None,
    cwd: Path | None = None,
    timeout: int | None = 60,
) -> dict[str, Any]:
    """Run *cmd* to completion and describe the invocation.

    Parameters
    ----------
    cmd
        Argument vector; never passed through a shell.
    engine
        Name used in error messages and the returned metadata.
    output_path
        File the command is expected to write, measured afterwards.
    cwd
        Working directory of the child process.
    timeout
        Seconds before the child is killed; ``None`` waits forever.

    Returns
    -------
    dict
        ``render_ms``, ``engine``, ``command`` and ``kilobytes``.

    Raises
    ------
    EngineError
        On timeout, launch failure or a non-zero exit status.
    """
    command_line = " ".join(cmd)
    started = time.perf_counter()
    try:
        completed = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout, cwd=cwd
        )
    except subprocess.TimeoutExpired as e:
        raise EngineError(
            f"{engine} command timed out after {timeout}s",
            cause=e,
            context={"command": command_line},
        ) from e
    except OSError as e:
        raise EngineError(
            f"{engine} command could not be started",
            cause=e,
            context={"command": command_line},
        ) from e
    elapsed_ms = int((time.perf_counter() - started) * 1000)

    if completed.returncode != 0:
        raise EngineError(
            f"{engine} command failed (exit {completed.returncode}):\n"
            f"{completed.stderr.strip()}",
            context={"command": command_line, "exit_code": completed.returncode},
        )

    return {
        "render_ms": elapsed_ms,
        "engine": engine,
        "command": command_line,
        "kilobytes": _output_kilobytes(output_path),
    }
