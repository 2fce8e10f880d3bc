"""File output for optimized animations and JSON run reports, plus logging setup."""

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import IO, Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_dir: Path | None = None, log_level: str = "INFO") -> logging.Logger:
    """Route WebpLab logging to stderr and, optionally, a timestamped file.

    Args:
        log_dir: Directory for ``webplab_<timestamp>.log``; stderr only when None
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The ``webplab`` package logger
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        handlers.append(logging.FileHandler(log_dir / f"webplab_{stamp}.log"))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("webplab")


@contextmanager
def atomic_write(target_path: Path, mode: str = "w") -> Iterator[IO[Any]]:
    """Write to a sibling temp file and rename it over *target_path* on success.

    A failure inside the block removes the temp file and leaves any existing
    *target_path* untouched.

        with atomic_write(Path("out.webp"), "wb") as f:
            f.write(result.buffer)
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=target_path.parent, prefix=f".{target_path.name}.", suffix=".tmp"
    )
    encoding = None if "b" in mode else "utf-8"
    try:
        with os.fdopen(fd, mode, encoding=encoding) as handle:
            yield handle
        os.replace(temp_name, target_path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def write_bytes_atomic(target_path: Path, data: bytes) -> None:
    with atomic_write(target_path, "wb") as f:
        f.write(data)


def save_json(data: dict[str, Any], output_path: Path) -> None:
    """Save a run report as indented JSON; non-JSON values go through ``str``."""
    with atomic_write(output_path) as f:
        json.dump(data, f, indent=2, default=str)


def load_json(input_path: Path) -> dict[str, Any]:
    """Load a JSON report.

    Raises:
        FileNotFoundError: If the file does not exist
        json.JSONDecodeError: If the file is not valid JSON
    """
    with open(input_path, encoding="utf-8") as f:
        return json.load(f)
