from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..error_handling import EngineError
from ..system_tools import discover_tool
from .codec import CodecService
from .common import run_command

logger = logging.getLogger(__name__)

__all__ = [
    "FFmpegCodec",
]


class FFmpegCodec(CodecService):
    """Codec service backed by the ``ffmpeg`` binary.

    Scratch names map to files in a private temporary directory and every
    invocation runs with that directory as its working directory, so the
    argument lists issued by the optimizer only ever mention bare names.
    Call :meth:`close` (or use the instance as a context manager) to remove
    the directory.
    """

    def __init__(self, engine_config: EngineConfig | None = None) -> None:
        self.engine_config = engine_config or DEFAULT_ENGINE_CONFIG
        info = discover_tool("ffmpeg", self.engine_config)
        info.require()
        self.binary = info.name
        self.version = info.version
        self.workdir = Path(tempfile.mkdtemp(prefix="webplab_"))
        logger.debug(f"FFmpeg {self.version or 'unknown'} scratch dir: {self.workdir}")

    def __enter__(self) -> FFmpegCodec:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        shutil.rmtree(self.workdir, ignore_errors=True)

    def _path(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise EngineError(f"Scratch names must be bare file names, got {name!r}")
        return self.workdir / name

    def write_file(self, name: str, data: bytes) -> None:
        self._path(name).write_bytes(data)

    def read_file(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except OSError as e:
            raise EngineError(f"Scratch file not found: {name}", cause=e) from e

    def delete_file(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def exec(self, args: list[str]) -> dict[str, Any]:
        cmd = [self.binary, "-y", "-v", "error", "-nostdin", *args]
        output_path = self.workdir / args[-1] if args else None
        return run_command(
            cmd,
            engine="ffmpeg",
            output_path=output_path,
            cwd=self.workdir,
            timeout=self.engine_config.COMMAND_TIMEOUT,
        )
