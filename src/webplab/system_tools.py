"""Discovery of the external codec binary.

WebpLab needs exactly one binary, FFmpeg built with libwebp.  Checking for it
up front turns a missing install into one clear message rather than a
failure per candidate.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from shutil import which

from .config import DEFAULT_ENGINE_CONFIG, EngineConfig

# tool key -> (EngineConfig attribute, version banner regex)
_KNOWN_TOOLS: dict[str, tuple[str, str]] = {
    "ffmpeg": ("FFMPEG_PATH", r"ffmpeg version (\S+)"),
}


@dataclass(frozen=True, slots=True)
class ToolInfo:
    """Result of looking up one binary."""

    name: str
    available: bool
    version: str | None = None

    def require(self) -> None:
        """Raise *RuntimeError* when the binary is missing."""
        if self.available:
            return
        raise RuntimeError(
            f"'{self.name}' was not found on PATH.\n"
            "Install FFmpeg with libwebp support or set WEBPLAB_FFMPEG_PATH."
        )


def probe_version(binary: str, banner_regex: str) -> str | None:
    """Run ``<binary> -version`` and pull the version out of its banner."""
    try:
        completed = subprocess.run(
            [binary, "-version"], capture_output=True, text=True, timeout=5
        )
    except (OSError, subprocess.SubprocessError):
        return None

    for stream in (completed.stdout, completed.stderr):
        found = re.search(banner_regex, stream or "")
        if found:
            return found.group(1)
    return None


def discover_tool(tool_key: str, engine_config: EngineConfig | None = None) -> ToolInfo:
    """Locate *tool_key* using the path configured in *engine_config*.

    Args:
        tool_key: Tool identifier (only ``ffmpeg`` today)
        engine_config: Engine configuration, DEFAULT_ENGINE_CONFIG when None

    Raises:
        ValueError: If *tool_key* is not a known tool
    """
    try:
        config_attr, banner_regex = _KNOWN_TOOLS[tool_key]
    except KeyError:
        raise ValueError(f"Unknown tool: {tool_key}") from None

    configured = getattr(engine_config or DEFAULT_ENGINE_CONFIG, config_attr) or tool_key
    if which(configured) is None:
        return ToolInfo(name=configured, available=False)

    return ToolInfo(
        name=configured, available=True, version=probe_version(configured, banner_regex)
    )
