"""Metadata extraction for animated GIF sources."""

import logging
import struct
from dataclasses import dataclass

from .config import DEFAULT_OPTIMIZER_CONFIG, OptimizerConfig
from .error_handling import EngineError, ValidationError
from .external_engines.codec import CodecService

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
GIF_SIGNATURE = b"GIF"

# PNG IHDR colour types carrying an alpha channel (grayscale+alpha, RGBA)
_PNG_ALPHA_COLOR_TYPES = {4, 6}

_SOURCE_NAME = "analyze_input.gif"
_ALPHA_PROBE_NAME = "alpha_test.png"
_FRAME_PATTERN = "frame_%04d.png"


@dataclass(frozen=True)
class SourceMetadata:
    """Descriptive metadata for one source animation."""

    frame_count: int
    fps: float
    width: int
    height: int
    has_alpha: bool
    palette_size: int
    file_size_bytes: int = 0

    @property
    def duration_s(self) -> float:
        return self.frame_count / self.fps if self.fps > 0 else 0.0

    @property
    def avg_bitrate_kbps(self) -> float:
        duration = self.duration_s
        if duration <= 0:
            return 0.0
        return self.file_size_bytes * 8 / duration / 1000

    @property
    def palette_usable(self) -> bool:
        """True when the source palette fits a single 256-colour table."""
        return 0 < self.palette_size <= 256


def png_has_alpha(data: bytes) -> bool:
    """Return True when a PNG's IHDR colour type carries alpha.

    Non-PNG data reports False.
    """
    if len(data) < 26 or not data.startswith(PNG_SIGNATURE):
        return False
    # signature(8) + length(4) + "IHDR"(4) + width(4) + height(4) + depth(1)
    return data[25] in _PNG_ALPHA_COLOR_TYPES


def png_dimensions(data: bytes) -> tuple[int, int]:
    """Return (width, height) from a PNG IHDR chunk.

    Raises:
        ValidationError: If *data* is not a PNG
    """
    if len(data) < 24 or not data.startswith(PNG_SIGNATURE):
        raise ValidationError("Frame snapshot is not a PNG image")
    width, height = struct.unpack(">II", data[16:24])
    return width, height


def read_palette_size(buffer: bytes) -> int:
    """Return the global colour table size of a GIF, 0 when absent.

    The logical screen descriptor's packed byte (offset 10) holds the
    global-colour-table flag (bit 7) and a size exponent (bits 0-2); the
    table holds ``2 ** (exponent + 1)`` entries.

    Raises:
        ValidationError: If *buffer* is not a GIF
    """
    if len(buffer) < 13 or not buffer.startswith(GIF_SIGNATURE):
        raise ValidationError("Not a valid GIF file")

    packed = buffer[10]
    if not packed & 0x80:
        return 0
    return 2 ** ((packed & 0x07) + 1)


def count_frame_snapshots(codec: CodecService, max_frames: int) -> int:
    """Count readable ``frame_NNNN.png`` snapshots, stopping at the first gap."""
    frame_count = 0
    for i in range(1, max_frames + 1):
        try:
            codec.read_file(_FRAME_PATTERN % i)
        except EngineError:
            # end of stream
            break
        frame_count += 1
    return frame_count


def extract_source_metadata(
    buffer: bytes,
    codec: CodecService,
    config: OptimizerConfig | None = None,
) -> SourceMetadata:
    """Extract metadata from a GIF buffer using the codec service.

    Args:
        buffer: Raw source file contents
        codec: Codec service used to decode lossless frame snapshots
        config: Optimizer configuration (frame cap, default fps)

    Returns:
        SourceMetadata for the source

    Raises:
        ValidationError: If the buffer is not a GIF or no frame decodes
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    max_frames = config.MAX_FRAME_COUNT

    palette_size = read_palette_size(buffer)

    frame_names = [_FRAME_PATTERN % i for i in range(1, max_frames + 1)]
    with codec.scratch(_ALPHA_PROBE_NAME, *frame_names) as space:
        space.write(_SOURCE_NAME, buffer)

        try:
            codec.exec(
                ["-i", _SOURCE_NAME, "-vframes", "1", "-f", "image2", _ALPHA_PROBE_NAME]
            )
            has_alpha = png_has_alpha(codec.read_file(_ALPHA_PROBE_NAME))
        except EngineError as e:
            raise ValidationError(
                "Unable to decode the first frame of the source", cause=e
            ) from e

        try:
            codec.exec(
                [
                    "-i",
                    _SOURCE_NAME,
                    "-vsync",
                    "0",
                    "-frames:v",
                    str(max_frames),
                    _FRAME_PATTERN,
                ]
            )
        except EngineError as e:
            # Partial extraction still leaves countable snapshots behind
            logger.warning(f"Frame extraction reported an error: {e}")

        frame_count = count_frame_snapshots(codec, max_frames)
        if frame_count == 0:
            raise ValidationError("No decodable frames in source")

        width, height = png_dimensions(codec.read_file(frame_names[0]))

    metadata = SourceMetadata(
        frame_count=frame_count,
        fps=config.DEFAULT_FPS,
        width=width,
        height=height,
        has_alpha=has_alpha,
        palette_size=palette_size,
        file_size_bytes=len(buffer),
    )
    logger.info(
        f"Source: {width}x{height}, {frame_count} frames, "
        f"alpha={has_alpha}, palette={palette_size}"
    )
    return metadata
