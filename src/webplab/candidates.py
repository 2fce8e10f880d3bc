"""Candidate generation: the curated lattice of encoding configurations.

The generator is a pure function of source metadata, the optional frame
deduplication result and the mode flag.  It does not search exhaustively;
it crosses a hand-tuned table of strategy archetypes with a few parameter
levels and caps the result.

Quality-preserving mode walks the strategies from strictest to most
aggressive so that, all else equal, earlier candidates are the safer bets:

    pure-lossless -> near-lossless -> hybrid -> optimized-lossy

Size-preserving mode is a small quality x compression grid, all lossy.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

from .config import DEFAULT_OPTIMIZER_CONFIG, OptimizerConfig
from .meta import SourceMetadata

logger = logging.getLogger(__name__)


class EncodingStrategy(str, Enum):
    PURE_LOSSLESS = "pure-lossless"
    NEAR_LOSSLESS = "near-lossless"
    HYBRID = "hybrid"
    OPTIMIZED_LOSSY = "optimized-lossy"


@dataclass(frozen=True)
class EncodingConfig:
    """One point in the encoding search space."""

    quality: int
    compression_level: int
    scale_filter: str = "lanczos"
    dither: str = "none"
    pixel_format: str = "yuv420p"
    use_palette: bool = False
    lossless: bool = False
    # Lower values stay closer to exact reproduction
    near_lossless: int | None = None
    sharp_yuv: bool = False
    denoise: float | None = None
    remove_duplicates: bool = False
    delta_encoding: bool = False
    strategy: EncodingStrategy = EncodingStrategy.OPTIMIZED_LOSSY
    fps: float = 10.0
    frames_to_keep: tuple[int, ...] | None = None
    preset: str = "picture"

    def __post_init__(self) -> None:
        if not 0 <= self.quality <= 100:
            raise ValueError(f"quality must be in 0-100, got {self.quality}")
        if not 0 <= self.compression_level <= 6:
            raise ValueError(
                f"compression_level must be in 0-6, got {self.compression_level}"
            )
        if self.near_lossless is not None and not 0 <= self.near_lossless <= 100:
            raise ValueError(f"near_lossless must be in 0-100, got {self.near_lossless}")
        if self.fps <= 0:
            raise ValueError(f"fps must be positive, got {self.fps}")

    @property
    def label(self) -> str:
        parts = [self.strategy.value, f"q{self.quality}", f"c{self.compression_level}"]
        if self.near_lossless is not None:
            parts.append(f"nl{self.near_lossless}")
        if self.sharp_yuv:
            parts.append("sharp")
        if self.use_palette:
            parts.append("palette")
        return " ".join(parts)


@dataclass(frozen=True)
class _Archetype:
    strategy: EncodingStrategy
    quality: int
    compression_level: int
    lossless: bool = False
    near_lossless: int | None = None
    sharp_yuv: bool = False


# Empirically safe combinations for each strategy, strictest first
QUALITY_MODE_ARCHETYPES: tuple[_Archetype, ...] = (
    _Archetype(EncodingStrategy.PURE_LOSSLESS, 100, 6, lossless=True),
    _Archetype(EncodingStrategy.PURE_LOSSLESS, 75, 4, lossless=True),
    _Archetype(EncodingStrategy.NEAR_LOSSLESS, 100, 6, lossless=True, near_lossless=2),
    _Archetype(EncodingStrategy.NEAR_LOSSLESS, 95, 6, lossless=True, near_lossless=5),
    _Archetype(EncodingStrategy.HYBRID, 95, 6, sharp_yuv=True),
    _Archetype(EncodingStrategy.HYBRID, 92, 6, sharp_yuv=True),
    _Archetype(EncodingStrategy.OPTIMIZED_LOSSY, 90, 6),
    _Archetype(EncodingStrategy.OPTIMIZED_LOSSY, 85, 5),
)

# Scaling filter, dither and denoise per size-mode quality tier
_SIZE_MODE_TUNING: dict[int, tuple[str, str, float | None]] = {
    90: ("lanczos", "floyd_steinberg", None),
    80: ("lanczos", "bayer:bayer_scale=2", None),
    70: ("spline", "bayer:bayer_scale=3", 1.5),
}


def _size_mode_tuning(quality: int) -> tuple[str, str, float | None]:
    if quality in _SIZE_MODE_TUNING:
        return _SIZE_MODE_TUNING[quality]
    # Off-table qualities borrow the nearest tier
    nearest = min(_SIZE_MODE_TUNING, key=lambda q: (abs(q - quality), -q))
    return _SIZE_MODE_TUNING[nearest]


def pixel_format_for(metadata: SourceMetadata) -> str:
    return "yuva420p" if metadata.has_alpha else "yuv420p"


def _quality_mode_configs(metadata: SourceMetadata, fps: float) -> list[EncodingConfig]:
    pixel_format = pixel_format_for(metadata)
    return [
        EncodingConfig(
            quality=arch.quality,
            compression_level=arch.compression_level,
            scale_filter="lanczos",
            dither="none",
            pixel_format=pixel_format,
            use_palette=False,
            lossless=arch.lossless,
            near_lossless=arch.near_lossless,
            sharp_yuv=arch.sharp_yuv,
            strategy=arch.strategy,
            fps=fps,
        )
        for arch in QUALITY_MODE_ARCHETYPES
    ]


def _size_mode_configs(
    metadata: SourceMetadata, fps: float, config: OptimizerConfig
) -> list[EncodingConfig]:
    pixel_format = pixel_format_for(metadata)
    configs: list[EncodingConfig] = []
    for quality in config.SIZE_MODE_QUALITIES or []:
        scale_filter, dither, denoise = _size_mode_tuning(quality)
        for level in config.SIZE_MODE_COMPRESSION_LEVELS or []:
            configs.append(
                EncodingConfig(
                    quality=quality,
                    compression_level=level,
                    scale_filter=scale_filter,
                    dither=dither,
                    pixel_format=pixel_format,
                    use_palette=metadata.palette_usable,
                    lossless=False,
                    denoise=denoise,
                    strategy=EncodingStrategy.OPTIMIZED_LOSSY,
                    fps=fps,
                )
            )
    return configs[: config.SIZE_MODE_MAX_CANDIDATES]


def generate_candidates(
    metadata: SourceMetadata,
    frames_to_keep: Sequence[int] | None = None,
    lossless_preferred: bool = False,
    config: OptimizerConfig | None = None,
) -> list[EncodingConfig]:
    """Produce the ordered list of encoding configurations to try.

    Args:
        metadata: Source metadata
        frames_to_keep: Kept frame indices from deduplication, if it ran
        lossless_preferred: Quality-preserving mode when True, size-preserving otherwise
        config: Optimizer configuration

    Returns:
        Deterministic, non-empty list of at most ``MAX_CANDIDATES`` configs
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    fps = metadata.fps if metadata.fps > 0 else config.DEFAULT_FPS

    if lossless_preferred:
        configs = _quality_mode_configs(metadata, fps)
    else:
        configs = _size_mode_configs(metadata, fps, config)

    many_frames = metadata.frame_count > config.DUPLICATE_REMOVAL_FRAME_THRESHOLD
    kept: tuple[int, ...] | None = None
    if frames_to_keep is not None and 0 < len(frames_to_keep) < metadata.frame_count:
        kept = tuple(frames_to_keep)

    if many_frames or kept is not None:
        configs = [
            replace(
                c,
                remove_duplicates=many_frames or c.remove_duplicates,
                delta_encoding=many_frames or c.delta_encoding,
                frames_to_keep=kept,
            )
            for c in configs
        ]

    configs = configs[: config.MAX_CANDIDATES]
    logger.debug(
        f"Generated {len(configs)} candidate configs "
        f"({'quality' if lossless_preferred else 'size'}-preserving mode)"
    )
    return configs


@dataclass(frozen=True)
class Preset:
    quality: int
    compression_level: int
    scale_filter: str
    dither: str


# Single-shot conversion presets, no search involved
PRESETS: dict[str, Preset] = {
    "high-quality": Preset(90, 4, "lanczos", "floyd_steinberg"),
    "balanced": Preset(85, 5, "lanczos", "bayer:bayer_scale=2"),
    "compressed": Preset(75, 6, "spline", "bayer:bayer_scale=3"),
}

# Presets drop duplicate frames only below this kept/total ratio
PRESET_DEDUP_MAX_KEEP_RATIO = 0.9


def preset_config(
    name: str,
    metadata: SourceMetadata,
    frames_to_keep: Sequence[int] | None = None,
    fps: float | None = None,
) -> EncodingConfig:
    """Build the configuration for a named preset.

    Duplicates are only dropped when *frames_to_keep* keeps less than
    PRESET_DEDUP_MAX_KEEP_RATIO of the frames.  Dropping frames and palette
    reduction are exclusive: when frames are dropped the palette step is
    skipped.

    Raises:
        ValueError: If *name* is not a known preset
    """
    try:
        preset = PRESETS[name]
    except KeyError:
        raise ValueError(
            f"Unknown preset {name!r}, expected one of {sorted(PRESETS)}"
        ) from None

    kept: tuple[int, ...] | None = None
    if (
        frames_to_keep is not None
        and 0 < len(frames_to_keep) < metadata.frame_count * PRESET_DEDUP_MAX_KEEP_RATIO
    ):
        kept = tuple(frames_to_keep)

    return EncodingConfig(
        quality=preset.quality,
        compression_level=preset.compression_level,
        scale_filter=preset.scale_filter,
        dither=preset.dither,
        pixel_format=pixel_format_for(metadata),
        use_palette=kept is None,
        remove_duplicates=kept is not None,
        strategy=EncodingStrategy.OPTIMIZED_LOSSY,
        fps=fps or metadata.fps,
        frames_to_keep=kept,
    )
