"""Configuration settings for WebpLab."""

import logging
import multiprocessing as mp
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class QualityThreshold:
    """Acceptance bar for one encoding strategy.

    ``None`` disables the corresponding check.
    """

    min_ssim: float
    max_delta_e: float | None = None
    min_edge_preservation: float | None = None


@dataclass
class OptimizerConfig:
    """Configuration for the candidate search and selection policy."""

    # Upper bound on generated configurations
    MAX_CANDIDATES: int = 10

    # Size-preserving mode lattice (quality x compression, capped)
    SIZE_MODE_QUALITIES: list[int] | None = None
    SIZE_MODE_COMPRESSION_LEVELS: list[int] | None = None
    SIZE_MODE_MAX_CANDIDATES: int = 6

    # Frame counts above this enable duplicate removal + delta encoding
    DUPLICATE_REMOVAL_FRAME_THRESHOLD: int = 20

    # Frame counting safety cap in the metadata analyzer
    MAX_FRAME_COUNT: int = 1000

    # GIF stores per-frame delays, not a frame rate
    DEFAULT_FPS: float = 10.0

    # Strategy thresholds (keys are EncodingStrategy values)
    STRATEGY_THRESHOLDS: dict[str, QualityThreshold] | None = None

    # Global fallback bar that qualifies any strategy
    RELAXED_MIN_SSIM: float = 0.92

    # Final score weights (quality, size)
    DEFAULT_QUALITY_WEIGHT: float = 0.7
    DEFAULT_SIZE_WEIGHT: float = 0.3
    LOSSLESS_QUALITY_WEIGHT: float = 0.5
    LOSSLESS_SIZE_WEIGHT: float = 0.5

    # Weights inside the quality score (must sum to 1.0)
    SSIM_SCORE_WEIGHT: float = 0.4
    DELTA_E_SCORE_WEIGHT: float = 0.3
    EDGE_SCORE_WEIGHT: float = 0.3

    # deltaE at or above this contributes nothing to the quality score
    DELTA_E_SCORE_CEILING: float = 10.0

    def __post_init__(self) -> None:
        if self.SIZE_MODE_QUALITIES is None:
            self.SIZE_MODE_QUALITIES = [90, 80, 70]

        if self.SIZE_MODE_COMPRESSION_LEVELS is None:
            self.SIZE_MODE_COMPRESSION_LEVELS = [6, 5, 4]

        if self.STRATEGY_THRESHOLDS is None:
            self.STRATEGY_THRESHOLDS = {
                "pure-lossless": QualityThreshold(min_ssim=0.99),
                "near-lossless": QualityThreshold(0.97, 3.0, 0.93),
                "hybrid": QualityThreshold(0.96, 4.0, 0.92),
                "optimized-lossy": QualityThreshold(0.95, 5.0, 0.90),
            }

        if self.MAX_CANDIDATES <= 0:
            raise ValueError(f"MAX_CANDIDATES must be positive, got {self.MAX_CANDIDATES}")
        if self.SIZE_MODE_MAX_CANDIDATES <= 0:
            raise ValueError("SIZE_MODE_MAX_CANDIDATES must be positive")
        if not self.SIZE_MODE_QUALITIES or not self.SIZE_MODE_COMPRESSION_LEVELS:
            raise ValueError("Size mode lattice must not be empty")

        for quality in self.SIZE_MODE_QUALITIES:
            if not 0 <= quality <= 100:
                raise ValueError(f"Quality levels must be in 0-100, got {quality}")
        for level in self.SIZE_MODE_COMPRESSION_LEVELS:
            if not 0 <= level <= 6:
                raise ValueError(f"Compression levels must be in 0-6, got {level}")

        if self.MAX_FRAME_COUNT <= 0:
            raise ValueError("MAX_FRAME_COUNT must be positive")
        if self.DEFAULT_FPS <= 0:
            raise ValueError("DEFAULT_FPS must be positive")
        if not 0.0 <= self.RELAXED_MIN_SSIM <= 1.0:
            raise ValueError("RELAXED_MIN_SSIM must be between 0.0 and 1.0")
        if self.DELTA_E_SCORE_CEILING <= 0:
            raise ValueError("DELTA_E_SCORE_CEILING must be positive")

        tolerance = 1e-6
        score_total = (
            self.SSIM_SCORE_WEIGHT + self.DELTA_E_SCORE_WEIGHT + self.EDGE_SCORE_WEIGHT
        )
        if abs(score_total - 1.0) > tolerance:
            raise ValueError(
                f"Quality score weights must sum to 1.0 (±{tolerance}), got {score_total:.10f}"
            )

        for quality_weight, size_weight in (
            (self.DEFAULT_QUALITY_WEIGHT, self.DEFAULT_SIZE_WEIGHT),
            (self.LOSSLESS_QUALITY_WEIGHT, self.LOSSLESS_SIZE_WEIGHT),
        ):
            if quality_weight < 0 or size_weight < 0:
                raise ValueError("Score weights must be non-negative")
            if abs(quality_weight + size_weight - 1.0) > tolerance:
                raise ValueError(
                    f"Quality/size weights must sum to 1.0, got {quality_weight + size_weight:.10f}"
                )

    def score_weights(self, lossless_preferred: bool) -> tuple[float, float]:
        """Return the (quality, size) weight pair for the requested mode."""
        if lossless_preferred:
            return self.LOSSLESS_QUALITY_WEIGHT, self.LOSSLESS_SIZE_WEIGHT
        return self.DEFAULT_QUALITY_WEIGHT, self.DEFAULT_SIZE_WEIGHT


@dataclass
class DedupConfig:
    """Configuration for perceptual frame deduplication."""

    # Hash grid edge; the hash has HASH_SIZE**2 bits
    HASH_SIZE: int = 16

    # Gray level separating 0 and 1 bits
    HASH_GRAY_THRESHOLD: float = 128.0

    # Frames further than this (Hamming) from the anchor are kept
    SIMILARITY_THRESHOLD: int = 3

    # Frames hashed between progress updates
    BATCH_SIZE: int = 10

    DEFAULT_DELAY_MS: int = 100

    def __post_init__(self) -> None:
        if self.HASH_SIZE <= 0:
            raise ValueError(f"HASH_SIZE must be positive, got {self.HASH_SIZE}")
        if self.SIMILARITY_THRESHOLD < 0:
            raise ValueError("SIMILARITY_THRESHOLD must be non-negative")
        if self.SIMILARITY_THRESHOLD >= self.HASH_SIZE**2:
            raise ValueError(
                f"SIMILARITY_THRESHOLD must be below hash length {self.HASH_SIZE ** 2}"
            )
        if self.BATCH_SIZE <= 0:
            raise ValueError("BATCH_SIZE must be positive")
        if self.DEFAULT_DELAY_MS <= 0:
            raise ValueError("DEFAULT_DELAY_MS must be positive")


@dataclass
class MetricsConfig:
    """Configuration for the quality metric engine."""

    SSIM_BLOCK_SIZE: int = 8

    # (K1 * L)^2 and (K2 * L)^2 with K1=0.01, K2=0.03, L=255
    SSIM_C1: float = 6.5025
    SSIM_C2: float = 58.5225

    # Every Nth pixel is sampled for deltaE
    DELTA_E_SAMPLING_STRIDE: int = 100

    # Normalised Sobel magnitude thresholds
    EDGE_THRESHOLD: float = 0.1
    EDGE_MATCH_TOLERANCE: float = 0.1

    def __post_init__(self) -> None:
        if self.SSIM_BLOCK_SIZE <= 0:
            raise ValueError("SSIM_BLOCK_SIZE must be positive")
        if self.DELTA_E_SAMPLING_STRIDE <= 0:
            raise ValueError("DELTA_E_SAMPLING_STRIDE must be positive")
        if self.SSIM_C1 <= 0 or self.SSIM_C2 <= 0:
            raise ValueError("SSIM stabilising constants must be positive")
        if self.EDGE_THRESHOLD < 0 or self.EDGE_MATCH_TOLERANCE < 0:
            raise ValueError("Edge thresholds must be non-negative")


@dataclass
class ParallelConfig:
    """Worker pool sizing for candidate encodes and metric evaluation."""

    max_workers: int | None = None

    def __post_init__(self) -> None:
        if self.max_workers is None:
            env_workers = os.environ.get("WEBPLAB_MAX_WORKERS")
            if env_workers:
                try:
                    self.max_workers = int(env_workers)
                except ValueError:
                    logger.warning(f"Invalid WEBPLAB_MAX_WORKERS: {env_workers}")
                    self.max_workers = 1
            else:
                self.max_workers = 1

        self.max_workers = max(1, min(self.max_workers, mp.cpu_count() * 2))


@dataclass
class EngineConfig:
    """Codec binary location with environment variable overrides."""

    # Path to FFmpeg executable (built with libwebp).
    # Override with: WEBPLAB_FFMPEG_PATH
    FFMPEG_PATH: str = "ffmpeg"

    # Hard timeout for a single codec invocation, seconds.
    # Override with: WEBPLAB_COMMAND_TIMEOUT
    COMMAND_TIMEOUT: int = 120

    def __post_init__(self) -> None:
        """Apply environment variable overrides after initialization."""
        self.FFMPEG_PATH = os.environ.get("WEBPLAB_FFMPEG_PATH", self.FFMPEG_PATH)

        env_timeout = os.environ.get("WEBPLAB_COMMAND_TIMEOUT")
        if env_timeout:
            try:
                self.COMMAND_TIMEOUT = int(env_timeout)
            except ValueError:
                logger.warning(f"Invalid WEBPLAB_COMMAND_TIMEOUT: {env_timeout}")

        if self.COMMAND_TIMEOUT <= 0:
            raise ValueError("COMMAND_TIMEOUT must be positive")


# Default configuration instances
DEFAULT_OPTIMIZER_CONFIG = OptimizerConfig()
DEFAULT_DEDUP_CONFIG = DedupConfig()
DEFAULT_METRICS_CONFIG = MetricsConfig()
DEFAULT_ENGINE_CONFIG = EngineConfig()
