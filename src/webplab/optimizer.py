"""Top-level GIF -> animated WebP optimization.

``optimize`` ties the stages together:

    source -> metadata -> (frame deduplication) -> candidate configs
           -> encodes -> metrics vs. first source frame -> selection

Each call is self-contained.  It either returns a complete
:class:`OptimizationResult` or raises a single terminal error.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import wait
from dataclasses import dataclass, replace
from typing import Any

from .candidates import EncodingConfig, generate_candidates, pixel_format_for, preset_config
from .config import (
    DEFAULT_DEDUP_CONFIG,
    DEFAULT_METRICS_CONFIG,
    DEFAULT_OPTIMIZER_CONFIG,
    DedupConfig,
    EngineConfig,
    MetricsConfig,
    OptimizerConfig,
    ParallelConfig,
)
from .encoder import check_cancelled, encode_candidate, encode_candidates
from .error_handling import (
    EngineError,
    MetricsError,
    OptimizationFailed,
    ValidationError,
    WebpLabError,
    log_info_with_context,
    log_warning_with_context,
)
from .external_engines.codec import CodecService
from .external_engines.ffmpeg import FFmpegCodec
from .frame_dedup import FrameAnalysis, analyze_frames_in_background
from .meta import SourceMetadata, extract_source_metadata
from .metrics import PixelGrid, QualityMetrics, decode_pixels
from .progress import ProgressCallback, ProgressPhase, ProgressReporter
from .selection import select_best

logger = logging.getLogger(__name__)

SOURCE_NAME = "input.gif"


@dataclass(frozen=True)
class CompressionStats:
    """Size statistics of an output relative to its source."""

    original_size_kb: float
    compressed_size_kb: float
    savings_kb: float
    savings_percent: float
    compression_ratio: float
    bits_per_pixel: float
    is_larger_than_original: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "original_size_kb": round(self.original_size_kb, 2),
            "compressed_size_kb": round(self.compressed_size_kb, 2),
            "savings_kb": round(self.savings_kb, 2),
            "savings_percent": round(self.savings_percent, 2),
            "compression_ratio": round(self.compression_ratio, 3),
            "bits_per_pixel": round(self.bits_per_pixel, 4),
            "is_larger_than_original": self.is_larger_than_original,
        }


def compute_compression_stats(
    original_bytes: int,
    compressed_bytes: int,
    width: int,
    height: int,
    frame_count: int,
) -> CompressionStats:
    """Compare an output's size with its source.

    ``bits_per_pixel`` spreads the output over every pixel of every source
    frame: ``compressed_bytes * 8 / (width * height * frame_count)``.
    """
    original_kb = original_bytes / 1024
    compressed_kb = compressed_bytes / 1024
    total_pixels = width * height * frame_count

    return CompressionStats(
        original_size_kb=original_kb,
        compressed_size_kb=compressed_kb,
        savings_kb=original_kb - compressed_kb,
        savings_percent=(
            (original_bytes - compressed_bytes) / original_bytes * 100
            if original_bytes > 0
            else 0.0
        ),
        compression_ratio=original_bytes / compressed_bytes if compressed_bytes > 0 else 0.0,
        bits_per_pixel=compressed_bytes * 8 / total_pixels if total_pixels > 0 else 0.0,
        is_larger_than_original=compressed_bytes > original_bytes,
    )


@dataclass(frozen=True)
class OptimizationResult:
    """Winning output of one optimization run."""

    buffer: bytes
    config: EncodingConfig
    metrics: QualityMetrics
    metadata: SourceMetadata
    stats: CompressionStats
    analysis: FrameAnalysis | None = None
    candidates_tried: int = 0
    candidates_succeeded: int = 0
    used_fallback: bool = False

    @property
    def size_kb(self) -> float:
        return len(self.buffer) / 1024

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly report of the run (without the output bytes)."""
        report: dict[str, Any] = {
            "strategy": self.config.strategy.value,
            "config": {
                "quality": self.config.quality,
                "compression_level": self.config.compression_level,
                "scale_filter": self.config.scale_filter,
                "dither": self.config.dither,
                "pixel_format": self.config.pixel_format,
                "use_palette": self.config.use_palette,
                "lossless": self.config.lossless,
                "near_lossless": self.config.near_lossless,
                "sharp_yuv": self.config.sharp_yuv,
                "denoise": self.config.denoise,
                "remove_duplicates": self.config.remove_duplicates,
                "delta_encoding": self.config.delta_encoding,
                "fps": self.config.fps,
            },
            "metrics": {
                # inf is not valid JSON
                k: (None if v == float("inf") else round(v, 6))
                for k, v in self.metrics.as_dict().items()
            },
            "source": {
                "frame_count": self.metadata.frame_count,
                "fps": self.metadata.fps,
                "width": self.metadata.width,
                "height": self.metadata.height,
                "has_alpha": self.metadata.has_alpha,
                "palette_size": self.metadata.palette_size,
                "duration_s": round(self.metadata.duration_s, 3),
                "avg_bitrate_kbps": round(self.metadata.avg_bitrate_kbps, 2),
            },
            "stats": self.stats.as_dict(),
            "candidates_tried": self.candidates_tried,
            "candidates_succeeded": self.candidates_succeeded,
            "used_fallback": self.used_fallback,
        }
        if self.analysis is not None:
            report["frame_analysis"] = {
                "total_frames": self.analysis.total_frames,
                "unique_frames": self.analysis.unique_frames,
                "duplicate_frames": self.analysis.duplicate_frames,
                "compression_ratio": round(self.analysis.compression_ratio, 4),
                "avg_delay_ms": round(self.analysis.avg_delay_ms, 2),
                "fps": self.analysis.fps,
            }
        return report


@dataclass(frozen=True)
class ConversionResult:
    """Output of a single-shot conversion that bypasses the search."""

    buffer: bytes
    config: EncodingConfig
    metadata: SourceMetadata
    stats: CompressionStats
    analysis: FrameAnalysis | None = None

    @property
    def size_kb(self) -> float:
        return len(self.buffer) / 1024


def _decode_reference(source: bytes) -> PixelGrid:
    if not source:
        raise ValidationError("Source buffer is empty")
    try:
        return decode_pixels(source)
    except MetricsError as e:
        raise ValidationError("Unable to decode the source's first frame", cause=e) from e


def _apply_analysis(metadata: SourceMetadata, analysis: FrameAnalysis) -> SourceMetadata:
    # Snapshots come back as RGBA whatever the source, so the decoded frames
    # decide transparency whenever they are available
    return replace(metadata, fps=analysis.fps, has_alpha=analysis.has_alpha)


def _run_with_codec(
    codec: CodecService | None,
    engine_config: EngineConfig | None,
    body: Callable[[CodecService], Any],
) -> Any:
    if codec is not None:
        return body(codec)
    with FFmpegCodec(engine_config) as owned:
        return body(owned)


def optimize(
    source: bytes,
    lossless_preferred: bool = False,
    progress: ProgressCallback | None = None,
    codec: CodecService | None = None,
    *,
    deduplicate: bool = True,
    analysis: FrameAnalysis | None = None,
    cancel_event: threading.Event | None = None,
    max_workers: int | None = None,
    config: OptimizerConfig | None = None,
    dedup_config: DedupConfig | None = None,
    metrics_config: MetricsConfig | None = None,
    engine_config: EngineConfig | None = None,
) -> OptimizationResult:
    """Search a curated set of encodings for the best WebP rendition of *source*.

    Args:
        source: Raw GIF contents
        lossless_preferred: Quality-preserving mode (strategy lattice) when True,
            size-preserving mode (quality x compression grid) otherwise
        progress: Optional sink receiving :class:`ProgressUpdate` objects with
            non-decreasing percentages; deduplication updates arrive from its
            worker thread while the main thread extracts metadata
        codec: Codec service; an :class:`FFmpegCodec` is created and closed
            around the call when omitted
        deduplicate: Run frame deduplication on a worker thread
        analysis: Precomputed frame analysis (skips deduplication)
        cancel_event: Set by the caller to abandon the run between candidates
        max_workers: Parallel candidate encodes (defaults to ParallelConfig)
        config: Optimizer configuration
        dedup_config: Frame deduplication configuration
        metrics_config: Quality metric configuration
        engine_config: FFmpeg location and timeout for the owned codec

    Returns:
        OptimizationResult for the winning candidate

    Raises:
        ValidationError: If the source cannot be parsed
        OptimizationCancelled: If *cancel_event* was set
        OptimizationFailed: If no candidate could be produced or evaluated
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    dedup_config = dedup_config or DEFAULT_DEDUP_CONFIG
    metrics_config = metrics_config or DEFAULT_METRICS_CONFIG
    workers = ParallelConfig(max_workers).max_workers
    reporter = ProgressReporter(progress)

    reporter(ProgressPhase.LOADING, 0, "Loading source...")
    reference = _decode_reference(source)

    # The dedup worker owns 5-25 until its result is collected
    reporter(ProgressPhase.EXTRACTING, 5, "Reading source metadata...")
    dedup_stop = threading.Event()
    dedup_future = None
    if analysis is None and deduplicate:
        dedup_future = analyze_frames_in_background(
            source, reporter.child(5, 25).as_callback(), dedup_config, dedup_stop
        )

    def run(active: CodecService) -> OptimizationResult:
        check_cancelled(cancel_event)
        metadata = extract_source_metadata(source, active, config)

        frame_analysis = analysis
        if dedup_future is not None:
            try:
                frame_analysis = dedup_future.result()
            except WebpLabError as e:
                log_warning_with_context(
                    "Frame deduplication failed, encoding all frames", {"error": e}, logger
                )

        frames_to_keep = None
        if frame_analysis is not None:
            metadata = _apply_analysis(metadata, frame_analysis)
            frames_to_keep = frame_analysis.frames_to_keep
            log_info_with_context(
                "Frame analysis ready",
                {
                    "kept": frame_analysis.unique_frames,
                    "total": frame_analysis.total_frames,
                    "fps": frame_analysis.fps,
                },
                logger,
            )

        configs = generate_candidates(metadata, frames_to_keep, lossless_preferred, config)
        reporter(
            ProgressPhase.ANALYZING,
            25,
            f"Trying {len(configs)} candidate encodings "
            f"({'quality' if lossless_preferred else 'size'}-preserving)",
        )
        check_cancelled(cancel_event)

        with active.scratch() as space:
            space.write(SOURCE_NAME, source)
            candidates = encode_candidates(
                active,
                SOURCE_NAME,
                configs,
                reporter.child(25, 80),
                cancel_event,
                workers,
            )

        if not candidates:
            raise OptimizationFailed(
                f"No viable candidate: all {len(configs)} configurations failed to encode"
            )

        reporter(ProgressPhase.ANALYZING, 85, "Evaluating candidate quality...")
        selection = select_best(
            reference, candidates, lossless_preferred, config, metrics_config
        )
        winner = selection.winner

        stats = compute_compression_stats(
            len(source),
            len(winner.buffer),
            metadata.width,
            metadata.height,
            metadata.frame_count,
        )
        reporter(
            ProgressPhase.COMPLETE,
            100,
            f"Done: {winner.config.label}, {stats.savings_percent:.1f}% smaller",
        )
        return OptimizationResult(
            buffer=winner.buffer,
            config=winner.config,
            metrics=selection.metrics,
            metadata=metadata,
            stats=stats,
            analysis=frame_analysis,
            candidates_tried=len(configs),
            candidates_succeeded=len(candidates),
            used_fallback=selection.used_fallback,
        )

    try:
        return _run_with_codec(codec, engine_config, run)
    finally:
        if dedup_future is not None:
            dedup_stop.set()
            dedup_future.cancel()
            # Stops at its next batch; nothing is reported after return
            wait([dedup_future])


def _conversion_attempts(encoding: EncodingConfig) -> list[EncodingConfig]:
    """Configs to try in order: frame selection, then palette, then plain."""
    attempts = [encoding]
    if encoding.frames_to_keep is not None:
        attempts.append(
            replace(encoding, frames_to_keep=None, remove_duplicates=False, use_palette=True)
        )
    if attempts[-1].use_palette:
        attempts.append(replace(attempts[-1], use_palette=False))
    return attempts


def _convert_single(
    source: bytes,
    codec: CodecService,
    make_config: Callable[[SourceMetadata], EncodingConfig],
    analysis: FrameAnalysis | None,
    reporter: ProgressReporter,
    config: OptimizerConfig,
) -> ConversionResult:
    reporter(ProgressPhase.EXTRACTING, 10, "Reading source metadata...")
    metadata = extract_source_metadata(source, codec, config)
    if analysis is not None:
        metadata = _apply_analysis(metadata, analysis)
    attempts = _conversion_attempts(make_config(metadata))

    reporter(ProgressPhase.ANALYZING, 50, f"Converting with {attempts[0].label}...")
    with codec.scratch() as space:
        space.write(SOURCE_NAME, source)
        for encoding, retry in zip(attempts, attempts[1:] + [None]):
            try:
                candidate = encode_candidate(codec, SOURCE_NAME, encoding, 0)
                break
            except EngineError as e:
                if retry is None:
                    raise
                log_warning_with_context(
                    "Conversion failed, retrying",
                    {"failed": encoding.label, "retry": retry.label, "error": e},
                    logger,
                )

    stats = compute_compression_stats(
        len(source),
        len(candidate.buffer),
        metadata.width,
        metadata.height,
        metadata.frame_count,
    )
    reporter(ProgressPhase.COMPLETE, 100, "Conversion complete")
    return ConversionResult(
        buffer=candidate.buffer,
        config=encoding,
        metadata=metadata,
        stats=stats,
        analysis=analysis,
    )


def convert_with_preset(
    source: bytes,
    preset: str = "balanced",
    analysis: FrameAnalysis | None = None,
    progress: ProgressCallback | None = None,
    codec: CodecService | None = None,
    config: OptimizerConfig | None = None,
    engine_config: EngineConfig | None = None,
) -> ConversionResult:
    """Convert with one of the fixed presets (``high-quality``, ``balanced``,
    ``compressed``) instead of searching.

    With an *analysis* that keeps under 90% of the frames, duplicates are
    removed and the palette step is skipped; otherwise a 256-colour palette
    is generated and applied.  A failed frame-selection encode is retried
    with the palette, and a failed palette encode with a plain one.

    Raises:
        ValueError: If *preset* is unknown
        EngineError: If the conversion fails
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    reporter = ProgressReporter(progress)
    frames_to_keep = analysis.frames_to_keep if analysis is not None else None

    def make_config(metadata: SourceMetadata) -> EncodingConfig:
        return preset_config(preset, metadata, frames_to_keep)

    return _run_with_codec(
        codec,
        engine_config,
        lambda active: _convert_single(source, active, make_config, analysis, reporter, config),
    )


def convert_basic(
    source: bytes,
    quality: int,
    compression: int,
    codec: CodecService | None = None,
    config: OptimizerConfig | None = None,
    engine_config: EngineConfig | None = None,
) -> ConversionResult:
    """Plain lossy conversion at a fixed quality and compression level.

    Raises:
        ValueError: If *quality* or *compression* is out of range
        EngineError: If the conversion fails
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG

    def make_config(metadata: SourceMetadata) -> EncodingConfig:
        return EncodingConfig(
            quality=quality,
            compression_level=compression,
            scale_filter="lanczos",
            pixel_format=pixel_format_for(metadata),
            fps=metadata.fps,
        )

    return _run_with_codec(
        codec,
        engine_config,
        lambda active: _convert_single(
            source, active, make_config, None, ProgressReporter(), config
        ),
    )
