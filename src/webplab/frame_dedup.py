"""Perceptual frame deduplication.

Each frame is reduced to a coarse 256-bit perceptual hash (16x16 cells,
one bit per cell).  Frames are then walked once, front to back: the last
kept frame is the anchor and a frame is kept only when its Hamming distance
to the anchor exceeds the similarity threshold, in which case it becomes the
new anchor.

This is a greedy nearest-anchor policy.  It never backtracks and does not
search for a globally minimal frame set, which keeps it O(frames) with an
O(hash length) comparison per frame.

Example:
    With threshold 3 and distances to the current anchor of
    [-, 0, 1, 9, 2, 12] the kept indices are [0, 3, 5].
"""

import io
import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image

from .config import DEFAULT_DEDUP_CONFIG, DedupConfig
from .error_handling import ErrorLevel, OptimizationCancelled, ValidationError, error_context
from .progress import ProgressCallback, ProgressPhase, ProgressReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodedFrame:
    """One decoded frame; ``pixels`` is None when decoding failed."""

    index: int
    pixels: np.ndarray | None
    delay_ms: int


@dataclass(frozen=True)
class FrameRecord:
    """Perceptual fingerprint of one successfully decoded frame."""

    index: int
    hash: str
    width: int
    height: int
    delay_ms: int


@dataclass(frozen=True)
class FrameAnalysis:
    """Outcome of a deduplication pass over a whole animation."""

    total_frames: int
    unique_frames: int
    duplicate_frames: int
    compression_ratio: float
    frames_to_keep: tuple[int, ...]
    avg_delay_ms: float
    fps: float
    width: int
    height: int
    has_alpha: bool


def decode_frames(buffer: bytes, default_delay_ms: int = 100) -> list[DecodedFrame]:
    """Decode every frame of an animated image into RGBA arrays.

    A frame that fails to decode is returned with ``pixels=None`` so that
    callers can skip it without losing frame numbering.

    Raises:
        ValidationError: If the buffer cannot be opened or has no frames
    """
    with error_context(
        "parse source animation", ValidationError, level=ErrorLevel.WARNING, logger=logger
    ):
        img = Image.open(io.BytesIO(buffer))

    frames: list[DecodedFrame] = []
    with img:
        total = getattr(img, "n_frames", 1)
        for i in range(total):
            try:
                img.seek(i)
                pixels = np.array(img.convert("RGBA"))
                delay = img.info.get("duration") or default_delay_ms
            except (EOFError, OSError, ValueError) as e:
                logger.debug(f"Skipping undecodable frame {i}: {e}")
                frames.append(DecodedFrame(index=i, pixels=None, delay_ms=default_delay_ms))
                continue
            frames.append(DecodedFrame(index=i, pixels=pixels, delay_ms=int(delay)))

    if not frames:
        raise ValidationError("No frames could be extracted from source")
    return frames


def compute_frame_hash(
    rgba: np.ndarray, hash_size: int = 16, gray_threshold: float = 128.0
) -> str:
    """Return a ``hash_size**2``-bit perceptual hash as a '0'/'1' string.

    The frame is area-averaged down to a ``hash_size`` square grid, each
    cell's R, G, B are averaged to a gray value, and the bit is "1" when
    that gray value is above *gray_threshold*.
    """
    if rgba.ndim != 3 or rgba.shape[0] == 0 or rgba.shape[1] == 0:
        raise ValueError(f"Expected a non-empty HxWxC frame, got shape {rgba.shape}")

    rgb = rgba[..., :3].astype(np.float32)
    cells = cv2.resize(rgb, (hash_size, hash_size), interpolation=cv2.INTER_AREA)
    gray = cells.mean(axis=2)
    return "".join("1" if bit else "0" for bit in (gray > gray_threshold).ravel())


def hamming_distance(hash1: str, hash2: str) -> int:
    """Count differing bits over the common length of two hashes."""
    return sum(1 for a, b in zip(hash1, hash2) if a != b)


def _check_stopped(stop_event: threading.Event | None) -> None:
    if stop_event is not None and stop_event.is_set():
        raise OptimizationCancelled("Frame analysis stopped")


def build_frame_records(
    frames: Sequence[DecodedFrame],
    config: DedupConfig | None = None,
    progress: ProgressReporter | None = None,
    stop_event: threading.Event | None = None,
) -> list[FrameRecord]:
    """Hash decoded frames in batches, skipping frames that failed to decode.

    *stop_event* is checked before every batch.

    Raises:
        OptimizationCancelled: If *stop_event* is set
    """
    config = config or DEFAULT_DEDUP_CONFIG
    total = len(frames)
    records: list[FrameRecord] = []

    for start in range(0, total, config.BATCH_SIZE):
        _check_stopped(stop_event)
        batch = frames[start : start + config.BATCH_SIZE]
        for frame in batch:
            if frame.pixels is None:
                continue
            try:
                frame_hash = compute_frame_hash(
                    frame.pixels, config.HASH_SIZE, config.HASH_GRAY_THRESHOLD
                )
            except (ValueError, cv2.error) as e:
                logger.debug(f"Skipping unhashable frame {frame.index}: {e}")
                continue
            height, width = frame.pixels.shape[:2]
            records.append(
                FrameRecord(
                    index=frame.index,
                    hash=frame_hash,
                    width=width,
                    height=height,
                    delay_ms=frame.delay_ms,
                )
            )

        if progress is not None:
            done = start + len(batch)
            progress(
                ProgressPhase.ANALYZING,
                30 + done / total * 40,
                f"Hashing frames... {done}/{total}",
                current_frame=done,
                total_frames=total,
            )

    return records


def select_frames_to_keep(
    records: Sequence[FrameRecord],
    threshold: int = 3,
    progress: ProgressReporter | None = None,
) -> list[int]:
    """Greedy single-pass selection of frames that differ from the last kept one.

    Index 0 is always part of the result.  Records are expected in frame
    order; frames missing from *records* (decode failures) are never kept.
    """
    frames_to_keep = [0]
    if not records:
        return frames_to_keep

    anchor = records[0]
    if anchor.index != 0:
        frames_to_keep.append(anchor.index)

    total = len(records)
    for i, record in enumerate(records[1:], start=1):
        if hamming_distance(record.hash, anchor.hash) > threshold:
            frames_to_keep.append(record.index)
            anchor = record

        if progress is not None and i % 10 == 0:
            progress(
                ProgressPhase.ANALYZING,
                75 + i / total * 20,
                f"Detecting duplicates... {i}/{total}",
                current_frame=i,
                total_frames=total,
            )

    return frames_to_keep


def analyze_decoded_frames(
    frames: Sequence[DecodedFrame],
    progress: ProgressCallback | None = None,
    config: DedupConfig | None = None,
    stop_event: threading.Event | None = None,
) -> FrameAnalysis:
    """Deduplicate already-decoded frames and summarise the result.

    Setting *stop_event* abandons the pass with OptimizationCancelled at the
    next hashing batch or stage boundary.
    """
    config = config or DEFAULT_DEDUP_CONFIG
    reporter = ProgressReporter(progress)
    total_frames = len(frames)

    reporter(
        ProgressPhase.ANALYZING,
        30,
        "Computing frame hashes...",
        total_frames=total_frames,
    )
    records = build_frame_records(frames, config, reporter, stop_event)
    if not records:
        raise ValidationError("No frame of the source could be decoded")

    _check_stopped(stop_event)
    reporter(
        ProgressPhase.ANALYZING,
        75,
        "Detecting duplicate frames...",
        total_frames=total_frames,
    )
    frames_to_keep = select_frames_to_keep(records, config.SIMILARITY_THRESHOLD, reporter)
    _check_stopped(stop_event)

    avg_delay = sum(r.delay_ms for r in records) / len(records)
    fps = max(1, round(1000 / avg_delay))

    first = next(f for f in frames if f.index == records[0].index)
    has_alpha = bool(first.pixels is not None and (first.pixels[..., 3] < 255).any())

    analysis = FrameAnalysis(
        total_frames=total_frames,
        unique_frames=len(frames_to_keep),
        duplicate_frames=total_frames - len(frames_to_keep),
        compression_ratio=len(frames_to_keep) / total_frames,
        frames_to_keep=tuple(frames_to_keep),
        avg_delay_ms=avg_delay,
        fps=float(fps),
        width=records[0].width,
        height=records[0].height,
        has_alpha=has_alpha,
    )

    reporter(
        ProgressPhase.COMPLETE,
        100,
        f"Analysis complete: keeping {analysis.unique_frames}/{analysis.total_frames} frames",
    )
    logger.info(
        f"Deduplication kept {analysis.unique_frames}/{analysis.total_frames} frames "
        f"(threshold={config.SIMILARITY_THRESHOLD})"
    )
    return analysis


def analyze_frames(
    buffer: bytes,
    progress: ProgressCallback | None = None,
    config: DedupConfig | None = None,
    stop_event: threading.Event | None = None,
) -> FrameAnalysis:
    """Decode an animation buffer and run the deduplication pass over it.

    Args:
        buffer: Raw animated image contents
        progress: Optional progress sink
        config: Deduplication configuration
        stop_event: Abandons the pass when set

    Returns:
        FrameAnalysis with the kept frame indices and timing statistics

    Raises:
        ValidationError: If the buffer cannot be parsed or no frame decodes
        OptimizationCancelled: If *stop_event* was set
    """
    config = config or DEFAULT_DEDUP_CONFIG
    reporter = ProgressReporter(progress)

    reporter(ProgressPhase.LOADING, 5, "Parsing animation...")
    frames = decode_frames(buffer, config.DEFAULT_DELAY_MS)
    _check_stopped(stop_event)
    reporter(
        ProgressPhase.EXTRACTING,
        20,
        f"Extracted {len(frames)} frames",
        total_frames=len(frames),
    )

    return analyze_decoded_frames(frames, progress, config, stop_event)


def analyze_frames_in_background(
    buffer: bytes,
    progress: ProgressCallback | None = None,
    config: DedupConfig | None = None,
    stop_event: threading.Event | None = None,
) -> "Future[FrameAnalysis]":
    """Run :func:`analyze_frames` on a dedicated worker thread.

    The returned future resolves to the FrameAnalysis or raises whatever the
    analysis raised.  Cancelling the future does not interrupt a running
    analysis; set *stop_event* for that.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webplab-dedup")
    try:
        return executor.submit(analyze_frames, buffer, progress, config, stop_event)
    finally:
        executor.shutdown(wait=False)
