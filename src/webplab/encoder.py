"""Candidate encoder adapter.

Maps an :class:`EncodingConfig` onto FFmpeg/libwebp arguments and runs them
through a :class:`CodecService`.  A failing configuration never aborts the
search; it is logged and dropped.
"""

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from .candidates import EncodingConfig
from .error_handling import (
    EngineError,
    OptimizationCancelled,
    log_warning_with_context,
)
from .external_engines.codec import CodecService
from .progress import ProgressPhase, ProgressReporter

logger = logging.getLogger(__name__)

# swscale flags approximating libwebp's sharp RGB->YUV conversion
SHARP_YUV_SCALE_FLAGS = "+accurate_rnd+full_chroma_int+full_chroma_inp"

# Block size for conditional replenishment (near-lossless / delta frames)
CR_BLOCK_SIZE = 16

_PALETTEUSE_PREFIX = "paletteuse"


@dataclass(frozen=True)
class Candidate:
    """One successfully encoded trial output."""

    config: EncodingConfig
    buffer: bytes
    size_kb: float
    order: int


def _select_expression(frames_to_keep: Sequence[int]) -> str:
    terms = "+".join(f"eq(n\\,{idx})" for idx in frames_to_keep)
    return f"select='{terms}'"


def build_filter_chain(config: EncodingConfig) -> list[str]:
    """Return the video filters for *config* in application order.

    denoise -> duplicate removal -> fps -> scale -> paletteuse -> format
    """
    filters: list[str] = []

    if config.denoise:
        filters.append(f"hqdn3d={config.denoise:g}")

    if config.frames_to_keep:
        filters.append(_select_expression(config.frames_to_keep))
        filters.append("setpts=N/FRAME_RATE/TB")
    elif config.remove_duplicates:
        filters.append("mpdecimate")

    filters.append(f"fps={config.fps:g}")

    flags = config.scale_filter
    if config.sharp_yuv:
        flags += SHARP_YUV_SCALE_FLAGS
    filters.append(f"scale=iw:ih:flags={flags}")

    if config.use_palette:
        filters.append(f"{_PALETTEUSE_PREFIX}=dither={config.dither}")

    filters.append(f"format={config.pixel_format}")
    return filters


def _split_at_paletteuse(filters: list[str]) -> tuple[list[str], str | None, list[str]]:
    for i, f in enumerate(filters):
        if f.startswith(_PALETTEUSE_PREFIX):
            return filters[:i], f, filters[i + 1 :]
    return filters, None, []


def build_palette_args(
    config: EncodingConfig, input_name: str, palette_name: str
) -> list[str]:
    """Arguments generating a 256-colour palette from the pre-palette filters."""
    pre, _, _ = _split_at_paletteuse(build_filter_chain(config))
    chain = ",".join([*pre, "palettegen=max_colors=256:stats_mode=diff"])
    return ["-i", input_name, "-vf", chain, "-frames:v", "1", palette_name]


def build_codec_args(
    config: EncodingConfig,
    input_name: str,
    output_name: str,
    palette_name: str | None = None,
) -> list[str]:
    """Arguments encoding *input_name* to an animated WebP at *output_name*.

    When the config uses a palette, *palette_name* must name an image made by
    :func:`build_palette_args`; without one the palette step is skipped.
    """
    filters = build_filter_chain(config)
    pre, paletteuse, post = _split_at_paletteuse(filters)

    args = ["-i", input_name]
    if paletteuse is not None and palette_name is not None:
        graph = f"[0:v]{','.join(pre)}[x];[x][1:v]{paletteuse}"
        if post:
            graph += "," + ",".join(post)
        args += ["-i", palette_name, "-filter_complex", graph]
    else:
        args += ["-vf", ",".join(pre + post)]

    args += ["-c:v", "libwebp", "-lossless", "1" if config.lossless else "0"]
    args += ["-q:v", str(config.quality)]
    args += ["-compression_level", str(config.compression_level)]

    if config.near_lossless is not None or config.delta_encoding:
        args += [
            "-cr_threshold",
            str(config.near_lossless or 0),
            "-cr_size",
            str(CR_BLOCK_SIZE),
        ]

    args += [
        "-preset",
        config.preset,
        "-pix_fmt",
        config.pixel_format,
        "-loop",
        "0",
        "-an",
        output_name,
    ]
    return args


def encode_candidate(
    codec: CodecService, source_name: str, config: EncodingConfig, order: int
) -> Candidate:
    """Encode one configuration.

    The palette and output scratch files are removed on every exit path.

    Raises:
        EngineError: If any codec invocation fails or produces no output
    """
    output_name = f"candidate_{order:02d}.webp"
    palette_name = f"palette_{order:02d}.png"

    with codec.scratch(output_name, palette_name):
        palette: str | None = None
        if config.use_palette:
            codec.exec(build_palette_args(config, source_name, palette_name))
            palette = palette_name
        codec.exec(build_codec_args(config, source_name, output_name, palette))
        buffer = codec.read_file(output_name)

    if not buffer:
        raise EngineError(f"Codec produced an empty output for {config.label}")

    return Candidate(config=config, buffer=buffer, size_kb=len(buffer) / 1024, order=order)


def check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OptimizationCancelled("Optimization cancelled by caller")


def _try_encode(
    codec: CodecService,
    source_name: str,
    config: EncodingConfig,
    order: int,
    cancel_event: threading.Event | None,
) -> Candidate | None:
    check_cancelled(cancel_event)
    try:
        return encode_candidate(codec, source_name, config, order)
    except EngineError as e:
        log_warning_with_context(
            f"Candidate {order} failed to encode, skipping",
            {"config": config.label, "error": e},
            logger,
        )
        return None


def encode_candidates(
    codec: CodecService,
    source_name: str,
    configs: Sequence[EncodingConfig],
    progress: ProgressReporter | None = None,
    cancel_event: threading.Event | None = None,
    max_workers: int = 1,
) -> list[Candidate]:
    """Encode every configuration, dropping the ones that fail.

    Args:
        codec: Codec service holding *source_name* in its scratch space
        source_name: Scratch name of the source animation
        configs: Configurations in generation order
        progress: Optional reporter for per-candidate updates
        cancel_event: Checked before each candidate starts
        max_workers: Values above 1 encode on a thread pool

    Returns:
        Successful candidates in generation order (possibly empty)

    Raises:
        OptimizationCancelled: If *cancel_event* is set between candidates
    """
    reporter = progress or ProgressReporter()
    total = len(configs)
    results: list[Candidate] = []

    if max_workers <= 1 or total <= 1:
        for order, config in enumerate(configs):
            reporter(
                ProgressPhase.ANALYZING,
                order / total * 100,
                f"Encoding candidate {order + 1}/{total}: {config.label}",
            )
            candidate = _try_encode(codec, source_name, config, order, cancel_event)
            if candidate is not None:
                results.append(candidate)
    else:
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="webplab-encode"
        ) as executor:
            futures = [
                executor.submit(_try_encode, codec, source_name, config, order, cancel_event)
                for order, config in enumerate(configs)
            ]
            try:
                for done, future in enumerate(as_completed(futures), start=1):
                    candidate = future.result()
                    if candidate is not None:
                        results.append(candidate)
                    reporter(
                        ProgressPhase.ANALYZING,
                        done / total * 100,
                        f"Encoded {done}/{total} candidates",
                    )
            except OptimizationCancelled:
                for future in futures:
                    future.cancel()
                raise
        results.sort(key=lambda c: c.order)

    check_cancelled(cancel_event)
    logger.info(f"Encoded {len(results)}/{total} candidates successfully")
    return results
