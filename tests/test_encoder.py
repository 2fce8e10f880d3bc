"""Tests for webplab.encoder module."""

import threading

import pytest
from conftest import FakeCodec

from webplab.candidates import EncodingConfig
from webplab.encoder import (
    SHARP_YUV_SCALE_FLAGS,
    build_codec_args,
    build_filter_chain,
    build_palette_args,
    encode_candidate,
    encode_candidates,
)
from webplab.error_handling import EngineError, OptimizationCancelled
from webplab.progress import ProgressReporter, ProgressUpdate

SOURCE = "input.gif"


def _config(**overrides) -> EncodingConfig:
    values = {"quality": 80, "compression_level": 5}
    values.update(overrides)
    return EncodingConfig(**values)


def _arg(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


class TestFilterChain:
    @pytest.mark.fast
    def test_minimal_chain(self):
        assert build_filter_chain(_config(fps=12.5)) == [
            "fps=12.5",
            "scale=iw:ih:flags=lanczos",
            "format=yuv420p",
        ]

    @pytest.mark.fast
    def test_full_chain_order(self):
        chain = build_filter_chain(
            _config(
                denoise=1.5,
                remove_duplicates=True,
                use_palette=True,
                dither="bayer:bayer_scale=3",
                scale_filter="spline",
                pixel_format="yuva420p",
            )
        )
        assert chain == [
            "hqdn3d=1.5",
            "mpdecimate",
            "fps=10",
            "scale=iw:ih:flags=spline",
            "paletteuse=dither=bayer:bayer_scale=3",
            "format=yuva420p",
        ]

    @pytest.mark.fast
    def test_frames_to_keep_replaces_mpdecimate(self):
        chain = build_filter_chain(_config(remove_duplicates=True, frames_to_keep=(0, 2, 5)))
        assert chain[0] == "select='eq(n\\,0)+eq(n\\,2)+eq(n\\,5)'"
        assert chain[1] == "setpts=N/FRAME_RATE/TB"
        assert "mpdecimate" not in chain

    @pytest.mark.fast
    def test_sharp_yuv_scale_flags(self):
        chain = build_filter_chain(_config(sharp_yuv=True))
        assert f"scale=iw:ih:flags=lanczos{SHARP_YUV_SCALE_FLAGS}" in chain


class TestCodecArgs:
    @pytest.mark.fast
    def test_lossy(self):
        args = build_codec_args(_config(), SOURCE, "out.webp")

        assert args[:2] == ["-i", SOURCE]
        assert _arg(args, "-vf") == "fps=10,scale=iw:ih:flags=lanczos,format=yuv420p"
        assert _arg(args, "-c:v") == "libwebp"
        assert _arg(args, "-lossless") == "0"
        assert _arg(args, "-q:v") == "80"
        assert _arg(args, "-compression_level") == "5"
        assert _arg(args, "-preset") == "picture"
        assert _arg(args, "-loop") == "0"
        assert "-cr_threshold" not in args
        assert args[-2:] == ["-an", "out.webp"]

    @pytest.mark.fast
    def test_lossless(self):
        args = build_codec_args(_config(quality=100, lossless=True), SOURCE, "out.webp")
        assert _arg(args, "-lossless") == "1"

    @pytest.mark.fast
    def test_near_lossless(self):
        args = build_codec_args(_config(lossless=True, near_lossless=5), SOURCE, "out.webp")
        assert _arg(args, "-cr_threshold") == "5"
        assert _arg(args, "-cr_size") == "16"

    @pytest.mark.fast
    def test_delta_encoding(self):
        args = build_codec_args(_config(delta_encoding=True), SOURCE, "out.webp")
        assert _arg(args, "-cr_threshold") == "0"

    @pytest.mark.fast
    def test_palette_graph(self):
        config = _config(use_palette=True, dither="floyd_steinberg")
        args = build_codec_args(config, SOURCE, "out.webp", "pal.png")

        assert args[:4] == ["-i", SOURCE, "-i", "pal.png"]
        assert "-vf" not in args
        assert _arg(args, "-filter_complex") == (
            "[0:v]fps=10,scale=iw:ih:flags=lanczos[x];"
            "[x][1:v]paletteuse=dither=floyd_steinberg,format=yuv420p"
        )

    @pytest.mark.fast
    def test_palette_skipped_without_palette_image(self):
        args = build_codec_args(_config(use_palette=True), SOURCE, "out.webp")
        assert "paletteuse" not in _arg(args, "-vf")

    @pytest.mark.fast
    def test_palette_generation(self):
        args = build_palette_args(_config(use_palette=True, denoise=2.0), SOURCE, "pal.png")
        assert args == [
            "-i",
            SOURCE,
            "-vf",
            "hqdn3d=2,fps=10,scale=iw:ih:flags=lanczos,"
            "palettegen=max_colors=256:stats_mode=diff",
            "-frames:v",
            "1",
            "pal.png",
        ]


class TestEncodeCandidate:
    @pytest.mark.fast
    def test_encodes_and_cleans_up(self, fake_codec, animated_gif):
        fake_codec.write_file(SOURCE, animated_gif)
        candidate = encode_candidate(fake_codec, SOURCE, _config(), order=3)

        assert candidate.order == 3
        assert candidate.buffer.startswith(b"\x89PNG")
        assert candidate.size_kb == pytest.approx(len(candidate.buffer) / 1024)
        assert set(fake_codec.files) == {SOURCE}
        assert "candidate_03.webp" in fake_codec.deleted

    @pytest.mark.fast
    def test_palette_pass(self, fake_codec, animated_gif):
        fake_codec.write_file(SOURCE, animated_gif)
        encode_candidate(fake_codec, SOURCE, _config(use_palette=True), order=0)

        assert [c[-1] for c in fake_codec.calls] == ["palette_00.png", "candidate_00.webp"]
        assert set(fake_codec.files) == {SOURCE}

    @pytest.mark.fast
    def test_failure_still_cleans_up(self, animated_gif):
        codec = FakeCodec(fail_when=lambda args: args[-1].endswith(".webp"))
        codec.write_file(SOURCE, animated_gif)

        with pytest.raises(EngineError):
            encode_candidate(codec, SOURCE, _config(use_palette=True), order=1)
        assert set(codec.files) == {SOURCE}

    @pytest.mark.fast
    def test_empty_output(self, animated_gif):
        codec = FakeCodec(render=lambda args, frames: b"")
        codec.write_file(SOURCE, animated_gif)
        with pytest.raises(EngineError, match="empty output"):
            encode_candidate(codec, SOURCE, _config(), order=0)


class TestEncodeCandidates:
    @pytest.mark.fast
    def test_failed_configs_are_dropped(self, animated_gif):
        codec = FakeCodec(fail_when=lambda args: _arg(args, "-q:v") == "70")
        codec.write_file(SOURCE, animated_gif)
        configs = [_config(quality=q) for q in (90, 70, 50)]

        results = encode_candidates(codec, SOURCE, configs)

        assert [c.order for c in results] == [0, 2]
        assert [c.config.quality for c in results] == [90, 50]

    @pytest.mark.fast
    def test_progress_per_candidate(self, fake_codec, animated_gif):
        fake_codec.write_file(SOURCE, animated_gif)
        updates: list[ProgressUpdate] = []
        configs = [_config(quality=q) for q in (90, 80)]

        encode_candidates(fake_codec, SOURCE, configs, ProgressReporter(updates.append))

        assert [u.percent for u in updates] == [0.0, 50.0]
        assert updates[1].message.startswith("Encoding candidate 2/2")

    @pytest.mark.fast
    def test_thread_pool_keeps_order(self, fake_codec, animated_gif):
        fake_codec.write_file(SOURCE, animated_gif)
        configs = [_config(quality=q) for q in (90, 80, 70, 60)]

        results = encode_candidates(fake_codec, SOURCE, configs, max_workers=3)

        assert [c.order for c in results] == [0, 1, 2, 3]
        assert set(fake_codec.files) == {SOURCE}

    @pytest.mark.fast
    def test_cancelled_before_start(self, fake_codec, animated_gif):
        fake_codec.write_file(SOURCE, animated_gif)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OptimizationCancelled):
            encode_candidates(fake_codec, SOURCE, [_config()], cancel_event=cancel)
        assert fake_codec.calls == []

    @pytest.mark.fast
    def test_cancelled_between_candidates(self, animated_gif):
        cancel = threading.Event()
        codec = FakeCodec()
        codec.write_file(SOURCE, animated_gif)

        def render_then_cancel(args, frames):
            cancel.set()
            return b"webp"

        codec.render = render_then_cancel
        with pytest.raises(OptimizationCancelled):
            encode_candidates(codec, SOURCE, [_config(), _config()], cancel_event=cancel)

        assert len(codec.encode_calls()) == 1
        assert set(codec.files) == {SOURCE}
