"""Tests for webplab.config module."""

import pytest

from webplab.config import (
    DEFAULT_DEDUP_CONFIG,
    DEFAULT_METRICS_CONFIG,
    DEFAULT_OPTIMIZER_CONFIG,
    DedupConfig,
    EngineConfig,
    MetricsConfig,
    OptimizerConfig,
    ParallelConfig,
)


class TestOptimizerConfig:
    """Tests for OptimizerConfig class."""

    @pytest.mark.fast
    def test_default_values(self):
        config = OptimizerConfig()

        assert config.MAX_CANDIDATES == 10
        assert config.SIZE_MODE_QUALITIES == [90, 80, 70]
        assert config.SIZE_MODE_COMPRESSION_LEVELS == [6, 5, 4]
        assert config.SIZE_MODE_MAX_CANDIDATES == 6
        assert config.DUPLICATE_REMOVAL_FRAME_THRESHOLD == 20
        assert config.DEFAULT_FPS == 10.0
        assert config.RELAXED_MIN_SSIM == 0.92

    @pytest.mark.fast
    def test_strategy_thresholds(self):
        thresholds = DEFAULT_OPTIMIZER_CONFIG.STRATEGY_THRESHOLDS

        assert thresholds["pure-lossless"].min_ssim == 0.99
        assert thresholds["pure-lossless"].max_delta_e is None
        assert thresholds["pure-lossless"].min_edge_preservation is None

        near = thresholds["near-lossless"]
        assert (near.min_ssim, near.max_delta_e, near.min_edge_preservation) == (0.97, 3.0, 0.93)
        hybrid = thresholds["hybrid"]
        assert (hybrid.min_ssim, hybrid.max_delta_e, hybrid.min_edge_preservation) == (
            0.96,
            4.0,
            0.92,
        )
        lossy = thresholds["optimized-lossy"]
        assert (lossy.min_ssim, lossy.max_delta_e, lossy.min_edge_preservation) == (
            0.95,
            5.0,
            0.90,
        )

    @pytest.mark.fast
    def test_score_weights_by_mode(self):
        assert DEFAULT_OPTIMIZER_CONFIG.score_weights(False) == (0.7, 0.3)
        assert DEFAULT_OPTIMIZER_CONFIG.score_weights(True) == (0.5, 0.5)

    @pytest.mark.fast
    def test_quality_score_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="must sum to 1.0"):
            OptimizerConfig(SSIM_SCORE_WEIGHT=0.5)

    @pytest.mark.fast
    def test_mode_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="must sum to 1.0"):
            OptimizerConfig(DEFAULT_QUALITY_WEIGHT=0.8)

    @pytest.mark.fast
    def test_invalid_lattice_values(self):
        with pytest.raises(ValueError, match="Quality levels"):
            OptimizerConfig(SIZE_MODE_QUALITIES=[101])
        with pytest.raises(ValueError, match="Compression levels"):
            OptimizerConfig(SIZE_MODE_COMPRESSION_LEVELS=[7])
        with pytest.raises(ValueError, match="MAX_CANDIDATES"):
            OptimizerConfig(MAX_CANDIDATES=0)

    @pytest.mark.fast
    def test_configs_do_not_share_mutable_defaults(self):
        a = OptimizerConfig()
        b = OptimizerConfig()
        a.SIZE_MODE_QUALITIES.append(50)
        assert b.SIZE_MODE_QUALITIES == [90, 80, 70]


class TestDedupConfig:
    @pytest.mark.fast
    def test_defaults(self):
        assert DEFAULT_DEDUP_CONFIG.HASH_SIZE == 16
        assert DEFAULT_DEDUP_CONFIG.SIMILARITY_THRESHOLD == 3
        assert DEFAULT_DEDUP_CONFIG.BATCH_SIZE == 10

    @pytest.mark.fast
    def test_threshold_must_fit_hash(self):
        with pytest.raises(ValueError):
            DedupConfig(HASH_SIZE=2, SIMILARITY_THRESHOLD=4)
        with pytest.raises(ValueError):
            DedupConfig(SIMILARITY_THRESHOLD=-1)


class TestMetricsConfig:
    @pytest.mark.fast
    def test_ssim_constants(self):
        assert DEFAULT_METRICS_CONFIG.SSIM_C1 == pytest.approx((0.01 * 255) ** 2)
        assert DEFAULT_METRICS_CONFIG.SSIM_C2 == pytest.approx((0.03 * 255) ** 2)
        assert DEFAULT_METRICS_CONFIG.SSIM_BLOCK_SIZE == 8
        assert DEFAULT_METRICS_CONFIG.DELTA_E_SAMPLING_STRIDE == 100

    @pytest.mark.fast
    def test_invalid_stride(self):
        with pytest.raises(ValueError):
            MetricsConfig(DELTA_E_SAMPLING_STRIDE=0)


class TestParallelConfig:
    @pytest.mark.fast
    def test_default_is_single_worker(self, monkeypatch):
        monkeypatch.delenv("WEBPLAB_MAX_WORKERS", raising=False)
        assert ParallelConfig().max_workers == 1

    @pytest.mark.fast
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("WEBPLAB_MAX_WORKERS", "2")
        assert ParallelConfig().max_workers == 2

    @pytest.mark.fast
    def test_invalid_env_falls_back(self, monkeypatch):
        monkeypatch.setenv("WEBPLAB_MAX_WORKERS", "many")
        assert ParallelConfig().max_workers == 1

    @pytest.mark.fast
    def test_explicit_value_clamped(self):
        assert ParallelConfig(max_workers=0).max_workers == 1
        assert ParallelConfig(max_workers=100_000).max_workers < 100_000


class TestEngineConfig:
    @pytest.mark.fast
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("WEBPLAB_FFMPEG_PATH", "/opt/ffmpeg/bin/ffmpeg")
        monkeypatch.setenv("WEBPLAB_COMMAND_TIMEOUT", "30")
        config = EngineConfig()
        assert config.FFMPEG_PATH == "/opt/ffmpeg/bin/ffmpeg"
        assert config.COMMAND_TIMEOUT == 30

    @pytest.mark.fast
    def test_invalid_timeout_env_keeps_default(self, monkeypatch):
        monkeypatch.delenv("WEBPLAB_FFMPEG_PATH", raising=False)
        monkeypatch.setenv("WEBPLAB_COMMAND_TIMEOUT", "soon")
        config = EngineConfig()
        assert config.COMMAND_TIMEOUT == 120
        assert config.FFMPEG_PATH == "ffmpeg"
