"""Selection policy: judge candidates against the reference and pick a winner.

Every candidate is decoded and compared to the reference frame.  A candidate
qualifies when it clears its own strategy's thresholds, or the relaxed global
SSIM bar.  Qualifiers are ranked by a weighted quality/size score; when none
qualifies the candidate with the highest configured quality wins instead.
Ties always go to the earlier generated candidate, so the outcome depends
only on the candidate set and the reference.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .candidates import EncodingStrategy
from .config import DEFAULT_METRICS_CONFIG, DEFAULT_OPTIMIZER_CONFIG, MetricsConfig, OptimizerConfig
from .encoder import Candidate
from .error_handling import MetricsError, OptimizationFailed, log_warning_with_context
from .metrics import PixelGrid, QualityMetrics, calculate_all_metrics, decode_pixels

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluatedCandidate:
    """A candidate together with its metrics and acceptance outcome."""

    candidate: Candidate
    metrics: QualityMetrics
    qualifies: bool
    score: float


@dataclass(frozen=True)
class Selection:
    """The winning candidate and how it was chosen."""

    winner: Candidate
    metrics: QualityMetrics
    used_fallback: bool
    evaluated: tuple[EvaluatedCandidate, ...]


def meets_quality_criteria(
    strategy: EncodingStrategy | str,
    metrics: QualityMetrics,
    relaxed: bool = True,
    config: OptimizerConfig | None = None,
) -> bool:
    """Return True when *metrics* clear the bar for *strategy*.

    With *relaxed* set, an SSIM at or above ``RELAXED_MIN_SSIM`` qualifies
    regardless of strategy.
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    threshold = config.STRATEGY_THRESHOLDS[EncodingStrategy(strategy).value]

    strict = metrics.ssim >= threshold.min_ssim
    if threshold.max_delta_e is not None:
        strict = strict and metrics.delta_e <= threshold.max_delta_e
    if threshold.min_edge_preservation is not None:
        strict = strict and metrics.edge_preservation >= threshold.min_edge_preservation

    if strict:
        return True
    return relaxed and metrics.ssim >= config.RELAXED_MIN_SSIM


def quality_score(metrics: QualityMetrics, config: OptimizerConfig | None = None) -> float:
    """Blend SSIM, deltaE and edge preservation into one 0-1 score."""
    config = config or DEFAULT_OPTIMIZER_CONFIG
    delta_e_term = 1.0 - min(metrics.delta_e / config.DELTA_E_SCORE_CEILING, 1.0)
    return (
        config.SSIM_SCORE_WEIGHT * metrics.ssim
        + config.DELTA_E_SCORE_WEIGHT * delta_e_term
        + config.EDGE_SCORE_WEIGHT * metrics.edge_preservation
    )


def score_candidate(
    metrics: QualityMetrics,
    size_kb: float,
    lossless_preferred: bool = False,
    config: OptimizerConfig | None = None,
) -> float:
    """Weighted quality/size score; higher is better."""
    config = config or DEFAULT_OPTIMIZER_CONFIG
    quality_weight, size_weight = config.score_weights(lossless_preferred)
    size_score = 1.0 / size_kb if size_kb > 0 else 0.0
    return quality_score(metrics, config) * quality_weight + size_score * size_weight


def evaluate_candidates(
    reference: PixelGrid,
    candidates: Sequence[Candidate],
    lossless_preferred: bool = False,
    config: OptimizerConfig | None = None,
    metrics_config: MetricsConfig | None = None,
) -> list[EvaluatedCandidate]:
    """Compare every candidate with the reference.

    Candidates that cannot be decoded, or decode to a different size, are
    logged and left out.
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    metrics_config = metrics_config or DEFAULT_METRICS_CONFIG

    evaluated: list[EvaluatedCandidate] = []
    for candidate in candidates:
        try:
            grid = decode_pixels(candidate.buffer)
            metrics = calculate_all_metrics(reference, grid, metrics_config)
        except MetricsError as e:
            log_warning_with_context(
                f"Candidate {candidate.order} excluded from selection",
                {"config": candidate.config.label, "error": e},
                logger,
            )
            continue

        qualifies = meets_quality_criteria(candidate.config.strategy, metrics, config=config)
        score = score_candidate(metrics, candidate.size_kb, lossless_preferred, config)
        logger.debug(
            f"Candidate {candidate.order} [{candidate.config.label}] "
            f"{candidate.size_kb:.1f}KB ssim={metrics.ssim:.4f} "
            f"dE={metrics.delta_e:.2f} edge={metrics.edge_preservation:.3f} "
            f"qualifies={qualifies} score={score:.4f}"
        )
        evaluated.append(
            EvaluatedCandidate(
                candidate=candidate, metrics=metrics, qualifies=qualifies, score=score
            )
        )
    return evaluated


def _best_by(
    evaluated: Sequence[EvaluatedCandidate], key
) -> EvaluatedCandidate:
    # max() keeps the first of equal keys, order breaks ties
    ordered = sorted(evaluated, key=lambda e: e.candidate.order)
    return max(ordered, key=key)


def select_best(
    reference: PixelGrid,
    candidates: Sequence[Candidate],
    lossless_preferred: bool = False,
    config: OptimizerConfig | None = None,
    metrics_config: MetricsConfig | None = None,
) -> Selection:
    """Pick the winning candidate.

    Args:
        reference: Decoded first frame of the source
        candidates: Successfully encoded candidates
        lossless_preferred: Use the quality-preserving score weights
        config: Optimizer configuration (thresholds, weights)
        metrics_config: Metric engine configuration

    Returns:
        Selection with the winner and its freshly computed metrics

    Raises:
        OptimizationFailed: If no candidate could be evaluated
    """
    config = config or DEFAULT_OPTIMIZER_CONFIG
    metrics_config = metrics_config or DEFAULT_METRICS_CONFIG

    evaluated = evaluate_candidates(
        reference, candidates, lossless_preferred, config, metrics_config
    )
    if not evaluated:
        raise OptimizationFailed(
            "No viable candidate: none of the encoded outputs could be evaluated",
            context={"candidates": len(candidates)},
        )

    qualifiers = [e for e in evaluated if e.qualifies]
    if qualifiers:
        best = _best_by(qualifiers, key=lambda e: e.score)
        used_fallback = False
    else:
        best = _best_by(evaluated, key=lambda e: e.candidate.config.quality)
        used_fallback = True
        log_warning_with_context(
            "No candidate met its quality criteria, falling back to highest quality",
            {"winner": best.candidate.config.label},
            logger,
        )

    final_metrics = calculate_all_metrics(
        reference, decode_pixels(best.candidate.buffer), metrics_config
    )
    logger.info(
        f"🏆 Selected {best.candidate.config.label} "
        f"({best.candidate.size_kb:.1f}KB, ssim={final_metrics.ssim:.4f})"
    )
    return Selection(
        winner=best.candidate,
        metrics=final_metrics,
        used_fallback=used_fallback,
        evaluated=tuple(evaluated),
    )
