"""Time-domain cross-correlation for aligning two recordings of one event.

Both tracks are expected to carry the same audio captured by different
devices (e.g. camera mic vs. external recorder). The search runs over a
bounded template taken from the start of the reference track, first on a
coarse lag grid and then sample-by-sample around the best coarse hit.
"""

import logging
from dataclasses import dataclass

import numpy as np

from clipsync.models import Signal, SyncResult

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 8000
MAX_OFFSET_SECONDS = 30.0
ANALYSIS_CHUNK_SECONDS = 30
COARSE_EVALUATIONS = 2000
CONFIDENCE_SCALE = 3.0


@dataclass(frozen=True)
class LagEstimate:
    best_lag: int
    confidence: float


def normalize(samples: np.ndarray) -> np.ndarray:
    """Scale samples so the peak absolute value is 1.0.

    An all-zero (or empty) input is returned unchanged.
    """
    peak = float(np.max(np.abs(samples))) if len(samples) else 0.0
    if peak == 0.0:
        return samples
    return (samples / np.float32(peak)).astype(np.float32)


def compute_correlation(ref: np.ndarray, target: np.ndarray, lag: int) -> float:
    """Mean product of ``ref[i] * target[i + lag]`` over the overlap.

    Returns 0.0 when the two arrays do not overlap at ``lag``.
    """
    start = max(0, -lag)
    end = min(len(ref), len(target) - lag)
    if start >= end:
        return 0.0
    total = np.dot(ref[start:end], target[start + lag:end + lag])
    return float(total) / (end - start)


def find_best_lag(
    reference: Signal,
    target: Signal,
    max_lag_samples: int,
    chunk_seconds: float = ANALYSIS_CHUNK_SECONDS,
    confidence_scale: float = CONFIDENCE_SCALE,
) -> LagEstimate:
    """Find the lag (in samples) at which ``target`` best matches ``reference``.

    A positive lag means the target starts later than the reference.

    Args:
        reference: Reference signal (normally the video's own audio).
        target: Signal to align against the reference.
        max_lag_samples: Largest absolute lag considered.
        chunk_seconds: Length of the reference template.
        confidence_scale: Divisor applied to the mean correlation when
            scoring the peak.
    """
    if reference.sample_rate != target.sample_rate:
        raise ValueError(
            f"Sample rates differ: {reference.sample_rate} != {target.sample_rate}"
        )
    if max_lag_samples < 0:
        raise ValueError("max_lag_samples must be non-negative")

    chunk_size = min(
        len(reference), len(target), int(reference.sample_rate * chunk_seconds)
    )
    # float64 accumulation keeps the dot products stable across platforms
    ref_chunk = reference.samples[:chunk_size].astype(np.float64)
    tgt = target.samples.astype(np.float64)

    best_corr = -np.inf
    best_lag = 0
    sum_abs = 0.0
    count = 0

    step = max(1, max_lag_samples // COARSE_EVALUATIONS)

    for lag in range(-max_lag_samples, max_lag_samples + 1, step):
        corr = compute_correlation(ref_chunk, tgt, lag)
        sum_abs += abs(corr)
        count += 1
        if corr > best_corr:
            best_corr = corr
            best_lag = lag

    mean_abs = sum_abs / count
    if mean_abs == 0.0:
        # Silence on either side: nothing to align against.
        logger.debug("Flat correlation surface; returning lag 0")
        return LagEstimate(best_lag=0, confidence=0.0)

    fine_range = step * 2
    lo = max(-max_lag_samples, best_lag - fine_range)
    hi = min(max_lag_samples, best_lag + fine_range)
    for lag in range(lo, hi + 1):
        corr = compute_correlation(ref_chunk, tgt, lag)
        if corr > best_corr:
            best_corr = corr
            best_lag = lag

    confidence = min(1.0, best_corr / (mean_abs * confidence_scale))
    confidence = max(0.0, confidence)

    logger.debug(
        "Best lag %d samples (corr=%.6f, mean=%.6f, step=%d, evals=%d)",
        best_lag, best_corr, mean_abs, step, count,
    )
    return LagEstimate(best_lag=best_lag, confidence=confidence)


def correlate_signals(
    reference: Signal,
    target: Signal,
    max_offset_seconds: float = MAX_OFFSET_SECONDS,
) -> SyncResult:
    """Normalize both signals, find the best lag, and convert it to seconds."""
    rate = reference.sample_rate
    norm_ref = Signal(normalize(reference.samples), rate)
    norm_tgt = Signal(normalize(target.samples), target.sample_rate)

    max_lag = int(max_offset_seconds * rate)
    estimate = find_best_lag(norm_ref, norm_tgt, max_lag)

    return SyncResult(
        offset_seconds=estimate.best_lag / rate,
        confidence=estimate.confidence,
    )
