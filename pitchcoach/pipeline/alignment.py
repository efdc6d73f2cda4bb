# pitchcoach/pipeline/alignment.py
"""
Global latency estimation between reference and user recordings.

Short-time RMS envelopes of both signals are compared with a normalized
cross-correlation over the overlapping region for every lag within the
configured window. Positive lags mean the user is late.
"""

from __future__ import annotations

import logging
from typing import Optional

import librosa
import numpy as np
import scipy.signal

from .config import AlignmentConfig
from .pitch_utils import finite_or_zero

logger = logging.getLogger(__name__)

DEFAULT_ALIGNMENT_CONFIG = AlignmentConfig()
TIE_TOLERANCE = 1e-9


def build_envelope(mono: np.ndarray, window_size: int, hop_size: int) -> np.ndarray:
    """RMS per full window (no centering / padding); empty when too short."""
    y = np.asarray(mono, dtype=np.float32).reshape(-1)
    if y.size < window_size or window_size <= 0 or hop_size <= 0:
        return np.zeros(0, dtype=np.float64)
    rms = librosa.feature.rms(y=y, frame_length=window_size, hop_length=hop_size, center=False)
    return np.asarray(rms[0], dtype=np.float64)


def normalized_cross_correlation(
    ref_env: np.ndarray,
    user_env: np.ndarray,
    max_lag: int,
    min_overlap: Optional[int] = None,
) -> np.ndarray:
    """
    Score per lag in ``[-max_lag, max_lag]``; ``-inf`` where the overlap is
    shorter than ``min_overlap`` (default: half the shorter envelope) or has
    zero power on either side.
    """
    r = np.asarray(ref_env, dtype=np.float64)
    u = np.asarray(user_env, dtype=np.float64)
    nr, nu = r.size, u.size
    lags = np.arange(-max_lag, max_lag + 1)
    scores = np.full(lags.size, -np.inf)
    if nr == 0 or nu == 0:
        return scores

    # full[k] = sum_i r[i] * u[i + lag] with lag = k - (nr - 1)
    full = scipy.signal.correlate(u, r, mode="full", method="auto")
    r_cum = np.concatenate([[0.0], np.cumsum(r * r)])
    u_cum = np.concatenate([[0.0], np.cumsum(u * u)])

    lo = np.maximum(0, -lags)
    hi = np.minimum(nr, nu - lags)
    if min_overlap is None:
        min_overlap = max(1, min(nr, nu) // 2)
    valid = (hi - lo) >= max(1, int(min_overlap))
    lo_c = np.clip(lo, 0, nr)
    hi_c = np.clip(hi, 0, nr)
    ref_pow = np.where(valid, r_cum[hi_c] - r_cum[lo_c], 0.0)
    u_lo = np.clip(lo + lags, 0, nu)
    u_hi = np.clip(hi + lags, 0, nu)
    user_pow = np.where(valid, u_cum[u_hi] - u_cum[u_lo], 0.0)

    idx = np.clip(lags + nr - 1, 0, full.size - 1)
    dot = np.where(valid, full[idx], 0.0)

    ok = valid & (ref_pow > 0.0) & (user_pow > 0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores[ok] = dot[ok] / np.sqrt(ref_pow[ok] * user_pow[ok])
    return scores


def estimate_global_offset_ms(
    ref: np.ndarray,
    user: np.ndarray,
    sample_rate: int,
    config: AlignmentConfig = DEFAULT_ALIGNMENT_CONFIG,
) -> float:
    """Estimated user latency in milliseconds; 0.0 when nothing is comparable."""
    if sample_rate <= 0:
        return 0.0
    ref_env = build_envelope(ref, config.window_size, config.hop_size)
    user_env = build_envelope(user, config.window_size, config.hop_size)
    if ref_env.size == 0 or user_env.size == 0:
        logger.debug("Envelope empty (ref=%d, user=%d); offset 0", ref_env.size, user_env.size)
        return 0.0

    max_lag = int(np.floor(config.max_lag_sec * sample_rate / config.hop_size))
    scores = normalized_cross_correlation(ref_env, user_env, max_lag)
    if not np.any(np.isfinite(scores)):
        return 0.0

    # near-equal scores resolve to the smallest |lag|
    lags = np.arange(-max_lag, max_lag + 1)
    near = np.flatnonzero(scores >= np.max(scores) - TIE_TOLERANCE)
    best_lag = int(lags[near[np.argmin(np.abs(lags[near]))]])
    return finite_or_zero(best_lag * config.hop_size * 1000.0 / sample_rate)
