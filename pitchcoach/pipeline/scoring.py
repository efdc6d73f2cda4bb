# pitchcoach/pipeline/scoring.py
"""
Pitch error scoring between a reference and a time-shifted user contour.
"""

from __future__ import annotations

import bisect
import logging
from typing import List, Optional, Sequence

import numpy as np

from .models import AnalysisStats, ErrorFrame, ErrorSegment, PitchFrame
from .pitch_utils import cents_error, finite_or_zero

logger = logging.getLogger(__name__)


def find_nearest_frame(
    frames: Sequence[PitchFrame],
    target_sec: float,
    times: Optional[Sequence[float]] = None,
) -> Optional[PitchFrame]:
    """
    Frame closest in time to ``target_sec`` (binary search).

    On an exact distance tie the later frame wins. ``times`` may be passed
    to avoid rebuilding the timestamp index per lookup.
    """
    if not frames:
        return None
    if times is None:
        times = [f.time_sec for f in frames]
    lo = bisect.bisect_left(times, target_sec)
    if lo >= len(frames):
        return frames[-1]
    current = frames[lo]
    if lo == 0:
        return current
    prev = frames[lo - 1]
    if abs(prev.time_sec - target_sec) < abs(current.time_sec - target_sec):
        return prev
    return current


def compute_error_frames(
    ref_frames: Sequence[PitchFrame],
    user_frames: Sequence[PitchFrame],
    total_offset_sec: float,
) -> List[ErrorFrame]:
    """One ErrorFrame per reference frame; cents is None when nothing is comparable."""
    times = [f.time_sec for f in user_frames]
    out: List[ErrorFrame] = []
    for ref in ref_frames:
        if ref.hz is None:
            out.append(ErrorFrame(time_sec=ref.time_sec, cents=None, reference_voiced=False))
            continue
        candidate = find_nearest_frame(user_frames, ref.time_sec + total_offset_sec, times)
        if candidate is None or candidate.hz is None:
            out.append(ErrorFrame(time_sec=ref.time_sec, cents=None))
            continue
        out.append(ErrorFrame(time_sec=ref.time_sec, cents=cents_error(candidate.hz, ref.hz)))
    return out


def summarize_errors(error_frames: Sequence[ErrorFrame], tolerance_cents: float) -> AnalysisStats:
    """
    Aggregate |cents| over valid (non-null) entries.

    ``pass_ratio`` is relative to valid entries, ``undetected_ratio`` to all
    reference entries: a null entry counts as undetected whether the user or
    the reference was unvoiced there.
    """
    if not error_frames:
        return AnalysisStats()
    valid = np.array([abs(e.cents) for e in error_frames if e.cents is not None], dtype=np.float64)
    total = len(error_frames)

    undetected = total - valid.size
    if valid.size == 0:
        return AnalysisStats(undetected_ratio=finite_or_zero(undetected / total))

    return AnalysisStats(
        mean_abs_cents=finite_or_zero(np.mean(valid)),
        median_abs_cents=finite_or_zero(np.median(valid)),
        max_abs_cents=finite_or_zero(np.max(valid)),
        pass_ratio=finite_or_zero(np.count_nonzero(valid <= tolerance_cents) / valid.size),
        undetected_ratio=finite_or_zero(undetected / total),
    )


def build_error_segments(
    error_frames: Sequence[ErrorFrame],
    tolerance_cents: float,
    min_duration_sec: float = 0.2,
    top_n: int = 3,
) -> List[ErrorSegment]:
    """Worst contiguous out-of-tolerance runs, ranked by |average cents|."""
    segments: List[ErrorSegment] = []
    start = end = 0.0
    values: List[float] = []

    def _close() -> None:
        if values and end - start >= min_duration_sec:
            segments.append(ErrorSegment(start_sec=start, end_sec=end, avg_cents=sum(values) / len(values)))

    for frame in error_frames:
        exceeds = frame.cents is not None and abs(frame.cents) > tolerance_cents
        if not exceeds:
            _close()
            values = []
            continue
        if not values:
            start = frame.time_sec
        end = frame.time_sec
        values.append(float(frame.cents))
    _close()

    segments.sort(key=lambda s: abs(s.avg_cents), reverse=True)
    return segments[: max(0, int(top_n))]
