# pitchcoach/pipeline/grid.py
"""
Rhythmic grid quantization.

Frames are binned into fixed-width cells derived from BPM and subdivision
count, anchored at the click offset. A cell's pitch is the median voiced Hz
of its frames, its clarity the mean clarity of all its frames, and its
timestamp the cell midpoint.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

from .models import PitchFrame, RhythmConfig
from .pitch_utils import median_or_none

logger = logging.getLogger(__name__)


def grid_index_range(end_sec: float, rhythm: RhythmConfig) -> range:
    """Cell indices covering ``[0, end_sec]`` plus one padding cell per side."""
    step = rhythm.cell_seconds
    offset = rhythm.click_offset_ms / 1000.0
    first = math.floor((0.0 - offset) / step) - 1
    last = math.ceil((end_sec - offset) / step) + 1
    return range(first, last + 1)


def quantize_to_rhythm_grid(frames: Sequence[PitchFrame], rhythm: RhythmConfig) -> List[PitchFrame]:
    if not frames:
        return []

    step = rhythm.cell_seconds
    offset = rhythm.click_offset_ms / 1000.0
    end_sec = float(frames[-1].time_sec)

    out: List[PitchFrame] = []
    frame_index = 0
    n = len(frames)
    for grid_index in grid_index_range(end_sec, rhythm):
        cell_start = offset + grid_index * step
        cell_end = cell_start + step

        # frames are time-ordered, so the scan cursor only moves forward
        while frame_index < n and frames[frame_index].time_sec < cell_start:
            frame_index += 1
        hz_values: List[float] = []
        clarity_values: List[float] = []
        scan = frame_index
        while scan < n and frames[scan].time_sec < cell_end:
            frame = frames[scan]
            if frame.hz is not None:
                hz_values.append(float(frame.hz))
            clarity_values.append(float(frame.clarity))
            scan += 1

        clarity = sum(clarity_values) / len(clarity_values) if clarity_values else 0.0
        out.append(
            PitchFrame(
                time_sec=cell_start + step / 2.0,
                hz=median_or_none(hz_values),
                clarity=clarity,
            )
        )

    kept = [f for f in out if 0.0 <= f.time_sec <= end_sec + step]
    logger.debug(
        "Quantized %d frames into %d cells (step=%.4fs, offset=%.1fms)",
        n, len(kept), step, rhythm.click_offset_ms,
    )
    return kept
