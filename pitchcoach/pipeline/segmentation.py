# pitchcoach/pipeline/segmentation.py
"""
Note segmentation of a pitch contour.

Two strategies, chosen by data shape:

- CONTINUITY_GREEDY for a raw model contour: median filter, moving average,
  semitone rounding, single-frame gap fill, octave continuity, then greedy
  grouping under a same-note tolerance and an in-note range cap.
- GRID_MERGE for rhythm-grid cells: cells already carry a median pitch, so
  consecutive equal cells are merged without further smoothing.

Contours are handled as float arrays of fractional MIDI with NaN for
unvoiced samples.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .models import (
    NoteEvent,
    PitchFrame,
    RhythmConfig,
    SegmentationOptions,
    SegmentationStrategy,
)
from .pitch_utils import hz_to_midi
from .stabilizer import correct_octave_continuity

logger = logging.getLogger(__name__)

DEFAULT_SEGMENTATION_OPTIONS = SegmentationOptions()

MIN_VELOCITY = 30
MAX_VELOCITY = 120


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clarity_to_velocity(clarities: Sequence[float]) -> int:
    if not clarities:
        return MIN_VELOCITY
    mean = sum(clarities) / len(clarities)
    return int(min(MAX_VELOCITY, max(MIN_VELOCITY, round_half_up(mean * 100.0))))


def frames_to_midi(frames: Sequence[PitchFrame]) -> np.ndarray:
    return np.array(
        [np.nan if f.hz is None or f.hz <= 0 else hz_to_midi(f.hz) for f in frames],
        dtype=np.float64,
    )


def _windows(values: np.ndarray, window: int) -> np.ndarray:
    half = window // 2
    padded = np.concatenate([np.full(half, np.nan), values, np.full(half, np.nan)])
    return sliding_window_view(padded, 2 * half + 1)


def median_filter(values: np.ndarray, window: int) -> np.ndarray:
    """
    Centered median ignoring NaN neighbours (upper median on even counts).
    Unvoiced samples stay unvoiced.
    """
    v = np.asarray(values, dtype=np.float64)
    if window <= 1 or v.size == 0:
        return v.copy()
    win = np.sort(_windows(v, window), axis=1)     # NaN sorts last
    counts = np.count_nonzero(~np.isnan(win), axis=1)
    picked = win[np.arange(v.size), np.minimum(counts // 2, win.shape[1] - 1)]
    return np.where(np.isnan(v) | (counts == 0), np.nan, picked)


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Centered mean ignoring NaN neighbours; unvoiced samples stay unvoiced."""
    v = np.asarray(values, dtype=np.float64)
    if window <= 1 or v.size == 0:
        return v.copy()
    win = _windows(v, window)
    counts = np.count_nonzero(~np.isnan(win), axis=1)
    sums = np.nansum(win, axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = sums / counts
    return np.where(np.isnan(v) | (counts == 0), np.nan, mean)


def quantize_contour(midi: np.ndarray, options: SegmentationOptions) -> List[Optional[int]]:
    """Smooth, round, close single-frame gaps and fix octave slips."""
    smoothed = moving_average(median_filter(midi, options.median_window), options.smoothing_window)
    quantized: List[Optional[int]] = [None if np.isnan(m) else round_half_up(m) for m in smoothed]

    for i in range(1, len(quantized) - 1):
        if quantized[i] is not None:
            continue
        prev, nxt = quantized[i - 1], quantized[i + 1]
        if prev is not None and nxt is not None and abs(prev - nxt) <= options.gap_fill_semitones:
            quantized[i] = round_half_up((prev + nxt) / 2.0)

    corrected = correct_octave_continuity(
        [None if q is None else float(q) for q in quantized],
        max_distance=options.octave_max_distance,
    )
    return [None if c is None else int(c) for c in corrected]


class _OpenNote:
    __slots__ = ("start_sec", "members", "clarities")

    def __init__(self, midi: int, start_sec: float, clarity: float):
        self.start_sec = start_sec
        self.members = [midi]
        self.clarities = [clarity]

    @property
    def pitch(self) -> int:
        ordered = sorted(self.members)
        n = len(ordered)
        mid = ordered[n // 2] if n % 2 else (ordered[n // 2 - 1] + ordered[n // 2]) / 2.0
        return round_half_up(mid)

    def accepts(self, midi: int, options: SegmentationOptions) -> bool:
        if abs(self.pitch - midi) > options.same_note_semitones:
            return False
        lo = min(min(self.members), midi)
        hi = max(max(self.members), midi)
        return hi - lo <= options.max_note_range_semitones

    def add(self, midi: int, clarity: float) -> None:
        self.members.append(midi)
        self.clarities.append(clarity)

    def close(self, end_sec: float, min_duration_sec: float) -> Optional[NoteEvent]:
        duration = end_sec - self.start_sec
        if duration <= 0 or duration < min_duration_sec:
            return None
        return NoteEvent(
            midi_note=self.pitch,
            start_sec=float(self.start_sec),
            end_sec=float(end_sec),
            velocity=clarity_to_velocity(self.clarities),
        )


def segment_continuity(
    frames: Sequence[PitchFrame],
    options: SegmentationOptions = DEFAULT_SEGMENTATION_OPTIONS,
    midi: Optional[np.ndarray] = None,
) -> List[NoteEvent]:
    """
    Continuity-constrained greedy segmentation.

    A note closes at the timestamp of the frame that ends it (an unvoiced
    frame or a frame outside tolerance); a trailing note closes at the last
    frame's timestamp. ``midi`` may carry a precomputed ``frames_to_midi``.
    """
    if not frames:
        return []
    track = frames_to_midi(frames) if midi is None else midi
    quantized = quantize_contour(track, options)

    notes: List[NoteEvent] = []
    current: Optional[_OpenNote] = None

    def _emit(note: Optional[NoteEvent]) -> None:
        if note is not None:
            notes.append(note)

    for frame, q in zip(frames, quantized):
        if len(notes) >= options.max_notes:
            current = None
            break
        if q is None:
            if current is not None:
                _emit(current.close(frame.time_sec, options.min_duration_sec))
                current = None
            continue
        if current is None:
            current = _OpenNote(q, frame.time_sec, frame.clarity)
            continue
        if current.accepts(q, options):
            current.add(q, frame.clarity)
            continue
        _emit(current.close(frame.time_sec, options.min_duration_sec))
        current = _OpenNote(q, frame.time_sec, frame.clarity)

    if current is not None and len(notes) < options.max_notes:
        _emit(current.close(frames[-1].time_sec, options.min_duration_sec))
    return notes


def infer_cell_seconds(cells: Sequence[PitchFrame]) -> float:
    """Median spacing of cell timestamps (0.0 when fewer than two cells)."""
    if len(cells) < 2:
        return 0.0
    diffs = np.diff([c.time_sec for c in cells])
    diffs = diffs[diffs > 0]
    return float(np.median(diffs)) if diffs.size else 0.0


def segment_grid_merge(
    cells: Sequence[PitchFrame],
    options: SegmentationOptions = DEFAULT_SEGMENTATION_OPTIONS,
    cell_seconds: Optional[float] = None,
) -> List[NoteEvent]:
    """
    Merge consecutive voiced cells of identical rounded pitch.

    Each cell spans ``[t - w/2, t + w/2]``. A run closes when the pitch
    changes, a cell is unvoiced, the run reaches ``grid_merge_max_cells``,
    or two cells are further apart than ``w * (1 + grid_gap_tolerance)``.
    """
    if not cells:
        return []
    width = float(cell_seconds) if cell_seconds else infer_cell_seconds(cells)
    if width <= 0:
        logger.debug("Grid merge needs a positive cell width; got %s", width)
        return []
    half = width / 2.0
    max_step = width * (1.0 + options.grid_gap_tolerance)

    notes: List[NoteEvent] = []
    run: List[PitchFrame] = []
    run_midi: Optional[int] = None

    def _close() -> None:
        if not run or len(notes) >= options.max_notes:
            return
        start = max(0.0, run[0].time_sec - half)
        end = run[-1].time_sec + half
        if end - start <= 0 or end - start < options.min_duration_sec:
            return
        notes.append(
            NoteEvent(
                midi_note=int(run_midi),
                start_sec=float(start),
                end_sec=float(end),
                velocity=clarity_to_velocity([c.clarity for c in run]),
            )
        )

    for cell in cells:
        if cell.hz is None or cell.hz <= 0:
            _close()
            run, run_midi = [], None
            continue
        midi = round_half_up(hz_to_midi(cell.hz))
        if (
            run
            and midi == run_midi
            and len(run) < options.grid_merge_max_cells
            and cell.time_sec - run[-1].time_sec <= max_step
        ):
            run.append(cell)
            continue
        _close()
        run, run_midi = [cell], midi
    _close()
    return notes


def select_strategy(rhythm: Optional[RhythmConfig]) -> SegmentationStrategy:
    if rhythm is None:
        return SegmentationStrategy.CONTINUITY_GREEDY
    return SegmentationStrategy.GRID_MERGE


def extract_note_events(
    frames: Sequence[PitchFrame],
    options: SegmentationOptions = DEFAULT_SEGMENTATION_OPTIONS,
    rhythm: Optional[RhythmConfig] = None,
    strategy: Optional[SegmentationStrategy] = None,
) -> List[NoteEvent]:
    """Dispatch to the strategy for ``rhythm`` unless one is forced."""
    chosen = strategy or select_strategy(rhythm)
    if chosen is SegmentationStrategy.GRID_MERGE:
        width = rhythm.cell_seconds if rhythm is not None else None
        return segment_grid_merge(frames, options, cell_seconds=width)
    return segment_continuity(frames, options)
