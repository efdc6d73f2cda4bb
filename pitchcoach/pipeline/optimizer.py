# pitchcoach/pipeline/optimizer.py
"""
Exhaustive search over continuity-greedy segmentation options.

Every combination of the search grid is segmented and scored with a
composite objective; the best one wins, ties going to the earliest
combination so serial and pooled runs agree. Two fallback passes handle
under-segmentation:

- aggressive: one low-threshold configuration, kept only when it yields
  materially more notes without a large score regression.
- densify: long notes are cut into target-sized chunks whose pitch is
  re-derived from the contour, kept only within a score tolerance.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import math
from concurrent.futures import ProcessPoolExecutor
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .config import SegmentationSearchConfig
from .models import (
    NoteEvent,
    PitchFrame,
    SegmentationDebugScore,
    SegmentationOptions,
    SegmentationResult,
    SegmentationStrategy,
)
from .segmentation import frames_to_midi, infer_cell_seconds, round_half_up, segment_continuity
from .utils_config import UnknownConfigKeyError

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_CONFIG = SegmentationSearchConfig()

_OPTION_FIELDS = {f.name for f in dataclasses.fields(SegmentationOptions)}


class ScoredOption(NamedTuple):
    index: int
    options: SegmentationOptions
    notes: List[NoteEvent]
    score: SegmentationDebugScore


# ------------------------------------------------------------
# Grid
# ------------------------------------------------------------

def _check_option_keys(keys) -> None:
    unknown = sorted(set(keys) - _OPTION_FIELDS)
    if unknown:
        raise UnknownConfigKeyError(f"unknown segmentation option(s): {', '.join(unknown)}")


def iter_search_options(
    grid: Mapping[str, Sequence[Any]],
    base: Optional[SegmentationOptions] = None,
) -> Iterator[SegmentationOptions]:
    """Cartesian product of ``grid`` applied over ``base``, in key order."""
    base = base or SegmentationOptions()
    keys = list(grid.keys())
    _check_option_keys(keys)
    for values in itertools.product(*(grid[k] for k in keys)):
        yield dataclasses.replace(base, **dict(zip(keys, values)))


# ------------------------------------------------------------
# Objective
# ------------------------------------------------------------

def voiced_seconds(frames: Sequence[PitchFrame], midi: Optional[np.ndarray] = None) -> float:
    """Voiced frame count times the inferred frame spacing."""
    midi = frames_to_midi(frames) if midi is None else midi
    return int(np.count_nonzero(~np.isnan(midi))) * infer_cell_seconds(frames)


def target_note_count(voiced_sec: float, search: SegmentationSearchConfig = DEFAULT_SEARCH_CONFIG) -> float:
    raw = voiced_sec / search.seconds_per_note if search.seconds_per_note > 0 else 0.0
    return float(min(search.target_max_notes, max(search.target_min_notes, raw)))


def _mean_abs_cents_within(notes: Sequence[NoteEvent], times: np.ndarray, midi: np.ndarray) -> float:
    total = 0.0
    count = 0
    for note in notes:
        lo = int(np.searchsorted(times, note.start_sec, side="left"))
        hi = int(np.searchsorted(times, note.end_sec, side="left"))
        seg = midi[lo:hi]
        seg = seg[~np.isnan(seg)]
        if seg.size:
            total += float(np.sum(np.abs(seg - note.midi_note))) * 100.0
            count += seg.size
    return total / count if count else 0.0


def score_notes(
    notes: Sequence[NoteEvent],
    frames: Sequence[PitchFrame],
    search: SegmentationSearchConfig = DEFAULT_SEARCH_CONFIG,
    midi: Optional[np.ndarray] = None,
) -> SegmentationDebugScore:
    """Composite objective for one segmentation of ``frames``."""
    w = search.weights
    midi = frames_to_midi(frames) if midi is None else midi
    times = np.array([f.time_sec for f in frames], dtype=np.float64)
    voiced_sec = voiced_seconds(frames, midi)

    n = len(notes)
    covered = sum(note.duration_sec for note in notes)
    coverage = min(search.coverage_cap, covered / voiced_sec) if voiced_sec > 0 else 0.0
    mean_abs_cents = _mean_abs_cents_within(notes, times, midi)
    jumps = sum(
        1 for a, b in zip(notes, notes[1:]) if abs(b.midi_note - a.midi_note) >= search.jump_semitones
    )
    jump_ratio = jumps / (n - 1) if n > 1 else 0.0
    short_ratio = sum(1 for note in notes if note.duration_sec < search.min_audible_sec) / n if n else 0.0

    target = target_note_count(voiced_sec, search)
    note_count_score = -w.get("note_count", 0.0) * abs(math.log(max(n, 1) / target))
    low_floor = search.low_count_fraction * target
    low_count_penalty = w.get("low_count", 0.0) * (1.0 - n / low_floor) if n < low_floor else 0.0

    score = (
        coverage * w.get("coverage", 0.0)
        - mean_abs_cents * w.get("mean_abs_cents", 0.0)
        - jump_ratio * w.get("jump_ratio", 0.0)
        - short_ratio * w.get("short_note_ratio", 0.0)
        - low_count_penalty
        + note_count_score
    )
    return SegmentationDebugScore(
        score=float(score),
        coverage=float(coverage),
        mean_abs_cents_within_notes=float(mean_abs_cents),
        note_count=n,
        jump_ratio=float(jump_ratio),
        short_note_ratio=float(short_ratio),
    )


# ------------------------------------------------------------
# Evaluation (serial or process pool)
# ------------------------------------------------------------

def _better(a: Optional[ScoredOption], b: Optional[ScoredOption]) -> Optional[ScoredOption]:
    """Keep-best reduction: higher score, then lower combination index."""
    if a is None:
        return b
    if b is None:
        return a
    if b.score.score > a.score.score or (b.score.score == a.score.score and b.index < a.index):
        return b
    return a


def _evaluate_chunk(
    frames: Sequence[PitchFrame],
    chunk: Sequence[Tuple[int, SegmentationOptions]],
    search: SegmentationSearchConfig,
) -> Optional[ScoredOption]:
    midi = frames_to_midi(frames)
    best: Optional[ScoredOption] = None
    for index, options in chunk:
        notes = segment_continuity(frames, options, midi=midi)
        best = _better(best, ScoredOption(index, options, notes, score_notes(notes, frames, search, midi)))
    return best


def _chunks(items: List[Tuple[int, SegmentationOptions]], n_chunks: int) -> List[List[Tuple[int, SegmentationOptions]]]:
    size = max(1, math.ceil(len(items) / max(1, n_chunks)))
    return [items[i:i + size] for i in range(0, len(items), size)]


def search_best(
    frames: Sequence[PitchFrame],
    combinations: List[Tuple[int, SegmentationOptions]],
    search: SegmentationSearchConfig = DEFAULT_SEARCH_CONFIG,
) -> Optional[ScoredOption]:
    workers = int(search.max_workers or 1)
    if workers <= 1 or len(combinations) < 2:
        return _evaluate_chunk(frames, combinations, search)

    frames = list(frames)
    best: Optional[ScoredOption] = None
    with ProcessPoolExecutor(max_workers=workers) as ex:
        futures = [
            ex.submit(_evaluate_chunk, frames, chunk, search)
            for chunk in _chunks(combinations, workers * 4)
        ]
        for fut in futures:
            best = _better(best, fut.result())
    return best


# ------------------------------------------------------------
# Fallback passes
# ------------------------------------------------------------

def densify_notes(
    notes: Sequence[NoteEvent],
    frames: Sequence[PitchFrame],
    chunk_sec: float,
    midi: Optional[np.ndarray] = None,
) -> List[NoteEvent]:
    """
    Split notes longer than two chunks into equal sub-notes of about
    ``chunk_sec``; each sub-note takes the rounded median contour pitch
    inside it, falling back to the parent pitch when it has no voiced sample.
    """
    if chunk_sec <= 0:
        return list(notes)
    midi = frames_to_midi(frames) if midi is None else midi
    times = np.array([f.time_sec for f in frames], dtype=np.float64)

    out: List[NoteEvent] = []
    for note in notes:
        pieces = int(note.duration_sec // chunk_sec)
        if pieces < 2:
            out.append(note)
            continue
        edges = np.linspace(note.start_sec, note.end_sec, pieces + 1)
        for start, end in zip(edges[:-1], edges[1:]):
            lo = int(np.searchsorted(times, start, side="left"))
            hi = int(np.searchsorted(times, end, side="left"))
            seg = midi[lo:hi]
            seg = seg[~np.isnan(seg)]
            pitch = round_half_up(float(np.median(seg))) if seg.size else note.midi_note
            out.append(NoteEvent(midi_note=pitch, start_sec=float(start), end_sec=float(end), velocity=note.velocity))
    return out


def optimize_segmentation(
    frames: Sequence[PitchFrame],
    search: SegmentationSearchConfig = DEFAULT_SEARCH_CONFIG,
    base_options: Optional[SegmentationOptions] = None,
) -> SegmentationResult:
    """Grid search plus aggressive/densify fallbacks; deterministic for a given input."""
    base = base_options or SegmentationOptions()
    if not frames:
        return SegmentationResult(options=base, strategy=SegmentationStrategy.CONTINUITY_GREEDY)

    combinations = list(enumerate(iter_search_options(search.grid, base)))
    best = search_best(frames, combinations, search)
    tried = len(combinations)
    if best is None:
        return SegmentationResult(options=base, configurations_tried=tried)

    passes = ["search"]
    midi = frames_to_midi(frames)
    voiced_sec = voiced_seconds(frames, midi)
    target = target_note_count(voiced_sec, search)
    under = search.under_target_fraction * target
    logger.debug(
        "Segmentation search: %d combos, best=%.3f notes=%d target=%.1f",
        tried, best.score.score, best.score.note_count, target,
    )

    if best.score.note_count < under:
        _check_option_keys(search.aggressive_options)
        options = dataclasses.replace(best.options, **search.aggressive_options)
        notes = segment_continuity(frames, options, midi=midi)
        score = score_notes(notes, frames, search, midi)
        tried += 1
        if (
            len(notes) > best.score.note_count
            and len(notes) >= best.score.note_count * search.aggressive_min_gain
            and score.score >= best.score.score - search.aggressive_max_regression
        ):
            best = ScoredOption(tried - 1, options, notes, score)
            passes.append("aggressive")
        else:
            logger.debug("Aggressive pass rejected (notes=%d score=%.3f)", len(notes), score.score)

    if best.score.note_count < under and voiced_sec > 0:
        notes = densify_notes(best.notes, frames, voiced_sec / target, midi)
        score = score_notes(notes, frames, search, midi)
        if len(notes) > best.score.note_count and score.score >= best.score.score - search.densify_max_regression:
            best = ScoredOption(best.index, best.options, notes, score)
            passes.append("densify")
        else:
            logger.debug("Densify pass rejected (notes=%d score=%.3f)", len(notes), score.score)

    return SegmentationResult(
        notes=list(best.notes),
        options=best.options,
        debug_score=best.score,
        configurations_tried=tried,
        strategy=SegmentationStrategy.CONTINUITY_GREEDY,
        passes=passes,
    )


def search_summary(result: SegmentationResult) -> Dict[str, Any]:
    """Compact dict for logs / debug exports."""
    return {
        "configurations_tried": result.configurations_tried,
        "passes": list(result.passes),
        "score": result.debug_score.score,
        "note_count": result.debug_score.note_count,
        "options": dataclasses.asdict(result.options),
    }
