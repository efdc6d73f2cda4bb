# pitchcoach/pipeline/stabilizer.py
"""
Deterministic post-passes over a decoded path.

1. Short-gap fill: tiny silence runs between two close voiced picks get the
   rounded midpoint pitch.
2. Octave continuity: voiced picks are moved by whole octaves toward a
   smoothed anchor pitch, or demoted to silence when no shift is plausible.

Neither pass voices a frame outside the gap-fill rule.
"""

from __future__ import annotations

import logging
from typing import List, NamedTuple, Optional, Sequence, Tuple

from .config import StabilizerConfig
from .models import DecodeStep, PitchFrame
from .pitch_utils import midi_to_hz

logger = logging.getLogger(__name__)

DEFAULT_STABILIZER_CONFIG = StabilizerConfig()


class AnchorState(NamedTuple):
    anchor: Optional[float]
    accepted: int


def octave_step(
    state: AnchorState,
    value: Optional[float],
    *,
    keep: float = 0.75,
    max_shift: int = 2,
    max_distance: float = 9.0,
) -> Tuple[AnchorState, Optional[float]]:
    """
    One fold step of octave-continuity correction.

    Returns the next state and the corrected value (None when demoted).
    """
    if value is None:
        return state, None
    if state.anchor is None:
        return AnchorState(float(value), state.accepted + 1), value

    best = value
    best_abs = abs(value - state.anchor)
    for shift in range(-max_shift, max_shift + 1):
        candidate = value + 12 * shift
        dist = abs(candidate - state.anchor)
        if dist < best_abs:
            best_abs = dist
            best = candidate

    if best_abs > max_distance:
        return state, None

    anchor = state.anchor * keep + float(best) * (1.0 - keep)
    return AnchorState(anchor, state.accepted + 1), best


def correct_octave_continuity(
    values: Sequence[Optional[float]],
    *,
    keep: float = 0.75,
    max_shift: int = 2,
    max_distance: float = 9.0,
) -> List[Optional[float]]:
    state = AnchorState(None, 0)
    out: List[Optional[float]] = []
    for value in values:
        state, corrected = octave_step(
            state, value, keep=keep, max_shift=max_shift, max_distance=max_distance
        )
        out.append(corrected)
    return out


def fill_short_path_gaps(
    path: Sequence[DecodeStep],
    config: StabilizerConfig = DEFAULT_STABILIZER_CONFIG,
) -> List[DecodeStep]:
    out = list(path)
    n = len(out)
    i = 0
    while i < n:
        if out[i].midi is not None:
            i += 1
            continue
        start = i
        while i < n and out[i].midi is None:
            i += 1
        gap = i - start
        if start == 0 or i >= n or gap > config.max_gap_frames:
            continue
        prev, nxt = out[start - 1], out[i]
        if abs(prev.midi - nxt.midi) > config.gap_semitones:
            continue
        midi = int(round((prev.midi + nxt.midi) / 2.0))
        prob = min(prev.probability, nxt.probability) * config.gap_probability_discount
        for k in range(start, i):
            out[k] = DecodeStep(midi=midi, probability=prob)
    return out


def stabilize_path(
    path: Sequence[DecodeStep],
    config: StabilizerConfig = DEFAULT_STABILIZER_CONFIG,
) -> List[DecodeStep]:
    filled = fill_short_path_gaps(path, config)
    corrected = correct_octave_continuity(
        [None if s.midi is None else float(s.midi) for s in filled],
        keep=config.anchor_keep,
        max_shift=config.max_octave_shift,
        max_distance=config.max_anchor_distance,
    )
    out: List[DecodeStep] = []
    demoted = 0
    for step, midi in zip(filled, corrected):
        if midi is None and step.midi is not None:
            demoted += 1
        out.append(DecodeStep(midi=None if midi is None else int(midi), probability=step.probability))
    if demoted:
        logger.debug("Octave continuity demoted %d frames to silence", demoted)
    return out


def path_to_frames(path: Sequence[DecodeStep], frame_seconds: float) -> List[PitchFrame]:
    return [
        PitchFrame(
            time_sec=float(i * frame_seconds),
            hz=None if step.midi is None else midi_to_hz(step.midi),
            clarity=float(step.probability),
        )
        for i, step in enumerate(path)
    ]
