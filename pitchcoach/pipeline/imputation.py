# pitchcoach/pipeline/imputation.py
"""
Gap imputation on the user's grid sequence.

Both passes only extend real user evidence. The reference-guided hold still
raises detected coverage without new evidence, so results are always
returned as an (observed, imputed) pair and the hold sets ``metric_risk``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Sequence, Tuple

from .config import ImputationConfig
from .models import ImputationResult, PitchFrame
from .pitch_utils import hz_to_midi, midi_to_hz

logger = logging.getLogger(__name__)

DEFAULT_IMPUTATION_CONFIG = ImputationConfig()


def fill_short_null_gaps(
    frames: Sequence[PitchFrame],
    max_gap_cells: int = 2,
    max_semitone_diff: float = 2.0,
    clarity_discount: float = 0.9,
) -> Tuple[List[PitchFrame], int]:
    """
    Interpolate unvoiced runs of at most ``max_gap_cells`` linearly in
    semitone space between the flanking voiced cells.

    Returns the new sequence and the number of filled cells.
    """
    out = list(frames)
    n = len(out)
    filled = 0
    i = 0
    while i < n:
        if out[i].hz is not None:
            i += 1
            continue
        start = i
        while i < n and out[i].hz is None:
            i += 1
        gap = i - start
        if gap > max_gap_cells or start == 0 or i >= n:
            continue

        prev, nxt = out[start - 1], out[i]
        prev_midi = hz_to_midi(prev.hz)
        next_midi = hz_to_midi(nxt.hz)
        if abs(prev_midi - next_midi) > max_semitone_diff:
            continue

        clarity = min(prev.clarity, nxt.clarity) * clarity_discount
        for k in range(gap):
            ratio = (k + 1) / (gap + 1)
            midi = prev_midi * (1.0 - ratio) + next_midi * ratio
            out[start + k] = replace(out[start + k], hz=midi_to_hz(midi), clarity=clarity)
            filled += 1
    return out, filled


def hold_voicing_on_reference_cells(
    user_frames: Sequence[PitchFrame],
    ref_frames: Sequence[PitchFrame],
    hold_budget: int = 1,
    clarity_discount: float = 0.8,
    clarity_floor: float = 0.15,
) -> Tuple[List[PitchFrame], int]:
    """
    Carry the previous user pitch into unvoiced user cells whose co-indexed
    reference cell is voiced, for at most ``hold_budget`` consecutive cells.

    The carried pitch is always the user's own, never the reference's.
    """
    out = list(user_frames)
    held = 0
    run = 0
    for i, user in enumerate(out):
        ref = ref_frames[i] if i < len(ref_frames) else None
        if user.hz is not None or ref is None or ref.hz is None:
            run = 0
            continue
        prev = out[i - 1] if i > 0 else None
        if prev is None or prev.hz is None or run >= hold_budget:
            continue
        out[i] = replace(user, hz=prev.hz, clarity=max(clarity_floor, prev.clarity * clarity_discount))
        run += 1
        held += 1
    return out, held


def impute_user_grid(
    user_grid: Sequence[PitchFrame],
    ref_grid: Sequence[PitchFrame],
    config: ImputationConfig = DEFAULT_IMPUTATION_CONFIG,
) -> ImputationResult:
    """Run the enabled passes; ``observed`` is always the untouched input."""
    observed = list(user_grid)
    imputed = list(user_grid)
    filled = held = 0

    if config.fill_short_gaps:
        imputed, filled = fill_short_null_gaps(
            imputed,
            max_gap_cells=config.max_gap_cells,
            max_semitone_diff=config.max_gap_semitones,
            clarity_discount=config.gap_clarity_discount,
        )
    if config.reference_guided_hold:
        imputed, held = hold_voicing_on_reference_cells(
            imputed,
            ref_grid,
            hold_budget=config.hold_budget,
            clarity_discount=config.hold_clarity_discount,
            clarity_floor=config.hold_clarity_floor,
        )
        logger.warning(
            "Reference-guided hold is enabled: %d cells held; imputed coverage is not accuracy evidence",
            held,
        )

    logger.debug("Imputation filled=%d held=%d over %d cells", filled, held, len(observed))
    return ImputationResult(
        observed=observed,
        imputed=imputed,
        filled_cells=filled,
        held_cells=held,
        metric_risk=bool(config.reference_guided_hold),
    )
