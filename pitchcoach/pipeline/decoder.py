# pitchcoach/pipeline/decoder.py
"""
Candidate building and Viterbi decoding over per-frame pitch probabilities.

Each probability row maps index ``i`` to MIDI note ``midi_base + i``. Every
frame gets a capped, ranked candidate list plus a synthetic silence option,
and a forward dynamic program picks one candidate per frame minimizing
emission + transition cost.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from .config import DecoderConfig
from .models import Candidate, DecodeStep

logger = logging.getLogger(__name__)

DEFAULT_DECODER_CONFIG = DecoderConfig()


def build_candidates(
    row: Sequence[float],
    midi_base: int = 21,
    config: DecoderConfig = DEFAULT_DECODER_CONFIG,
) -> List[Candidate]:
    """Top-K voiced candidates above the floor, preceded by the silence option."""
    probs = np.asarray(row, dtype=np.float64).reshape(-1)
    ranked: List[Candidate] = []
    if probs.size:
        # stable sort keeps the lower pitch first on equal probability
        order = np.argsort(-probs, kind="stable")[: max(0, int(config.top_k))]
        for idx in order:
            p = float(probs[idx])
            if p > config.min_probability:
                ranked.append(Candidate(midi=int(midi_base + idx), probability=p))

    best = ranked[0].probability if ranked else 0.0
    silence_p = max(config.min_probability, config.silence_baseline - best)
    return [Candidate(midi=None, probability=float(silence_p))] + ranked


def transition_cost(
    from_midi: Optional[int],
    to_midi: Optional[int],
    config: DecoderConfig = DEFAULT_DECODER_CONFIG,
) -> float:
    if from_midi is None and to_midi is None:
        return 0.0
    if from_midi is None or to_midi is None:
        return config.voicing_change_cost
    d = abs(int(to_midi) - int(from_midi))
    if d <= config.small_step_semitones:
        return d * config.small_step_cost
    if d <= config.octave_semitones:
        return d * config.jump_cost
    return config.large_jump_base + d * config.large_jump_cost


def emission_cost(candidate: Candidate, config: DecoderConfig = DEFAULT_DECODER_CONFIG) -> float:
    cost = -math.log(max(config.epsilon, candidate.probability))
    if candidate.midi is None:
        cost += config.silence_penalty
    if candidate.probability < config.weak_threshold:
        cost += config.weak_penalty
    return cost


def _midi_array(cands: List[Candidate]) -> np.ndarray:
    return np.array([np.nan if c.midi is None else float(c.midi) for c in cands], dtype=np.float64)


def _transition_matrix(prev: np.ndarray, cur: np.ndarray, config: DecoderConfig) -> np.ndarray:
    """Vectorized ``transition_cost`` for every (prev j, cur i) pair, shape (P, C)."""
    prev_sil = np.isnan(prev)[:, None]
    cur_sil = np.isnan(cur)[None, :]
    d = np.abs(np.nan_to_num(cur)[None, :] - np.nan_to_num(prev)[:, None])

    voiced = np.where(
        d <= config.small_step_semitones,
        d * config.small_step_cost,
        np.where(
            d <= config.octave_semitones,
            d * config.jump_cost,
            config.large_jump_base + d * config.large_jump_cost,
        ),
    )
    return np.where(
        prev_sil & cur_sil,
        0.0,
        np.where(prev_sil | cur_sil, config.voicing_change_cost, voiced),
    )


def _emission_vector(cands: List[Candidate], config: DecoderConfig) -> np.ndarray:
    return np.array([emission_cost(c, config) for c in cands], dtype=np.float64)


def viterbi_decode(
    candidates_per_frame: Sequence[List[Candidate]],
    config: DecoderConfig = DEFAULT_DECODER_CONFIG,
) -> List[DecodeStep]:
    """
    Minimum-cost path through the candidate lattice, one step per frame.
    Ties resolve to the lowest candidate index, so output is deterministic.
    """
    T = len(candidates_per_frame)
    if T == 0:
        return []

    midis = [_midi_array(c) for c in candidates_per_frame]
    cost = _emission_vector(candidates_per_frame[0], config)
    back: List[np.ndarray] = [np.full(len(candidates_per_frame[0]), -1, dtype=np.int64)]

    for t in range(1, T):
        total = cost[:, None] + _transition_matrix(midis[t - 1], midis[t], config)
        best_prev = np.argmin(total, axis=0)
        cost = total[best_prev, np.arange(total.shape[1])] + _emission_vector(candidates_per_frame[t], config)
        back.append(best_prev)

    index = int(np.argmin(cost))
    path: List[Optional[DecodeStep]] = [None] * T
    for t in range(T - 1, -1, -1):
        cand = candidates_per_frame[t][index]
        path[t] = DecodeStep(midi=cand.midi, probability=cand.probability)
        index = int(back[t][index])

    return [step for step in path if step is not None]


def decode_probability_rows(
    rows: Sequence[Sequence[float]],
    midi_base: int = 21,
    config: DecoderConfig = DEFAULT_DECODER_CONFIG,
) -> List[DecodeStep]:
    """Candidate building + Viterbi over a full-signal probability matrix."""
    candidates = [build_candidates(row, midi_base, config) for row in rows]
    path = viterbi_decode(candidates, config)
    voiced = sum(1 for s in path if s.midi is not None)
    logger.debug("Decoded %d frames (%d voiced)", len(path), voiced)
    return path
