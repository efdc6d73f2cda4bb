import math

import numpy as np
import pytest

from pitchcoach.pipeline.config import DecoderConfig
from pitchcoach.pipeline.decoder import (
    build_candidates,
    decode_probability_rows,
    emission_cost,
    transition_cost,
    viterbi_decode,
)
from pitchcoach.pipeline.models import Candidate


def _row(entries, size=88):
    row = np.zeros(size)
    for idx, p in entries.items():
        row[idx] = p
    return row


def test_candidates_silence_first_and_probability():
    cands = build_candidates(_row({48: 0.7, 50: 0.2}), midi_base=21)
    assert cands[0].midi is None
    assert cands[0].probability == pytest.approx(0.9 - 0.7)
    assert [c.midi for c in cands[1:]] == [69, 71]


def test_candidates_floor_and_top_k():
    row = np.full(40, 0.5)
    row[:5] = 0.01  # below floor
    cands = build_candidates(row, midi_base=0, config=DecoderConfig(top_k=8))
    assert len(cands) == 1 + 8
    assert all(c.probability > 0.02 for c in cands[1:])

    only_weak = build_candidates(np.full(10, 0.015), midi_base=0)
    assert len(only_weak) == 1
    assert only_weak[0].midi is None


def test_candidates_never_empty_and_silence_floor():
    cands = build_candidates([], midi_base=21)
    assert len(cands) == 1
    assert cands[0].probability == pytest.approx(0.9)

    strong = build_candidates(_row({10: 1.0}), midi_base=21)
    assert strong[0].probability == pytest.approx(0.02)


def test_candidates_equal_probability_keeps_lower_pitch_first():
    cands = build_candidates(_row({30: 0.4, 20: 0.4}), midi_base=21)
    assert [c.midi for c in cands[1:]] == [41, 51]


@pytest.mark.parametrize(
    "a,b,expected",
    [
        (60, 60, 0.0),
        (60, 62, 0.06),
        (60, 65, 0.9),
        (60, 72, 12 * 0.18),
        (60, 80, 0.9 + 0.08 * 20),
        (None, 60, 0.12),
        (60, None, 0.12),
        (None, None, 0.0),
    ],
)
def test_transition_cost_tiers(a, b, expected):
    assert transition_cost(a, b) == pytest.approx(expected)


def test_emission_cost_penalties():
    assert emission_cost(Candidate(60, 0.5)) == pytest.approx(-math.log(0.5))
    assert emission_cost(Candidate(None, 0.5)) == pytest.approx(-math.log(0.5) + 0.15)
    assert emission_cost(Candidate(60, 0.05)) == pytest.approx(-math.log(0.05) + 0.35)
    # epsilon floor keeps log finite
    assert math.isfinite(emission_cost(Candidate(60, 0.0)))


def test_viterbi_empty_input():
    assert viterbi_decode([]) == []
    assert decode_probability_rows([]) == []


def test_viterbi_prefers_continuity_over_octave_slip():
    frames = [
        [Candidate(None, 0.02), Candidate(60, 0.9)],
        [Candidate(None, 0.4), Candidate(72, 0.5), Candidate(60, 0.45)],
        [Candidate(None, 0.02), Candidate(60, 0.9)],
    ]
    path = viterbi_decode(frames)
    assert [s.midi for s in path] == [60, 60, 60]
    assert path[1].probability == pytest.approx(0.45)


def test_viterbi_final_tie_picks_lowest_index():
    path = viterbi_decode([[Candidate(None, 0.4), Candidate(60, 0.5), Candidate(61, 0.5)]])
    assert path[0].midi == 60


def test_viterbi_silence_run_decoded():
    rows = [_row({48: 0.9})] * 3 + [_row({})] * 4 + [_row({48: 0.9})] * 3
    path = decode_probability_rows(rows, midi_base=21)
    assert [s.midi for s in path] == [69] * 3 + [None] * 4 + [69] * 3


def test_decoder_length_and_probabilities_come_from_rows():
    rng = np.random.default_rng(7)
    rows = rng.random((60, 88)) ** 4
    path = decode_probability_rows(rows, midi_base=21)
    assert len(path) == len(rows)
    for row, step in zip(rows, path):
        if step.midi is not None:
            assert row[step.midi - 21] == pytest.approx(step.probability)


def test_decoder_is_deterministic():
    rng = np.random.default_rng(3)
    rows = rng.random((40, 88)) ** 3
    assert decode_probability_rows(rows) == decode_probability_rows(rows)
