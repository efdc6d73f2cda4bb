import random

import pytest

from pitchcoach.pipeline.config import StabilizerConfig
from pitchcoach.pipeline.models import DecodeStep
from pitchcoach.pipeline.stabilizer import (
    AnchorState,
    correct_octave_continuity,
    fill_short_path_gaps,
    octave_step,
    path_to_frames,
    stabilize_path,
)


def _path(midis, p=0.8):
    return [DecodeStep(midi=m, probability=p) for m in midis]


def test_single_gap_filled_with_midpoint():
    out = fill_short_path_gaps([DecodeStep(60, 0.8), DecodeStep(None, 0.5), DecodeStep(62, 0.6)])
    assert out[1].midi == 61
    assert out[1].probability == pytest.approx(0.6 * 0.9)


@pytest.mark.parametrize(
    "midis",
    [
        [60, None, None, 60],   # run longer than max_gap_frames
        [None, 60, 60],         # no left neighbour
        [60, 60, None],         # no right neighbour
        [60, None, 65],         # neighbours too far apart
    ],
)
def test_gaps_left_alone(midis):
    assert [s.midi for s in fill_short_path_gaps(_path(midis))] == midis


def test_longer_gap_window_is_configurable():
    out = fill_short_path_gaps(_path([60, None, None, 60]), StabilizerConfig(max_gap_frames=2))
    assert [s.midi for s in out] == [60, 60, 60, 60]


def test_octave_step_first_value_sets_anchor():
    state, value = octave_step(AnchorState(None, 0), 64.0)
    assert state == AnchorState(64.0, 1)
    assert value == 64.0


def test_octave_step_blends_anchor():
    state, value = octave_step(AnchorState(60.0, 1), 64.0)
    assert value == 64.0
    assert state.anchor == pytest.approx(61.0)
    assert state.accepted == 2


def test_octave_step_unvoiced_keeps_state():
    state = AnchorState(60.0, 3)
    assert octave_step(state, None) == (state, None)


def test_octave_slip_is_folded_back():
    assert correct_octave_continuity([60, 60, 72, 60, 48]) == [60, 60, 60, 60, 60]


def test_implausible_jump_demoted_without_moving_anchor():
    out = correct_octave_continuity([60, 100, 61])
    assert out == [60, None, 61]


def test_stabilize_path_preserves_probability_and_length():
    path = _path([60, None, 60, 72], p=0.7)
    out = stabilize_path(path)
    assert len(out) == len(path)
    assert [s.midi for s in out] == [60, 60, 60, 60]
    assert out[1].probability == pytest.approx(0.7 * 0.9)
    assert out[3].probability == pytest.approx(0.7)


def test_gap_fill_runs_before_octave_correction():
    # the gap is judged on the raw neighbours (72 vs 60), so it stays silent
    out = stabilize_path(_path([60, 72, None, 60]))
    assert [s.midi for s in out] == [60, 60, None, 60]


def test_never_voices_silence_outside_gap_rule():
    rng = random.Random(11)
    for _ in range(50):
        midis = [rng.choice([None, None, 55, 57, 60, 67, 72, 84]) for _ in range(40)]
        out = stabilize_path(_path(midis))
        for i, (before, after) in enumerate(zip(midis, out)):
            if before is None and after.midi is not None:
                # only isolated single-frame gaps between close picks
                assert 0 < i < len(midis) - 1
                assert midis[i - 1] is not None and midis[i + 1] is not None
                assert abs(midis[i - 1] - midis[i + 1]) <= 2


def test_path_to_frames_timestamps_and_hz():
    frames = path_to_frames(_path([69, None]), frame_seconds=0.5)
    assert frames[0].time_sec == 0.0
    assert frames[0].hz == pytest.approx(440.0)
    assert frames[0].clarity == pytest.approx(0.8)
    assert frames[1].time_sec == 0.5
    assert frames[1].hz is None
