import dataclasses
import random

import numpy as np
import pytest

from pitchcoach.pipeline.models import (
    PitchFrame,
    RhythmConfig,
    SegmentationOptions,
    SegmentationStrategy,
)
from pitchcoach.pipeline.pitch_utils import midi_to_hz
from pitchcoach.pipeline.segmentation import (
    clarity_to_velocity,
    extract_note_events,
    median_filter,
    moving_average,
    segment_continuity,
    segment_grid_merge,
    select_strategy,
)

from pitchcoach.tests.audio_utils import frames_from_midi

NAN = np.nan


def _cells(midis, step=0.125, clarity=0.8):
    return [
        PitchFrame(time_sec=(i + 0.5) * step, hz=None if m is None else midi_to_hz(m), clarity=clarity)
        for i, m in enumerate(midis)
    ]


def test_median_filter_ignores_unvoiced():
    out = median_filter(np.array([1.0, NAN, 3.0, 100.0, 5.0]), 3)
    assert out[0] == 1.0
    assert np.isnan(out[1])
    assert out[3] == 5.0
    assert out[4] == 100.0


def test_moving_average_ignores_unvoiced():
    out = moving_average(np.array([1.0, NAN, 3.0, 5.0]), 3)
    assert out[0] == 1.0
    assert np.isnan(out[1])
    assert out[2] == pytest.approx(4.0)
    assert out[3] == pytest.approx(4.0)


def test_window_of_one_is_identity():
    values = np.array([60.2, NAN, 61.7])
    assert np.array_equal(median_filter(values, 1), values, equal_nan=True)
    assert np.array_equal(moving_average(values, 1), values, equal_nan=True)


def test_staircase_gives_five_notes_on_transitions(staircase_frames):
    notes = segment_continuity(staircase_frames)
    assert [n.midi_note for n in notes] == [60, 62, 64, 65, 67]

    # each note starts on its first voiced frame and ends on the first gap frame
    for k, note in enumerate(notes):
        assert note.start_sec == pytest.approx(k * 0.32)
        assert note.end_sec == pytest.approx(k * 0.32 + 0.30)


def test_notes_never_overlap_and_have_positive_duration():
    rng = random.Random(4)
    midis = []
    for _ in range(40):
        midis.extend([rng.choice([None, 55, 57, 60, 62, 64, 72])] * rng.randint(1, 12))
    frames = frames_from_midi(midis)
    for options in (SegmentationOptions(), SegmentationOptions(median_window=1, smoothing_window=1, min_duration_sec=0.0)):
        notes = segment_continuity(frames, options)
        assert all(n.end_sec > n.start_sec for n in notes)
        assert all(b.start_sec >= a.end_sec for a, b in zip(notes, notes[1:]))
        assert all(30 <= n.velocity <= 120 for n in notes)


def test_short_blip_dropped():
    frames = frames_from_midi([None] * 5 + [60, 60] + [None] * 5)
    assert segment_continuity(frames, SegmentationOptions(median_window=1, smoothing_window=1)) == []


def test_single_frame_gap_is_bridged():
    frames = frames_from_midi([60] * 10 + [None] + [60] * 10)
    notes = segment_continuity(frames, SegmentationOptions(median_window=1, smoothing_window=1))
    assert len(notes) == 1
    assert notes[0].start_sec == 0.0
    assert notes[0].end_sec == pytest.approx(0.2)


def test_same_note_tolerance_and_range_cap():
    midis = [60] * 10 + [61] * 10 + [62] * 10
    frames = frames_from_midi(midis)
    loose = SegmentationOptions(median_window=1, smoothing_window=1, same_note_semitones=1.0, max_note_range_semitones=2.0)
    strict = dataclasses.replace(loose, same_note_semitones=0.0)
    assert len(segment_continuity(frames, loose)) == 1
    assert [n.midi_note for n in segment_continuity(frames, strict)] == [60, 61, 62]

    capped = dataclasses.replace(loose, max_note_range_semitones=1.0)
    assert len(segment_continuity(frames, capped)) == 2


def test_max_notes_cap(staircase_frames):
    notes = segment_continuity(staircase_frames, SegmentationOptions(max_notes=2))
    assert len(notes) == 2


def test_octave_slip_smoothed_in_notes():
    frames = frames_from_midi([60] * 20 + [72] * 3 + [60] * 20)
    notes = segment_continuity(frames, SegmentationOptions(median_window=1, smoothing_window=1))
    assert [n.midi_note for n in notes] == [60]


@pytest.mark.parametrize("clarities,expected", [([0.1], 30), ([0.9, 0.8], 85), ([1.0], 100), ([2.0], 120), ([], 30)])
def test_velocity_clamp(clarities, expected):
    assert clarity_to_velocity(clarities) == expected


def test_grid_merge_basic():
    notes = segment_grid_merge(_cells([60, 60, 60, 62, 62, None, 62]), cell_seconds=0.125)
    assert [(n.midi_note, n.start_sec, n.end_sec) for n in notes] == [
        (60, 0.0, pytest.approx(0.375)),
        (62, pytest.approx(0.375), pytest.approx(0.625)),
        (62, pytest.approx(0.75), pytest.approx(0.875)),
    ]


def test_grid_merge_respects_cell_cap():
    notes = segment_grid_merge(_cells([64] * 10), SegmentationOptions(grid_merge_max_cells=8), cell_seconds=0.125)
    assert len(notes) == 2
    assert notes[0].end_sec == pytest.approx(notes[1].start_sec)
    assert notes[0].duration_sec == pytest.approx(8 * 0.125)


def test_grid_merge_never_spans_timing_gap():
    cells = _cells([64, 64, 64, 64, 64])
    cells = [cells[0], cells[1], cells[4]]  # two cells missing from the grid
    notes = segment_grid_merge(cells, cell_seconds=0.125)
    assert len(notes) == 2


def test_grid_merge_infers_width_and_min_duration():
    notes = segment_grid_merge(_cells([64, 64, None, 65]), SegmentationOptions(min_duration_sec=0.2))
    assert [n.midi_note for n in notes] == [64]


def test_select_strategy():
    assert select_strategy(None) is SegmentationStrategy.CONTINUITY_GREEDY
    assert select_strategy(RhythmConfig()) is SegmentationStrategy.GRID_MERGE


def test_extract_note_events_dispatch(staircase_frames):
    greedy = extract_note_events(staircase_frames)
    assert len(greedy) == 5

    rhythm = RhythmConfig(bpm=120, subdivisions_per_beat=4)
    gridded = extract_note_events(_cells([60, 60, 62]), rhythm=rhythm)
    assert [n.midi_note for n in gridded] == [60, 62]


def test_empty_inputs():
    assert segment_continuity([]) == []
    assert segment_grid_merge([]) == []
    assert segment_grid_merge(_cells([60])) == []   # width unknown
