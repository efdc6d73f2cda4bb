import dataclasses

import pytest

from pitchcoach.pipeline.config import SegmentationSearchConfig
from pitchcoach.pipeline.models import NoteEvent, SegmentationOptions, SegmentationStrategy
from pitchcoach.pipeline.optimizer import (
    ScoredOption,
    _better,
    densify_notes,
    iter_search_options,
    optimize_segmentation,
    score_notes,
    search_summary,
    target_note_count,
)
from pitchcoach.pipeline.models import SegmentationDebugScore
from pitchcoach.pipeline.utils_config import UnknownConfigKeyError

from pitchcoach.tests.audio_utils import frames_from_midi

SMALL_GRID = {"median_window": [1, 5], "same_note_semitones": [0.0, 1.0]}


def test_default_grid_size_and_order():
    search = SegmentationSearchConfig()
    combos = list(iter_search_options(search.grid))
    assert len(combos) == 432
    first = combos[0]
    assert first.min_duration_sec == 0.03
    assert first.median_window == 1
    assert first.max_note_range_semitones == 1.0
    # fields outside the grid come from the base options
    assert first.max_notes == SegmentationOptions().max_notes


def test_unknown_grid_key_rejected():
    with pytest.raises(UnknownConfigKeyError):
        list(iter_search_options({"median_windw": [1, 3]}))


@pytest.mark.parametrize("voiced_sec,expected", [(0.0, 24.0), (1.5, 24.0), (12.0, 100.0), (100.0, 320.0)])
def test_target_note_count_clamped(voiced_sec, expected):
    assert target_note_count(voiced_sec) == pytest.approx(expected)


def test_score_of_empty_segmentation():
    frames = frames_from_midi([60] * 50)
    score = score_notes([], frames)
    assert score.note_count == 0
    assert score.coverage == 0.0
    assert score.jump_ratio == 0.0
    assert score.short_note_ratio == 0.0


def test_score_penalizes_pitch_mismatch():
    frames = frames_from_midi([60] * 50)
    right = score_notes([NoteEvent(60, 0.0, 0.5)], frames)
    wrong = score_notes([NoteEvent(61, 0.0, 0.5)], frames)
    assert right.mean_abs_cents_within_notes == pytest.approx(0.0, abs=1e-6)
    assert wrong.mean_abs_cents_within_notes == pytest.approx(100.0)
    assert wrong.score < right.score


def test_better_prefers_score_then_lower_index():
    opts = SegmentationOptions()
    low = ScoredOption(3, opts, [], SegmentationDebugScore(score=1.0))
    high = ScoredOption(7, opts, [], SegmentationDebugScore(score=2.0))
    tie = ScoredOption(1, opts, [], SegmentationDebugScore(score=1.0))
    assert _better(low, high) is high
    assert _better(high, low) is high
    assert _better(low, tie) is tie
    assert _better(tie, low) is tie
    assert _better(None, low) is low


def test_densify_splits_long_notes_and_rederives_pitch():
    frames = frames_from_midi([60] * 20 + [62] * 20)
    notes = [NoteEvent(60, 0.0, 0.4, velocity=77), NoteEvent(64, 0.4, 0.45)]
    out = densify_notes(notes, frames, chunk_sec=0.2)
    assert [n.midi_note for n in out] == [60, 62, 64]
    assert out[0].start_sec == 0.0
    assert out[1].end_sec == pytest.approx(0.4)
    assert out[0].velocity == 77
    assert densify_notes(notes, frames, chunk_sec=0.0) == notes


def test_optimize_staircase_uses_densify_fallback(staircase_frames):
    search = SegmentationSearchConfig(grid=dict(SMALL_GRID))
    result = optimize_segmentation(staircase_frames, search)

    # 1.5 s voiced gives a target of 24 notes; five sustained notes is under-segmented
    assert result.strategy is SegmentationStrategy.CONTINUITY_GREEDY
    assert result.passes == ["search", "densify"]
    assert result.configurations_tried == 4 + 1
    assert len(result.notes) == 20
    assert sorted({n.midi_note for n in result.notes}) == [60, 62, 64, 65, 67]
    assert all(b.start_sec >= a.end_sec - 1e-9 for a, b in zip(result.notes, result.notes[1:]))
    assert result.debug_score.note_count == 20

    summary = search_summary(result)
    assert summary["configurations_tried"] == 5
    assert summary["options"]["median_window"] == 1


def test_optimize_without_fallbacks_when_dense_enough():
    midis = []
    for k in range(30):
        midis.extend([60 + (k % 5)] * 8 + [None])
    search = SegmentationSearchConfig(grid=dict(SMALL_GRID))
    result = optimize_segmentation(frames_from_midi(midis), search)
    assert result.passes == ["search"]
    assert result.configurations_tried == 4
    assert len(result.notes) == 30


def test_optimize_empty_input():
    result = optimize_segmentation([])
    assert result.notes == []
    assert result.configurations_tried == 0


def test_optimize_is_deterministic(staircase_frames):
    search = SegmentationSearchConfig(grid=dict(SMALL_GRID))
    a = optimize_segmentation(staircase_frames, search)
    b = optimize_segmentation(staircase_frames, search)
    assert a.to_dict() == b.to_dict()


def test_pooled_search_matches_serial(staircase_frames):
    serial = SegmentationSearchConfig(grid=dict(SMALL_GRID), max_workers=1)
    pooled = dataclasses.replace(serial, max_workers=2)
    assert optimize_segmentation(staircase_frames, serial).to_dict() == optimize_segmentation(
        staircase_frames, pooled
    ).to_dict()
