# pitchcoach/pipeline/models.py
"""Dataclasses and enums shared by the analysis pipeline.

Frame- and note-level records are frozen: once a decoder, quantizer or
segmenter has produced them they are never mutated, only replaced.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class SegmentationStrategy(str, Enum):
    """
    Note segmentation strategies.

    CONTINUITY_GREEDY smooths a raw contour and groups samples greedily.
    GRID_MERGE trusts already-quantized grid cells and only merges them.
    """
    CONTINUITY_GREEDY = "continuity_greedy"
    GRID_MERGE = "grid_merge"


@dataclass(frozen=True)
class PitchFrame:
    time_sec: float                         # seconds
    hz: Optional[float]                     # None if unvoiced
    clarity: float = 0.0                    # 0–1

    @property
    def voiced(self) -> bool:
        return self.hz is not None


@dataclass(frozen=True)
class Candidate:
    midi: Optional[int]                     # None = silence
    probability: float


@dataclass(frozen=True)
class DecodeStep:
    midi: Optional[int]                     # None = silence
    probability: float


@dataclass(frozen=True)
class RhythmConfig:
    bpm: float = 120.0
    subdivisions_per_beat: int = 4
    click_offset_ms: float = 0.0

    def __post_init__(self) -> None:
        if not self.bpm > 0:
            raise ValueError(f"bpm must be > 0, got {self.bpm}")
        if int(self.subdivisions_per_beat) < 1:
            raise ValueError(f"subdivisions_per_beat must be >= 1, got {self.subdivisions_per_beat}")

    @property
    def cell_seconds(self) -> float:
        return (60.0 / float(self.bpm)) / int(self.subdivisions_per_beat)


@dataclass(frozen=True)
class ErrorFrame:
    time_sec: float
    cents: Optional[float]                  # None when no user pitch is alignable
    reference_voiced: bool = True


@dataclass
class AnalysisStats:
    mean_abs_cents: float = 0.0
    median_abs_cents: float = 0.0
    max_abs_cents: float = 0.0
    pass_ratio: float = 0.0
    undetected_ratio: float = 0.0


@dataclass(frozen=True)
class ErrorSegment:
    start_sec: float
    end_sec: float
    avg_cents: float


@dataclass(frozen=True)
class NoteEvent:
    midi_note: int
    start_sec: float
    end_sec: float
    velocity: int = 64                      # MIDI-style 30–120

    @property
    def duration_sec(self) -> float:
        return self.end_sec - self.start_sec


@dataclass(frozen=True)
class SegmentationOptions:
    # Continuity-greedy knobs
    min_duration_sec: float = 0.04
    median_window: int = 7
    smoothing_window: int = 5
    gap_fill_semitones: float = 2.0
    octave_max_distance: float = 9.0
    same_note_semitones: float = 1.0
    max_note_range_semitones: float = 2.0
    max_notes: int = 2000

    # Grid-merge knobs
    grid_merge_max_cells: int = 8
    grid_gap_tolerance: float = 0.5         # in cell widths beyond the nominal step

    def __post_init__(self) -> None:
        if self.min_duration_sec < 0:
            raise ValueError("min_duration_sec must be >= 0")
        if self.median_window < 1 or self.smoothing_window < 1:
            raise ValueError("window sizes must be >= 1")
        if self.grid_merge_max_cells < 1:
            raise ValueError("grid_merge_max_cells must be >= 1")


@dataclass(frozen=True)
class SegmentationDebugScore:
    score: float = 0.0
    coverage: float = 0.0
    mean_abs_cents_within_notes: float = 0.0
    note_count: int = 0
    jump_ratio: float = 0.0
    short_note_ratio: float = 0.0


@dataclass
class SegmentationResult:
    notes: List[NoteEvent] = field(default_factory=list)
    options: SegmentationOptions = field(default_factory=SegmentationOptions)
    debug_score: SegmentationDebugScore = field(default_factory=SegmentationDebugScore)
    configurations_tried: int = 0
    strategy: SegmentationStrategy = SegmentationStrategy.CONTINUITY_GREEDY
    passes: List[str] = field(default_factory=list)   # e.g. ["search", "aggressive", "densify"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notes": [asdict(n) for n in self.notes],
            "options": asdict(self.options),
            "debug_score": asdict(self.debug_score),
            "configurations_tried": self.configurations_tried,
            "strategy": self.strategy.value,
            "passes": list(self.passes),
        }


@dataclass
class ImputationResult:
    observed: List[PitchFrame] = field(default_factory=list)
    imputed: List[PitchFrame] = field(default_factory=list)
    filled_cells: int = 0
    held_cells: int = 0
    # True when reference-guided hold was active: coverage of ``imputed`` is
    # not evidence of singing accuracy.
    metric_risk: bool = False


@dataclass
class AnalysisResult:
    ref_pitch: List[PitchFrame] = field(default_factory=list)
    user_pitch: List[PitchFrame] = field(default_factory=list)
    user_pitch_observed: List[PitchFrame] = field(default_factory=list)
    error_frames: List[ErrorFrame] = field(default_factory=list)
    error_frames_observed: List[ErrorFrame] = field(default_factory=list)
    stats: AnalysisStats = field(default_factory=AnalysisStats)
    stats_observed: AnalysisStats = field(default_factory=AnalysisStats)
    top_segments: List[ErrorSegment] = field(default_factory=list)
    estimated_offset_ms: float = 0.0
    manual_offset_ms: float = 0.0
    grid_mode: bool = False
    metric_risk: bool = False
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """
        JSON-serializable representation for the API / session storage.
        """
        return {
            "ref_pitch": [asdict(f) for f in self.ref_pitch],
            "user_pitch": [asdict(f) for f in self.user_pitch],
            "user_pitch_observed": [asdict(f) for f in self.user_pitch_observed],
            "error_frames": [asdict(e) for e in self.error_frames],
            "error_frames_observed": [asdict(e) for e in self.error_frames_observed],
            "stats": asdict(self.stats),
            "stats_observed": asdict(self.stats_observed),
            "top_segments": [asdict(s) for s in self.top_segments],
            "estimated_offset_ms": self.estimated_offset_ms,
            "manual_offset_ms": self.manual_offset_ms,
            "grid_mode": self.grid_mode,
            "metric_risk": self.metric_risk,
            "diagnostics": self.diagnostics,
        }
