from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from .models import SegmentationOptions


# ------------------------------------------------------------
# Analysis Config (session-level knobs)
# ------------------------------------------------------------

@dataclass
class AnalysisConfig:
    # Pitch error tolerated before a frame counts as a miss (cents)
    tolerance_cents: float = 25.0

    # Frames below this clarity are treated as unvoiced before quantization
    clarity_threshold: float = 0.2

    # Kept for session compatibility; the model defines its own hop
    frame_size: int = 4096
    hop_size: int = 1024


# ------------------------------------------------------------
# Decoder Config (candidates + Viterbi costs)
# ------------------------------------------------------------

@dataclass
class DecoderConfig:
    top_k: int = 8
    min_probability: float = 0.02

    # Silence competes as max(floor, baseline - best voiced probability)
    silence_baseline: float = 0.9

    epsilon: float = 1e-6
    silence_penalty: float = 0.15
    weak_threshold: float = 0.1
    weak_penalty: float = 0.35

    # Transition cost tiers by semitone distance
    small_step_semitones: int = 2
    small_step_cost: float = 0.03
    jump_cost: float = 0.18
    octave_semitones: int = 12
    large_jump_base: float = 0.9
    large_jump_cost: float = 0.08
    voicing_change_cost: float = 0.12


# ------------------------------------------------------------
# Stabilizer Config (gap fill + octave continuity)
# ------------------------------------------------------------

@dataclass
class StabilizerConfig:
    max_gap_frames: int = 1
    gap_semitones: float = 2.0
    gap_probability_discount: float = 0.9

    anchor_keep: float = 0.75               # weight of the old anchor
    max_octave_shift: int = 2
    max_anchor_distance: float = 9.0


# ------------------------------------------------------------
# Alignment Config (envelope cross-correlation)
# ------------------------------------------------------------

@dataclass
class AlignmentConfig:
    window_size: int = 1024
    hop_size: int = 512
    max_lag_sec: float = 5.0


# ------------------------------------------------------------
# Imputation Config (user grid only)
# ------------------------------------------------------------

@dataclass
class ImputationConfig:
    fill_short_gaps: bool = True

    # Experimental: raises detected coverage without new evidence.
    reference_guided_hold: bool = False
    hold_budget: int = 1

    max_gap_cells: int = 2
    max_gap_semitones: float = 2.0
    gap_clarity_discount: float = 0.9
    hold_clarity_discount: float = 0.8
    hold_clarity_floor: float = 0.15


# ------------------------------------------------------------
# Scoring Config (error segments)
# ------------------------------------------------------------

@dataclass
class ScoringConfig:
    min_segment_sec: float = 0.2
    top_segments: int = 3


# ------------------------------------------------------------
# Segmentation Search Config (parameter optimizer)
# ------------------------------------------------------------

@dataclass
class SegmentationSearchConfig:
    # Cartesian grid over SegmentationOptions fields
    grid: Dict[str, List[Any]] = field(
        default_factory=lambda: {
            "min_duration_sec": [0.03, 0.05, 0.08],
            "median_window": [1, 5, 7],
            "smoothing_window": [1, 3, 5],
            "gap_fill_semitones": [1.0, 2.0],
            "octave_max_distance": [7.0, 9.0],
            "same_note_semitones": [0.0, 1.0],
            "max_note_range_semitones": [1.0, 2.0],
        }
    )

    # Composite objective weights
    weights: Dict[str, float] = field(
        default_factory=lambda: {
            "coverage": 100.0,
            "mean_abs_cents": 0.5,
            "jump_ratio": 40.0,
            "short_note_ratio": 30.0,
            "note_count": 25.0,
            "low_count": 60.0,
        }
    )

    coverage_cap: float = 1.0
    jump_semitones: float = 8.0
    min_audible_sec: float = 0.08

    # Target note count = clamp(voiced_sec / seconds_per_note, min, max)
    seconds_per_note: float = 0.12
    target_min_notes: int = 24
    target_max_notes: int = 320
    low_count_fraction: float = 0.5

    # Fallback passes
    under_target_fraction: float = 0.6
    aggressive_options: Dict[str, Any] = field(
        default_factory=lambda: {
            "min_duration_sec": 0.02,
            "median_window": 1,
            "smoothing_window": 1,
            "gap_fill_semitones": 2.0,
            "octave_max_distance": 12.0,
            "same_note_semitones": 0.0,
            "max_note_range_semitones": 1.0,
        }
    )
    aggressive_min_gain: float = 1.2        # at least 20% more notes
    aggressive_max_regression: float = 15.0
    densify_max_regression: float = 10.0

    # >1 evaluates combinations on a process pool
    max_workers: int = 1


# ------------------------------------------------------------
# Pipeline Config
# ------------------------------------------------------------

@dataclass
class PipelineConfig:
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    stabilizer: StabilizerConfig = field(default_factory=StabilizerConfig)
    alignment: AlignmentConfig = field(default_factory=AlignmentConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    segmentation: SegmentationOptions = field(default_factory=SegmentationOptions)
    search: SegmentationSearchConfig = field(default_factory=SegmentationSearchConfig)

    # Optional debug export directory (PipelineLogger base_dir)
    debug_dir: Optional[str] = None


DEFAULT_CONFIG = PipelineConfig()
