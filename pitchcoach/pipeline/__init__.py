"""Pipeline package initializer.

Re-exports the entry points used by the API and the CLI so callers can
write ``from pitchcoach.pipeline import analyze_pitch``.
"""

from __future__ import annotations

from .analyzer import analyze_pitch, apply_clarity_gate, build_note_preview
from .audio import load_audio, mix_to_mono
from .config import DEFAULT_CONFIG, PipelineConfig
from .model_pitch import BasicPitchModel, ModelUnavailableError, PitchModel, extract_pitch_frames
from .models import (
    AnalysisResult,
    AnalysisStats,
    ErrorFrame,
    ErrorSegment,
    NoteEvent,
    PitchFrame,
    RhythmConfig,
    SegmentationOptions,
    SegmentationResult,
    SegmentationStrategy,
)
from .utils_config import UnknownConfigKeyError, apply_dotted_overrides

__all__ = [
    "AnalysisResult",
    "AnalysisStats",
    "BasicPitchModel",
    "DEFAULT_CONFIG",
    "ErrorFrame",
    "ErrorSegment",
    "ModelUnavailableError",
    "NoteEvent",
    "PipelineConfig",
    "PitchFrame",
    "PitchModel",
    "RhythmConfig",
    "SegmentationOptions",
    "SegmentationResult",
    "SegmentationStrategy",
    "UnknownConfigKeyError",
    "analyze_pitch",
    "apply_clarity_gate",
    "apply_dotted_overrides",
    "build_note_preview",
    "extract_pitch_frames",
    "load_audio",
    "mix_to_mono",
]
