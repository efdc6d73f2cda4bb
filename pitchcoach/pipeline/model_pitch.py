# pitchcoach/pipeline/model_pitch.py
"""
Pitch-probability model boundary.

The model is a black box returning one probability row per fixed hop;
row index ``i`` stands for MIDI note ``midi_base + i``. Everything after
``predict`` is the deterministic decode/stabilize chain.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol

import numpy as np

from .config import PipelineConfig, DEFAULT_CONFIG
from .decoder import decode_probability_rows
from .models import PitchFrame
from .stabilizer import path_to_frames, stabilize_path

logger = logging.getLogger(__name__)

BASIC_PITCH_SAMPLE_RATE = 22050
BASIC_PITCH_HOP = 256
BASIC_PITCH_MIDI_BASE = 21


class ModelUnavailableError(RuntimeError):
    """The pitch model dependency is missing or inference failed."""


class PitchModel(Protocol):
    frame_seconds: float
    midi_base: int

    def predict(self, audio: np.ndarray, sr: int) -> np.ndarray:
        """Return ``[n_frames, n_bins]`` probabilities in [0, 1]."""
        ...


class BasicPitchModel:
    """Adapter over ``basic_pitch.inference.predict`` (note posteriorgram)."""

    frame_seconds: float = BASIC_PITCH_HOP / BASIC_PITCH_SAMPLE_RATE
    midi_base: int = BASIC_PITCH_MIDI_BASE

    def __init__(self, model_path: Optional[str] = None):
        self.model_path = model_path

    def predict(self, audio: np.ndarray, sr: int) -> np.ndarray:
        # Import inside so API startup and tests need no TF/basic-pitch
        try:
            from basic_pitch.inference import predict
        except Exception as e:
            raise ModelUnavailableError("basic-pitch not installed") from e

        import soundfile as sf

        y = np.asarray(audio, dtype=np.float32).reshape(-1)
        if y.size == 0:
            return np.zeros((0, 88), dtype=np.float32)

        with tempfile.TemporaryDirectory() as tmp_dir:
            wav_path = Path(tmp_dir) / "basic_pitch_input.wav"
            # Basic Pitch reads from a path and resamples to 22.05k internally.
            sf.write(str(wav_path), y, sr)
            try:
                if self.model_path:
                    model_output, _midi_data, _note_events = predict(str(wav_path), self.model_path)
                else:
                    model_output, _midi_data, _note_events = predict(str(wav_path))
            except Exception as e:
                raise ModelUnavailableError(f"basic-pitch inference failed: {e}") from e

        rows = np.asarray(model_output["note"], dtype=np.float32)
        if rows.ndim != 2:
            raise ModelUnavailableError(f"unexpected posteriorgram shape {rows.shape}")
        return rows


def extract_pitch_frames(
    audio: np.ndarray,
    sr: int,
    model: PitchModel,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> List[PitchFrame]:
    """Model rows -> candidates -> Viterbi -> stabilizer -> timed frames."""
    y = np.asarray(audio, dtype=np.float32).reshape(-1)
    if y.size == 0:
        return []

    rows = np.asarray(model.predict(y, sr), dtype=np.float64)
    if rows.size == 0:
        logger.debug("Model returned no frames for %d samples", y.size)
        return []

    path = decode_probability_rows(rows, midi_base=int(model.midi_base), config=config.decoder)
    path = stabilize_path(path, config.stabilizer)
    return path_to_frames(path, float(model.frame_seconds))
