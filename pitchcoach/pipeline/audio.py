# pitchcoach/pipeline/audio.py
"""Audio loading and mono downmix."""

from __future__ import annotations

import logging
import warnings
from typing import Optional, Tuple

import librosa
import numpy as np

logger = logging.getLogger(__name__)


def mix_to_mono(audio: np.ndarray) -> np.ndarray:
    """
    Average channels into one float32 buffer.

    Accepts ``[samples]``, ``[channels, samples]`` (librosa layout) or
    ``[samples, channels]`` (soundfile layout, detected when the first axis
    is the longer one).
    """
    y = np.asarray(audio, dtype=np.float32)
    if y.ndim <= 1:
        return y.reshape(-1)
    if y.ndim > 2:
        raise ValueError(f"expected 1-D or 2-D audio, got shape {y.shape}")
    channel_axis = 0 if y.shape[0] <= y.shape[1] else 1
    return np.mean(y, axis=channel_axis).astype(np.float32)


def load_audio(path: str, target_sr: Optional[int] = None) -> Tuple[np.ndarray, int]:
    """
    Load ``path`` keeping all channels, then downmix.

    ``target_sr=None`` keeps the file's native sample rate.
    """
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            audio, sr = librosa.load(path, sr=target_sr, mono=False)
    except Exception as e:
        raise RuntimeError(f"failed to load audio {path}: {e}") from e

    mono = mix_to_mono(audio)
    logger.debug("Loaded %s: %d samples @ %d Hz (%s)", path, mono.size, sr, np.shape(audio))
    return mono, int(sr)
