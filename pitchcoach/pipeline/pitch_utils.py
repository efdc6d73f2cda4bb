"""
Pitch conversion helpers (Hz <-> MIDI, cents) shared by the pipeline stages.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

A4_HZ = 440.0
A4_MIDI = 69


def hz_to_midi(hz: float) -> float:
    """Fractional MIDI number for ``hz`` (> 0)."""
    return A4_MIDI + 12.0 * math.log2(hz / A4_HZ)


def midi_to_hz(midi: float) -> float:
    return float(A4_HZ * (2.0 ** ((float(midi) - A4_MIDI) / 12.0)))


def cents_error(user_hz: float, ref_hz: float) -> float:
    """Signed interval ``user`` relative to ``ref``; 1200 cents per octave."""
    return 1200.0 * math.log2(user_hz / ref_hz)


def finite_or_zero(value: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def median_or_none(values: Sequence[float]) -> Optional[float]:
    if len(values) == 0:
        return None
    return float(np.median(np.asarray(values, dtype=np.float64)))
