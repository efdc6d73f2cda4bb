import sys
import warnings
from pathlib import Path

import pytest

# Ensure repository root is importable for `pitchcoach` package resolution.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pitchcoach.tests.audio_utils import SpectralPeakModel, frames_from_midi, staircase_midis  # noqa: E402


def pytest_configure(config):
    # Keep test output readable (librosa / audioread emit noisy warnings)
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)
    warnings.filterwarnings("ignore", message=".*PySoundFile failed.*")
    warnings.filterwarnings("ignore", message=".*n_fft=.*too large for input signal.*")


@pytest.fixture
def model():
    return SpectralPeakModel()


@pytest.fixture
def staircase_frames():
    return frames_from_midi(staircase_midis())
