"""
Voice Activity Detection (VAD) module.

Defines the detector contract consumed by the speech segmenter and a simple
energy-based implementation.

A detector inspects one frame and returns the index of the first sample at
which voice was found, or NO_VOICE (-1) when the frame contains none.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Protocol, runtime_checkable

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

NO_VOICE = -1


@runtime_checkable
class VoiceActivityDetector(Protocol):
    """Detector contract: ``detect(samples, sample_rate) -> int``."""

    def detect(self, samples: np.ndarray, sample_rate: int) -> int:
        ...


@dataclass
class VADConfig:
    """
    Configuration for energy-based Voice Activity Detection.

    Attributes:
        frame_duration_ms: Analysis window size inside a frame
        energy_threshold_db: dBFS level above which a window counts as voice
        energy_smoothing: Exponential smoothing factor across windows (0 disables)
    """
    frame_duration_ms: int = 20
    energy_threshold_db: float = -35.0
    energy_smoothing: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_duration_ms": self.frame_duration_ms,
            "energy_threshold_db": self.energy_threshold_db,
            "energy_smoothing": self.energy_smoothing,
        }


def calculate_db(samples: np.ndarray) -> float:
    """Calculate the decibel level (dBFS) of float samples in [-1, 1]."""
    if samples.size == 0:
        return -100.0

    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    if rms <= 0:
        return -100.0

    return 20 * math.log10(rms + 1e-10)


class EnergyVAD:
    """
    Simple energy-based Voice Activity Detector.

    Splits the frame into short windows and compares their smoothed dBFS
    level against a threshold. Holds no state between calls, so one instance
    can be shared by every session.
    """

    def __init__(self, config: VADConfig = None):
        self.config = config or VADConfig()
        logger.info("energy_vad_initialized", **self.config.to_dict())

    def detect(self, samples: np.ndarray, sample_rate: int) -> int:
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return NO_VOICE

        window = max(1, int(sample_rate * self.config.frame_duration_ms / 1000))
        alpha = self.config.energy_smoothing
        smoothed = None

        for start in range(0, samples.size, window):
            db = calculate_db(samples[start:start + window])
            smoothed = db if smoothed is None else alpha * smoothed + (1 - alpha) * db
            if smoothed > self.config.energy_threshold_db:
                return start

        return NO_VOICE
