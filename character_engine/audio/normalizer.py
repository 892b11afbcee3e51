"""Peak normalization of raw sample frames."""

from typing import Sequence, Union

import numpy as np


FrameLike = Union[np.ndarray, Sequence[float]]


def as_samples(frame: FrameLike) -> np.ndarray:
    """Convert a frame into a flat float32 sample array."""
    return np.asarray(frame, dtype=np.float32).reshape(-1)


class AudioFrameNormalizer:
    """
    Scales a frame into [-1.0, 1.0] by its peak absolute magnitude.

    A frame whose peak is zero is returned unchanged.
    """

    def normalize(self, frame: FrameLike) -> np.ndarray:
        samples = as_samples(frame)
        if samples.size == 0:
            return samples

        peak = float(np.max(np.abs(samples)))
        if peak == 0.0:
            return samples

        return samples / peak


def normalize_frame(frame: FrameLike) -> np.ndarray:
    """Module-level shortcut for AudioFrameNormalizer().normalize."""
    return AudioFrameNormalizer().normalize(frame)
