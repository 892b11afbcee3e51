"""WAV encoding for synthesized audio sent to the client."""

import base64
import io
import wave

import numpy as np

from .normalizer import FrameLike, as_samples


def float_to_pcm16(samples: FrameLike) -> bytes:
    """Convert float samples in [-1, 1] to little-endian 16-bit PCM."""
    clipped = np.clip(as_samples(samples), -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def pcm16_to_float(pcm_data: bytes) -> np.ndarray:
    """Convert little-endian 16-bit PCM to float samples in [-1, 1]."""
    return np.frombuffer(pcm_data, dtype="<i2").astype(np.float32) / 32768.0


def encode_wav(samples: FrameLike, sample_rate: int, channels: int = 1) -> bytes:
    """Encode float samples as a 16-bit PCM WAV file."""
    buffer = io.BytesIO()

    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(float_to_pcm16(samples))

    return buffer.getvalue()


def encode_wav_base64(samples: FrameLike, sample_rate: int) -> str:
    """Encode float samples as a base64 WAV string, as carried by AUDIO events."""
    return base64.b64encode(encode_wav(samples, sample_rate)).decode("ascii")
