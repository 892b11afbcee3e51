"""Audio processing: normalization, voice activity detection, segmentation, WAV encoding."""

from .normalizer import AudioFrameNormalizer, normalize_frame
from .segmenter import (
    CaptureState,
    SegmenterConfig,
    SegmenterEvent,
    SegmenterEventType,
    SpeechSegmenter,
)
from .vad import NO_VOICE, EnergyVAD, VADConfig, VoiceActivityDetector
from .wav import encode_wav, encode_wav_base64, float_to_pcm16, pcm16_to_float

__all__ = [
    "AudioFrameNormalizer",
    "normalize_frame",
    "CaptureState",
    "SegmenterConfig",
    "SegmenterEvent",
    "SegmenterEventType",
    "SpeechSegmenter",
    "NO_VOICE",
    "EnergyVAD",
    "VADConfig",
    "VoiceActivityDetector",
    "encode_wav",
    "encode_wav_base64",
    "float_to_pcm16",
    "pcm16_to_float",
]
