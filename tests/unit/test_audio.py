"""Unit tests for audio normalization, voice activity detection and segmentation."""

import base64
import io
import wave

import numpy as np
import pytest

from character_engine.audio import (
    NO_VOICE,
    AudioFrameNormalizer,
    CaptureState,
    EnergyVAD,
    SegmenterConfig,
    SegmenterEventType,
    SpeechSegmenter,
    VADConfig,
    VoiceActivityDetector,
    encode_wav,
    encode_wav_base64,
    float_to_pcm16,
    normalize_frame,
    pcm16_to_float,
)
from character_engine.audio.vad import calculate_db


# =============================================================================
# Normalizer
# =============================================================================


class TestAudioFrameNormalizer:
    """Tests for peak normalization."""

    def test_scales_to_unit_peak(self):
        normalized = AudioFrameNormalizer().normalize([0.1, -0.4, 0.2])

        assert normalized.dtype == np.float32
        assert float(np.max(np.abs(normalized))) == pytest.approx(1.0)
        assert normalized.tolist() == pytest.approx([0.25, -1.0, 0.5])

    def test_zero_frame_returned_unchanged(self):
        normalized = normalize_frame([0.0, 0.0, 0.0, 0.0])

        assert normalized.tolist() == [0.0, 0.0, 0.0, 0.0]
        assert not np.isnan(normalized).any()

    def test_empty_frame(self):
        assert normalize_frame([]).size == 0

    def test_output_length_matches_input(self, voice_frame):
        assert normalize_frame(voice_frame).size == voice_frame.size


# =============================================================================
# Energy VAD
# =============================================================================


class TestEnergyVAD:
    """Tests for the energy-based detector."""

    def test_implements_detector_contract(self):
        assert isinstance(EnergyVAD(), VoiceActivityDetector)

    def test_silence_is_no_voice(self, silent_frame):
        assert EnergyVAD().detect(silent_frame, 16000) == NO_VOICE

    def test_tone_is_voice(self, voice_frame):
        assert EnergyVAD().detect(voice_frame, 16000) == 0

    def test_returns_index_of_first_voiced_window(self):
        vad = EnergyVAD(VADConfig(frame_duration_ms=10, energy_smoothing=0.0))
        samples = np.concatenate([np.zeros(160, dtype=np.float32), np.full(160, 0.5, dtype=np.float32)])

        assert vad.detect(samples, 16000) == 160

    def test_quiet_signal_below_threshold(self):
        vad = EnergyVAD(VADConfig(energy_threshold_db=-20.0))
        samples = np.full(320, 0.01, dtype=np.float32)  # -40 dBFS

        assert vad.detect(samples, 16000) == NO_VOICE

    def test_calculate_db(self):
        assert calculate_db(np.zeros(10, dtype=np.float32)) == -100.0
        assert calculate_db(np.array([], dtype=np.float32)) == -100.0
        assert calculate_db(np.ones(10, dtype=np.float32)) == pytest.approx(0.0, abs=1e-6)


# =============================================================================
# Segmenter
# =============================================================================


class TestSpeechSegmenter:
    """Tests for the utterance state machine."""

    def test_starts_idle(self, mock_vad):
        segmenter = SpeechSegmenter(mock_vad)

        assert segmenter.state == CaptureState.IDLE
        assert not segmenter.capturing
        assert segmenter.buffered_samples == 0

    def test_silence_while_idle_does_nothing(self, mock_vad, silent_frame):
        segmenter = SpeechSegmenter(mock_vad)

        for _ in range(200):
            assert segmenter.feed(silent_frame, 16000) is None

        assert segmenter.state == CaptureState.IDLE
        assert segmenter.pause_duration_ms == 0.0

    def test_first_voiced_frame_starts_capture(self, mock_vad, voice_frame):
        segmenter = SpeechSegmenter(mock_vad)

        event = segmenter.feed(voice_frame, 16000)
        assert event.type == SegmenterEventType.STARTED
        assert segmenter.capturing

        assert segmenter.feed(voice_frame, 16000) is None
        assert segmenter.buffered_samples == 2 * voice_frame.size

    def test_utterance_emitted_after_pause_threshold(self, mock_vad, voice_frame, silent_frame):
        """50 ms of speech then 1.2 s of silence in 10 ms frames yields exactly one utterance."""
        segmenter = SpeechSegmenter(mock_vad, SegmenterConfig(pause_threshold_ms=1000))

        for _ in range(5):
            segmenter.feed(voice_frame, 16000)

        ready = []
        for i in range(120):
            event = segmenter.feed(silent_frame, 16000)
            if event is not None:
                ready.append((i, event))

        assert len(ready) == 1
        index, event = ready[0]
        # Emitted on the frame that pushes the pause past 1000 ms
        assert (index + 1) * 10 == 1010
        assert event.type == SegmenterEventType.UTTERANCE_READY
        assert event.samples.size == 5 * voice_frame.size
        assert event.sample_rate == 16000
        assert event.duration_ms == pytest.approx(50.0)
        assert segmenter.state == CaptureState.IDLE

    def test_pause_at_threshold_does_not_emit(self, mock_vad, voice_frame, silent_frame):
        segmenter = SpeechSegmenter(mock_vad, SegmenterConfig(pause_threshold_ms=1000))
        segmenter.feed(voice_frame, 16000)

        for _ in range(100):
            assert segmenter.feed(silent_frame, 16000) is None

        assert segmenter.pause_duration_ms == pytest.approx(1000.0)

        event = segmenter.end_session()
        assert event.type == SegmenterEventType.UTTERANCE_READY
        assert event.samples.size == voice_frame.size

    def test_voice_resets_pause_timer(self, mock_vad, voice_frame, silent_frame):
        segmenter = SpeechSegmenter(mock_vad, SegmenterConfig(pause_threshold_ms=100))
        segmenter.feed(voice_frame, 16000)

        for _ in range(8):
            segmenter.feed(silent_frame, 16000)
        assert segmenter.pause_duration_ms == pytest.approx(80.0)

        assert segmenter.feed(voice_frame, 16000) is None
        assert segmenter.pause_duration_ms == 0.0

    def test_silence_not_buffered(self, mock_vad, voice_frame, silent_frame):
        segmenter = SpeechSegmenter(mock_vad, SegmenterConfig(pause_threshold_ms=20))
        segmenter.feed(voice_frame, 16000)
        segmenter.feed(silent_frame, 16000)
        segmenter.feed(silent_frame, 16000)
        event = segmenter.feed(silent_frame, 16000)

        assert event.samples.size == voice_frame.size

    def test_buffered_audio_is_normalized(self, mock_vad):
        segmenter = SpeechSegmenter(mock_vad)
        segmenter.feed([0.0, 0.2, -0.1], 16000)

        event = segmenter.end_session()
        assert event.samples.tolist() == pytest.approx([0.0, 1.0, -0.5])

    def test_end_session_without_audio(self, mock_vad, silent_frame):
        segmenter = SpeechSegmenter(mock_vad)
        segmenter.feed(silent_frame, 16000)

        assert segmenter.end_session() is None
        assert segmenter.state == CaptureState.IDLE

    def test_short_frames_ignored(self, mock_vad, voice_frame):
        segmenter = SpeechSegmenter(mock_vad, SegmenterConfig(min_frame_samples=1024))

        assert segmenter.feed(voice_frame, 16000) is None
        assert mock_vad.call_count == 0
        assert not segmenter.capturing

    def test_empty_frame_ignored(self, mock_vad):
        segmenter = SpeechSegmenter(mock_vad)

        assert segmenter.feed([], 16000) is None
        assert mock_vad.call_count == 0

    def test_reset_drops_buffer(self, mock_vad, voice_frame):
        segmenter = SpeechSegmenter(mock_vad)
        segmenter.feed(voice_frame, 16000)
        segmenter.reset()

        assert segmenter.buffered_samples == 0
        assert segmenter.end_session() is None

    def test_with_energy_vad(self, voice_frame, silent_frame):
        segmenter = SpeechSegmenter(EnergyVAD(), SegmenterConfig(pause_threshold_ms=50))

        assert segmenter.feed(voice_frame, 16000).type == SegmenterEventType.STARTED
        events = [segmenter.feed(silent_frame, 16000) for _ in range(6)]

        assert events[-1].type == SegmenterEventType.UTTERANCE_READY
        assert all(event is None for event in events[:-1])


# =============================================================================
# WAV encoding
# =============================================================================


class TestWavEncoding:
    """Tests for PCM and WAV conversion."""

    def test_pcm16_conversion(self):
        pcm = float_to_pcm16([0.0, 1.0, -1.0, 2.0])

        assert len(pcm) == 8
        samples = pcm16_to_float(pcm)
        assert samples[0] == 0.0
        assert samples[1] == pytest.approx(32767 / 32768)
        # Out-of-range input is clipped
        assert samples[3] == samples[1]

    def test_encode_wav_header(self, voice_frame):
        data = encode_wav(voice_frame, 16000)

        with wave.open(io.BytesIO(data), "rb") as wav_file:
            assert wav_file.getnchannels() == 1
            assert wav_file.getsampwidth() == 2
            assert wav_file.getframerate() == 16000
            assert wav_file.getnframes() == voice_frame.size

    def test_encode_wav_base64(self, voice_frame):
        encoded = encode_wav_base64(voice_frame, 24000)
        decoded = base64.b64decode(encoded)

        assert decoded[:4] == b"RIFF"
        assert decoded[8:12] == b"WAVE"
