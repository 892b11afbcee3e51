"""
Speech Segmentation
===================

Stateful voice-activity state machine that turns a stream of client audio
frames into finalized utterances.

Each frame is peak-normalized and handed to a voice-activity detector:
- voice: start (or keep) capturing, buffer the frame, reset the pause timer
- no voice while capturing: add the frame duration to the pause timer and
  finalize once it exceeds the threshold
- no voice while idle: nothing happens

Feeding is strictly sequential; one segmenter belongs to one session.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np
import structlog

from .normalizer import AudioFrameNormalizer, FrameLike, as_samples
from .vad import NO_VOICE, VoiceActivityDetector

logger = structlog.get_logger(__name__)


class CaptureState(str, Enum):
    """Utterance capture states."""

    IDLE = "idle"
    CAPTURING = "capturing"
    FINALIZED = "finalized"


class SegmenterEventType(str, Enum):
    """Events emitted by the segmenter."""

    STARTED = "started"
    UTTERANCE_READY = "utterance_ready"


@dataclass
class SegmenterEvent:
    """Result of feeding a frame. ``samples`` is set for UTTERANCE_READY."""

    type: SegmenterEventType
    samples: Optional[np.ndarray] = None
    sample_rate: Optional[int] = None

    @property
    def duration_ms(self) -> float:
        if self.samples is None or not self.sample_rate:
            return 0.0
        return self.samples.size * 1000.0 / self.sample_rate


@dataclass
class SegmenterConfig:
    """
    Configuration for speech segmentation.

    Attributes:
        pause_threshold_ms: Silence after speech that finalizes an utterance
        min_frame_samples: Frames shorter than this are ignored
    """

    pause_threshold_ms: float = 1000.0
    min_frame_samples: int = 0


class SpeechSegmenter:
    """Buffers speech frames and detects utterance boundaries."""

    def __init__(
        self,
        detector: VoiceActivityDetector,
        config: Optional[SegmenterConfig] = None,
        normalizer: Optional[AudioFrameNormalizer] = None,
    ):
        self.detector = detector
        self.config = config or SegmenterConfig()
        self.normalizer = normalizer or AudioFrameNormalizer()

        self._capturing = False
        self._pause_duration_ms = 0.0
        self._buffer: List[np.ndarray] = []
        self._sample_rate: Optional[int] = None
        self._state = CaptureState.IDLE

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def capturing(self) -> bool:
        return self._capturing

    @property
    def pause_duration_ms(self) -> float:
        return self._pause_duration_ms

    @property
    def buffered_samples(self) -> int:
        return sum(chunk.size for chunk in self._buffer)

    def feed(self, frame: FrameLike, sample_rate: int) -> Optional[SegmenterEvent]:
        """
        Feed one frame.

        Returns:
            STARTED on the transition into capturing, UTTERANCE_READY when the
            pause threshold is crossed, otherwise None.
        """
        samples = as_samples(frame)
        if samples.size == 0 or samples.size < self.config.min_frame_samples:
            return None

        normalized = self.normalizer.normalize(samples)
        verdict = self.detector.detect(normalized, sample_rate)

        if verdict != NO_VOICE:
            started = not self._capturing
            self._capturing = True
            self._state = CaptureState.CAPTURING
            self._pause_duration_ms = 0.0
            if self._sample_rate is None:
                self._sample_rate = sample_rate
            self._buffer.append(normalized)

            if started:
                logger.debug("speech_started", sample_rate=sample_rate)
                return SegmenterEvent(type=SegmenterEventType.STARTED)
            return None

        if not self._capturing:
            return None

        self._pause_duration_ms += normalized.size * 1000.0 / sample_rate
        if self._pause_duration_ms > self.config.pause_threshold_ms:
            logger.debug(
                "pause_threshold_exceeded",
                pause_ms=self._pause_duration_ms,
                threshold_ms=self.config.pause_threshold_ms,
            )
            return self._finalize()

        return None

    def end_session(self) -> Optional[SegmenterEvent]:
        """
        Force finalization, regardless of the pause timer.

        Returns UTTERANCE_READY when audio was buffered; state is reset either way.
        """
        if self._buffer:
            return self._finalize()
        self.reset()
        return None

    def reset(self) -> None:
        """Drop any buffered audio without emitting."""
        self._capturing = False
        self._pause_duration_ms = 0.0
        self._buffer = []
        self._sample_rate = None
        self._state = CaptureState.IDLE

    def _finalize(self) -> SegmenterEvent:
        self._state = CaptureState.FINALIZED
        samples = np.concatenate(self._buffer) if self._buffer else np.zeros(0, dtype=np.float32)
        event = SegmenterEvent(
            type=SegmenterEventType.UTTERANCE_READY,
            samples=samples,
            sample_rate=self._sample_rate,
        )
        logger.info(
            "utterance_ready",
            samples=samples.size,
            duration_ms=round(event.duration_ms, 1),
        )
        self.reset()
        return event
