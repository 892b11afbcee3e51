"""Shared pytest fixtures for testing."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

import numpy as np
import pytest
import pytest_asyncio

from character_engine.audio.vad import NO_VOICE
from character_engine.config import Settings
from character_engine.core.errors import TransportError
from character_engine.orchestrator.app import CharacterEngineApp
from character_engine.providers.base import AudioSample, SynthesisChunk, TextGenerationConfig
from character_engine.sessions.models import AgentProfile
from character_engine.sessions.registry import SessionRegistry


# =============================================================================
# Test Utilities
# =============================================================================


def sine_wave(
    frequency: float = 440.0,
    duration_ms: float = 10.0,
    sample_rate: int = 16000,
    amplitude: float = 0.5,
) -> np.ndarray:
    """Generate a float sine wave frame."""
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples, dtype=np.float32)
    return (amplitude * np.sin(2 * np.pi * frequency * t / sample_rate)).astype(np.float32)


def silence(duration_ms: float = 10.0, sample_rate: int = 16000) -> np.ndarray:
    """Generate a silent float frame."""
    return np.zeros(int(sample_rate * duration_ms / 1000), dtype=np.float32)


class MockVAD:
    """Voice whenever a frame has any non-zero sample."""

    def __init__(self):
        self.call_count = 0

    def detect(self, samples: np.ndarray, sample_rate: int) -> int:
        self.call_count += 1
        nonzero = np.flatnonzero(samples)
        return int(nonzero[0]) if nonzero.size else NO_VOICE


class MockTextGenerator:
    """Streams canned replies token by token.

    When ``gate`` is set, the stream stops after its first token until the
    event fires.
    """

    def __init__(self, responses: Optional[List[str]] = None, fail_after: Optional[int] = None):
        self.responses = responses or ["Hello there. How can I help you today?"]
        self.fail_after = fail_after
        self.call_count = 0
        self.requests: List[List[Dict[str, str]]] = []
        self.closed_streams = 0
        self.gate: Optional[asyncio.Event] = None
        self.waiting = False

    async def generate(
        self,
        messages: List[Dict[str, str]],
        config: Optional[TextGenerationConfig] = None,
    ) -> AsyncIterator[str]:
        self.requests.append(messages)
        response = self.responses[self.call_count % len(self.responses)]
        self.call_count += 1
        try:
            for i, token in enumerate(response.split(" ")):
                if self.fail_after is not None and i >= self.fail_after:
                    raise RuntimeError("generation backend unavailable")
                if self.gate is not None and i == 1:
                    self.waiting = True
                    await self.gate.wait()
                await asyncio.sleep(0)
                yield token if i == 0 else f" {token}"
        finally:
            self.closed_streams += 1


class MockSynthesizer:
    """Returns a short constant tone for every text."""

    def __init__(self, sample_rate: int = 16000, fail: bool = False):
        self.sample_rate = sample_rate
        self.fail = fail
        self.texts: List[str] = []

    async def synthesize(self, text: str, voice_id: str) -> AsyncIterator[SynthesisChunk]:
        if self.fail:
            raise RuntimeError("synthesis backend unavailable")
        self.texts.append(text)
        await asyncio.sleep(0)
        yield SynthesisChunk(
            text=text,
            audio=np.full(160, 0.25, dtype=np.float32),
            sample_rate=self.sample_rate,
        )


class MockRecognizer:
    """Returns a fixed transcript."""

    def __init__(self, transcript: str = "Tell me a story"):
        self.transcript = transcript
        self.received: List[AudioSample] = []

    async def recognize(self, audio: AudioSample) -> AsyncIterator[str]:
        self.received.append(audio)
        await asyncio.sleep(0)
        if self.transcript:
            yield self.transcript


class RecordingTransport:
    """Collects outbound events."""

    def __init__(self, fail: bool = False):
        self.events: List[Dict[str, Any]] = []
        self.fail = fail

    async def send(self, event: Dict[str, Any]) -> None:
        if self.fail:
            raise TransportError("connection reset")
        self.events.append(event)

    def types(self) -> List[str]:
        return [event["type"] for event in self.events]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def voice_frame() -> np.ndarray:
    """10 ms of tone at 16 kHz (160 samples)."""
    return sine_wave()


@pytest.fixture
def silent_frame() -> np.ndarray:
    """10 ms of silence at 16 kHz (160 samples)."""
    return silence()


@pytest.fixture
def settings() -> Settings:
    """Settings with a test API key."""
    return Settings(api_key="test-key", frame_per_buffer=0, log_format="pretty")


@pytest.fixture
def agent() -> AgentProfile:
    return AgentProfile(
        name="Ada",
        description="A curious inventor",
        motivation="Build a thinking machine",
        knowledge=["Ada lives in London"],
    )


@pytest.fixture
def session_key() -> str:
    return f"key_{uuid4().hex[:8]}"


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def mock_vad() -> MockVAD:
    return MockVAD()


@pytest.fixture
def mock_generator() -> MockTextGenerator:
    return MockTextGenerator()


@pytest.fixture
def mock_synthesizer() -> MockSynthesizer:
    return MockSynthesizer()


@pytest.fixture
def mock_recognizer() -> MockRecognizer:
    return MockRecognizer()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest_asyncio.fixture
async def engine(
    settings: Settings,
    registry: SessionRegistry,
    mock_generator: MockTextGenerator,
    mock_synthesizer: MockSynthesizer,
    mock_recognizer: MockRecognizer,
    mock_vad: MockVAD,
):
    """Initialized application wired to mock providers."""
    app = CharacterEngineApp(
        settings,
        registry=registry,
        generator=mock_generator,
        synthesizer=mock_synthesizer,
        recognizer=mock_recognizer,
        vad=mock_vad,
    )
    await app.initialize()
    yield app
    await app.shutdown()
