"""
Provider contracts.

The pipeline consumes language generation, speech synthesis, speech
recognition and prompt rendering through these narrow async interfaces.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

import numpy as np


@dataclass
class AudioSample:
    """A mono buffer of float samples."""

    samples: np.ndarray
    sample_rate: int

    @property
    def duration_ms(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.samples.size * 1000.0 / self.sample_rate


@dataclass
class SynthesisChunk:
    """
    One unit of synthesized speech.

    ``text`` is the text the audio belongs to; a sentence split over several
    audio chunks carries its text on the first one only.
    """

    text: str
    audio: np.ndarray
    sample_rate: int


@dataclass
class TextGenerationConfig:
    """Sampling parameters for text generation."""

    max_new_tokens: int = 500
    max_prompt_length: int = 1000
    repetition_penalty: float = 1.0
    top_p: float = 0.5
    temperature: float = 0.1
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stop_sequences: List[str] = field(default_factory=lambda: ["\n"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_new_tokens": self.max_new_tokens,
            "max_prompt_length": self.max_prompt_length,
            "repetition_penalty": self.repetition_penalty,
            "top_p": self.top_p,
            "temperature": self.temperature,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "stop_sequences": list(self.stop_sequences),
        }


@runtime_checkable
class TextGenerator(Protocol):
    def generate(
        self,
        messages: List[Dict[str, str]],
        config: Optional[TextGenerationConfig] = None,
    ) -> AsyncIterator[str]:
        ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str, voice_id: str) -> AsyncIterator[SynthesisChunk]:
        ...


@runtime_checkable
class SpeechRecognizer(Protocol):
    def recognize(self, audio: AudioSample) -> AsyncIterator[str]:
        ...


@runtime_checkable
class PromptRenderer(Protocol):
    def render(self, template: str, data: Dict[str, Any]) -> str:
        ...
