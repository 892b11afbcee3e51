"""External collaborator contracts and their OpenAI-compatible implementations."""

from .base import (
    AudioSample,
    PromptRenderer,
    SpeechRecognizer,
    SpeechSynthesizer,
    SynthesisChunk,
    TextGenerationConfig,
    TextGenerator,
)
from .openai_compat import (
    OpenAICompatibleProvider,
    OpenAICompatibleSpeechRecognizer,
    OpenAICompatibleSpeechSynthesizer,
    OpenAICompatibleTextGenerator,
)

__all__ = [
    "AudioSample",
    "PromptRenderer",
    "SpeechRecognizer",
    "SpeechSynthesizer",
    "SynthesisChunk",
    "TextGenerationConfig",
    "TextGenerator",
    "OpenAICompatibleProvider",
    "OpenAICompatibleSpeechRecognizer",
    "OpenAICompatibleSpeechSynthesizer",
    "OpenAICompatibleTextGenerator",
]
