"""
Pipeline Nodes
==============

Stage nodes for the character pipelines.

Inputs flowing into a graph are plain dicts:

    text input:   {"key": ..., "interaction_id": ..., "text": ...}
    audio input:  {"key": ..., "interaction_id": ..., "audio": AudioSample}

Nodes hold no per-session state, so one graph serves every session.
"""

import inspect
import re
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import structlog

from ..providers.base import (
    AudioSample,
    PromptRenderer,
    SpeechRecognizer,
    SpeechSynthesizer,
    SynthesisChunk,
    TextGenerationConfig,
    TextGenerator,
)
from ..sessions.models import MessageRole
from ..sessions.registry import SessionRegistry
from ..streaming.events import EventCodec
from .graph import DataKind, ExecutionContext, Node, kinds_compatible
from .prompts import build_prompt_data

logger = structlog.get_logger(__name__)


# =============================================================================
# Generic nodes
# =============================================================================


class CustomNode(Node):
    """
    Wraps a callable taking the list of inputs.

    The callable may be a plain function, a coroutine function or an async
    generator function (for stream outputs).
    """

    def __init__(
        self,
        id: str,
        fn: Callable[[List[Any]], Any],
        input_kinds: Tuple[DataKind, ...] = (DataKind.JSON,),
        output_kind: DataKind = DataKind.JSON,
        report_to_client: bool = False,
    ):
        super().__init__(id, report_to_client=report_to_client)
        self.fn = fn
        self.input_kinds = tuple(input_kinds)
        self.output_kind = output_kind

    def process(self, inputs: List[Any], context: ExecutionContext) -> Any:
        return self.fn(inputs)


# =============================================================================
# Audio input branch
# =============================================================================


class AudioInputNode(Node):
    """Entry point of the audio graph; passes the audio input through."""

    input_kinds = (DataKind.JSON,)
    output_kind = DataKind.JSON

    async def process(self, inputs: List[Any], context: ExecutionContext) -> Dict[str, Any]:
        return inputs[0]


class AudioFilterNode(Node):
    """Extracts the audio sample from the audio input."""

    input_kinds = (DataKind.JSON,)
    output_kind = DataKind.AUDIO

    async def process(self, inputs: List[Any], context: ExecutionContext) -> AudioSample:
        audio = inputs[0].get("audio")
        if not isinstance(audio, AudioSample):
            raise ValueError("audio input carries no audio sample")
        return audio


class SpeechToTextNode(Node):
    """Recognizes the audio sample and returns the full transcript."""

    input_kinds = (DataKind.AUDIO,)
    output_kind = DataKind.TEXT

    def __init__(self, id: str, recognizer: SpeechRecognizer, **kwargs):
        super().__init__(id, **kwargs)
        self.recognizer = recognizer

    async def process(self, inputs: List[Any], context: ExecutionContext) -> str:
        audio: AudioSample = inputs[0]
        parts = [part async for part in self.recognizer.recognize(audio)]
        text = " ".join(part.strip() for part in parts if part.strip())
        logger.debug(
            "speech_recognized",
            correlation_id=context.correlation_id,
            duration_ms=round(audio.duration_ms, 1),
            characters=len(text),
        )
        return text


class TextInputNode(Node):
    """Merges the recognized text into the audio input, dropping the audio."""

    input_kinds = (DataKind.JSON, DataKind.TEXT)
    output_kind = DataKind.JSON

    async def process(self, inputs: List[Any], context: ExecutionContext) -> Dict[str, Any]:
        payload, text = inputs
        merged = {k: v for k, v in payload.items() if k != "audio"}
        merged["text"] = text
        return merged


def has_text(value: Dict[str, Any]) -> bool:
    """Edge guard: the input carries non-blank text."""
    return bool((value.get("text") or "").strip())


# =============================================================================
# Dialog
# =============================================================================


class UpdateStateNode(Node):
    """
    Appends the user's message to the session history and echoes it to the
    client. Outputs a snapshot of the session state.
    """

    input_kinds = (DataKind.JSON,)
    output_kind = DataKind.JSON

    def __init__(self, id: str, registry: SessionRegistry, **kwargs):
        super().__init__(id, **kwargs)
        self.registry = registry

    async def process(self, inputs: List[Any], context: ExecutionContext):
        payload = inputs[0]
        key = payload["key"]
        interaction_id = payload["interaction_id"]
        text = payload["text"]

        await self.registry.append_message(key, MessageRole.USER, text, interaction_id)
        state = await self.registry.get(key)

        if state.transport is not None:
            await state.transport.send(EventCodec.text(text, interaction_id, is_user=True))

        return state


class DialogPromptBuilderNode(Node):
    """Renders the dialog prompt from a session snapshot into chat messages."""

    input_kinds = (DataKind.JSON,)
    output_kind = DataKind.CHAT_MESSAGES

    def __init__(self, id: str, renderer: PromptRenderer, template: str, **kwargs):
        super().__init__(id, **kwargs)
        self.renderer = renderer
        self.template = template

    async def process(self, inputs: List[Any], context: ExecutionContext) -> List[Dict[str, str]]:
        prompt = self.renderer.render(self.template, build_prompt_data(inputs[0]))
        return [{"role": MessageRole.USER.value, "content": prompt}]


# =============================================================================
# Generation
# =============================================================================


class LLMNode(Node):
    """Generates a reply; a token stream when ``stream`` is set, else the full text."""

    input_kinds = (DataKind.CHAT_MESSAGES,)

    def __init__(
        self,
        id: str,
        generator: TextGenerator,
        config: Optional[TextGenerationConfig] = None,
        stream: bool = True,
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self.generator = generator
        self.config = config or TextGenerationConfig()
        self.stream = stream
        self.output_kind = DataKind.TEXT_STREAM if stream else DataKind.TEXT

    async def process(self, inputs: List[Any], context: ExecutionContext) -> Any:
        tokens = self.generator.generate(inputs[0], self.config)
        if self.stream:
            return tokens
        return "".join([token async for token in tokens])


class TextChunkingNode(Node):
    """Regroups a token stream into sentences."""

    input_kinds = (DataKind.TEXT_STREAM,)
    output_kind = DataKind.TEXT_STREAM

    sentence_end_pattern = re.compile(r'[.!?]+[\"\'\)\]]*\s+')

    async def process(self, inputs: List[Any], context: ExecutionContext) -> AsyncIterator[str]:
        return self._chunk(inputs[0])

    async def _chunk(self, tokens: AsyncIterator[str]) -> AsyncIterator[str]:
        pending = ""
        async for token in tokens:
            pending += token
            boundaries = list(self.sentence_end_pattern.finditer(pending))
            if boundaries:
                end = boundaries[-1].end()
                sentence, pending = pending[:end].strip(), pending[end:]
                if sentence:
                    yield sentence

        if pending.strip():
            yield pending.strip()


class TextToSpeechNode(Node):
    """Synthesizes each incoming text into a stream of SynthesisChunk."""

    input_kinds = (DataKind.TEXT_STREAM,)
    output_kind = DataKind.TTS_STREAM

    def __init__(self, id: str, synthesizer: SpeechSynthesizer, voice_id: str, **kwargs):
        super().__init__(id, **kwargs)
        self.synthesizer = synthesizer
        self.voice_id = voice_id

    def accepts(self, kind: DataKind, position: int) -> bool:
        return kinds_compatible(kind, DataKind.TEXT_STREAM) or kind == DataKind.TEXT

    async def process(self, inputs: List[Any], context: ExecutionContext) -> AsyncIterator[SynthesisChunk]:
        return self._synthesize(inputs[0])

    async def _synthesize(self, source: Any) -> AsyncIterator[SynthesisChunk]:
        if isinstance(source, str):
            texts = _single(source)
        else:
            texts = source

        async for text in texts:
            if not text.strip():
                continue
            chunks = self.synthesizer.synthesize(text, self.voice_id)
            try:
                async for chunk in chunks:
                    yield chunk
            finally:
                aclose = getattr(chunks, "aclose", None)
                if aclose is not None:
                    result = aclose()
                    if inspect.isawaitable(result):
                        await result


async def _single(text: str) -> AsyncIterator[str]:
    yield text
