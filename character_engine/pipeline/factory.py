"""
Character graph assembly.

Text graph:

    UpdateState -> DialogPromptBuilder -> LLM -> TextChunking -> TTS

Audio graph, in front of the same chain:

    AudioInput -> TextInput
    AudioInput -> AudioFilter -> STT -> TextInput
    TextInput -(text is not blank)-> UpdateState
"""

from typing import Optional

from ..providers.base import (
    PromptRenderer,
    SpeechRecognizer,
    SpeechSynthesizer,
    TextGenerationConfig,
    TextGenerator,
)
from ..sessions.registry import SessionRegistry
from .graph import GraphBuilder, PipelineGraph
from .nodes import (
    AudioFilterNode,
    AudioInputNode,
    DialogPromptBuilderNode,
    LLMNode,
    SpeechToTextNode,
    TextChunkingNode,
    TextInputNode,
    TextToSpeechNode,
    UpdateStateNode,
    has_text,
)
from .prompts import DIALOG_PROMPT_TEMPLATE, TemplateRenderer


def create_character_graph(
    registry: SessionRegistry,
    generator: TextGenerator,
    synthesizer: SpeechSynthesizer,
    voice_id: str,
    recognizer: Optional[SpeechRecognizer] = None,
    renderer: Optional[PromptRenderer] = None,
    prompt_template: str = DIALOG_PROMPT_TEMPLATE,
    text_config: Optional[TextGenerationConfig] = None,
    with_audio_input: bool = False,
) -> PipelineGraph:
    """Build the text-input or audio-input character graph."""
    postfix = "WithAudioInput" if with_audio_input else "WithTextInput"

    update_state = UpdateStateNode(f"UpdateStateNode{postfix}", registry)
    prompt_builder = DialogPromptBuilderNode(
        f"DialogPromptBuilderNode{postfix}",
        renderer if renderer is not None else TemplateRenderer(),
        prompt_template,
    )
    llm = LLMNode(f"LLMNode{postfix}", generator, config=text_config, stream=True)
    text_chunking = TextChunkingNode(f"TextChunkingNode{postfix}")
    tts = TextToSpeechNode(f"TTSNode{postfix}", synthesizer, voice_id)

    builder = GraphBuilder(f"CharacterGraph{postfix}")
    for node in (update_state, prompt_builder, llm, text_chunking, tts):
        builder.add_node(node)

    builder.add_edge(update_state, prompt_builder)
    builder.add_edge(prompt_builder, llm)
    builder.add_edge(llm, text_chunking)
    builder.add_edge(text_chunking, tts)

    if with_audio_input:
        if recognizer is None:
            raise ValueError("A speech recognizer is required for the audio graph")

        audio_input = AudioInputNode(f"AudioInputNode{postfix}")
        audio_filter = AudioFilterNode(f"AudioFilterNode{postfix}")
        stt = SpeechToTextNode(f"STTNode{postfix}", recognizer)
        text_input = TextInputNode(f"TextInputNode{postfix}")

        for node in (audio_input, audio_filter, stt, text_input):
            builder.add_node(node)

        # TextInput consumes [audio input, transcript] in this order
        builder.add_edge(audio_input, text_input)
        builder.add_edge(audio_input, audio_filter)
        builder.add_edge(audio_filter, stt)
        builder.add_edge(stt, text_input)
        builder.add_edge(text_input, update_state, condition=has_text)

        builder.set_start_node(audio_input)
    else:
        builder.set_start_node(update_state)

    builder.set_end_node(tts)
    return builder.build()
