"""Streaming pipeline graph, stage nodes and character graph assembly."""

from .factory import create_character_graph
from .graph import (
    DataKind,
    Edge,
    Execution,
    ExecutionContext,
    ExecutionState,
    GraphBuilder,
    Node,
    NodeStream,
    PipelineGraph,
)
from .nodes import (
    AudioFilterNode,
    AudioInputNode,
    CustomNode,
    DialogPromptBuilderNode,
    LLMNode,
    SpeechToTextNode,
    TextChunkingNode,
    TextInputNode,
    TextToSpeechNode,
    UpdateStateNode,
)
from .prompts import DIALOG_PROMPT_TEMPLATE, PromptTemplate, TemplateRenderer, build_prompt_data

__all__ = [
    "create_character_graph",
    "DataKind",
    "Edge",
    "Execution",
    "ExecutionContext",
    "ExecutionState",
    "GraphBuilder",
    "Node",
    "NodeStream",
    "PipelineGraph",
    "AudioFilterNode",
    "AudioInputNode",
    "CustomNode",
    "DialogPromptBuilderNode",
    "LLMNode",
    "SpeechToTextNode",
    "TextChunkingNode",
    "TextInputNode",
    "TextToSpeechNode",
    "UpdateStateNode",
    "DIALOG_PROMPT_TEMPLATE",
    "PromptTemplate",
    "TemplateRenderer",
    "build_prompt_data",
]
