"""
Character Engine application.

Owns the shared resources: the session registry, the voice-activity
detector, the providers and the two character graphs (text input and audio
input), which are built once and shared by every session.
"""

import tempfile
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

import structlog

from ..audio.segmenter import SegmenterConfig, SpeechSegmenter
from ..audio.vad import EnergyVAD, VADConfig, VoiceActivityDetector
from ..config import Settings
from ..core.errors import ConfigurationError, SessionError
from ..pipeline.factory import create_character_graph
from ..pipeline.graph import PipelineGraph
from ..pipeline.prompts import DIALOG_PROMPT_TEMPLATE, PromptTemplate, TemplateRenderer
from ..providers.base import (
    PromptRenderer,
    SpeechRecognizer,
    SpeechSynthesizer,
    TextGenerationConfig,
    TextGenerator,
)
from ..providers.openai_compat import (
    OpenAICompatibleSpeechRecognizer,
    OpenAICompatibleSpeechSynthesizer,
    OpenAICompatibleTextGenerator,
)
from ..sessions.models import AgentProfile, Transport
from ..sessions.registry import SessionRegistry
from .handler import Orchestrator

logger = structlog.get_logger(__name__)


class CharacterEngineApp:
    """Application container and session lifecycle boundary."""

    def __init__(
        self,
        settings: Settings,
        registry: Optional[SessionRegistry] = None,
        generator: Optional[TextGenerator] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        recognizer: Optional[SpeechRecognizer] = None,
        vad: Optional[VoiceActivityDetector] = None,
        renderer: Optional[PromptRenderer] = None,
    ):
        self.settings = settings
        self.registry = registry if registry is not None else SessionRegistry()
        self.generator = generator
        self.synthesizer = synthesizer
        self.recognizer = recognizer
        self.vad = vad
        self.renderer = renderer if renderer is not None else TemplateRenderer()

        self.text_graph: Optional[PipelineGraph] = None
        self.audio_graph: Optional[PipelineGraph] = None
        self.prompt_template: str = DIALOG_PROMPT_TEMPLATE
        self._owned_providers: List = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # -------------------------------------------------------------------------
    # Startup / shutdown
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create providers and build both graphs. Raises ConfigurationError."""
        if self._initialized:
            return

        settings = self.settings
        self._create_providers()

        if settings.prompt_template_path is not None:
            self.prompt_template = PromptTemplate.from_file(settings.prompt_template_path).template

        if self.vad is None:
            self.vad = EnergyVAD(
                VADConfig(
                    energy_threshold_db=settings.vad_energy_threshold_db,
                    energy_smoothing=settings.vad_energy_smoothing,
                )
            )

        text_config = TextGenerationConfig(**settings.text_generation.model_dump())
        common = dict(
            registry=self.registry,
            generator=self.generator,
            synthesizer=self.synthesizer,
            voice_id=settings.voice_id,
            recognizer=self.recognizer,
            renderer=self.renderer,
            prompt_template=self.prompt_template,
            text_config=text_config,
        )
        self.text_graph = create_character_graph(**common, with_audio_input=False)
        self.audio_graph = create_character_graph(**common, with_audio_input=True)

        if settings.graph_visualization_enabled:
            self._write_graph_visualizations()

        self._initialized = True
        logger.info(
            "character_engine_initialized",
            llm_model=settings.llm_model_name,
            llm_provider=settings.llm_provider,
            voice_id=settings.voice_id,
            sample_rate=settings.sample_rate,
        )

    def _create_providers(self) -> None:
        settings = self.settings
        http = dict(api_key=settings.api_key, base_url=settings.api_base_url, timeout=settings.request_timeout)

        try:
            if self.generator is None:
                self.generator = OpenAICompatibleTextGenerator(
                    model=settings.llm_model_name,
                    provider=settings.llm_provider,
                    **http,
                )
                self._owned_providers.append(self.generator)
            if self.synthesizer is None:
                self.synthesizer = OpenAICompatibleSpeechSynthesizer(model=settings.tts_model_name, **http)
                self._owned_providers.append(self.synthesizer)
            if self.recognizer is None:
                self.recognizer = OpenAICompatibleSpeechRecognizer(model=settings.stt_model_name, **http)
                self._owned_providers.append(self.recognizer)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def _write_graph_visualizations(self) -> None:
        for graph in (self.text_graph, self.audio_graph):
            path = Path(tempfile.gettempdir()) / f"{graph.id}.dot"
            path.write_text(graph.to_dot(), encoding="utf-8")
            logger.info("graph_visualization_written", graph_id=graph.id, path=str(path))

    async def shutdown(self) -> None:
        """Destroy sessions and graphs and close owned provider clients."""
        for key in self.registry.keys():
            await self.registry.destroy(key)

        for graph in (self.text_graph, self.audio_graph):
            if graph is not None:
                await graph.destroy()

        for provider in self._owned_providers:
            await provider.close()
        self._owned_providers = []

        self._initialized = False
        logger.info("character_engine_stopped")

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def load(self, key: str, agent: AgentProfile, user_name: str) -> AgentProfile:
        """Create a session for ``key``. Returns the agent with its generated id."""
        agent = agent.model_copy(update={"id": str(uuid4())})
        await self.registry.create(key, agent, user_name)
        return agent

    async def unload(self, key: str) -> bool:
        return await self.registry.destroy(key)

    async def connect(self, key: str, transport: Transport) -> Orchestrator:
        """
        Attach a client connection to an existing session.

        Raises SessionNotFoundError for an unknown key and SessionError when
        the session already has a connection.
        """
        if not self._initialized:
            raise ConfigurationError("Character engine is not initialized")

        if not await self.registry.attach_transport(key, transport):
            raise SessionError(f"Session already connected: {key}", key=key, code="SESSION_CONNECTED")

        settings = self.settings
        segmenter = SpeechSegmenter(
            self.vad,
            SegmenterConfig(
                pause_threshold_ms=settings.pause_duration_threshold_ms,
                min_frame_samples=settings.frame_per_buffer,
            ),
        )
        return Orchestrator(
            key=key,
            registry=self.registry,
            transport=transport,
            text_graph=self.text_graph,
            audio_graph=self.audio_graph,
            segmenter=segmenter,
            sample_rate=settings.sample_rate,
            interaction_end_after_error=settings.interaction_end_after_error,
        )
