"""
Connection Orchestrator
=======================

One Orchestrator per client connection. Inbound messages are handled strictly
one at a time, in arrival order:

- text goes straight to the text graph
- audio is fed to the speech segmenter; a finalized utterance goes to the
  audio graph
- audioSessionEnd forces the segmenter to finalize

Each dispatch streams TEXT and AUDIO events back, merges the reply into the
session's assistant message and ends with INTERACTION_END. A failing stage
produces an ERROR event; the session stays usable.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4

import structlog

from ..audio.segmenter import SegmenterEvent, SegmenterEventType, SpeechSegmenter
from ..audio.wav import encode_wav_base64
from ..core.errors import ProtocolError, SessionError, StageError, TransportError
from ..pipeline.graph import PipelineGraph
from ..providers.base import AudioSample, SynthesisChunk
from ..sessions.models import Transport
from ..sessions.registry import SessionRegistry
from ..streaming.events import (
    AudioMessage,
    AudioSessionEndMessage,
    EventCodec,
    TextMessage,
    parse_inbound,
)

logger = structlog.get_logger(__name__)


class OrchestratorState(str, Enum):
    """Per-connection states."""

    IDLE = "idle"
    CAPTURING = "capturing"
    DISPATCHING = "dispatching"
    CLOSED = "closed"


class Orchestrator:
    """Routes one connection's client events through the pipelines."""

    def __init__(
        self,
        key: str,
        registry: SessionRegistry,
        transport: Transport,
        text_graph: PipelineGraph,
        audio_graph: PipelineGraph,
        segmenter: SpeechSegmenter,
        sample_rate: int = 16000,
        interaction_end_after_error: bool = True,
    ):
        self.key = key
        self.registry = registry
        self.transport = transport
        self.text_graph = text_graph
        self.audio_graph = audio_graph
        self.segmenter = segmenter
        self.sample_rate = sample_rate
        self.interaction_end_after_error = interaction_end_after_error

        self.state = OrchestratorState.IDLE
        self._dispatch_task: Optional[asyncio.Task] = None
        self._log = logger.bind(key=key)

    @property
    def closed(self) -> bool:
        return self.state == OrchestratorState.CLOSED

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def handle_message(self, raw: Union[str, bytes, Dict[str, Any]]) -> None:
        """Process one client message to completion."""
        if self.closed:
            return

        interaction_id = str(uuid4())

        try:
            try:
                message = parse_inbound(raw)
            except ProtocolError as e:
                self._log.warning("invalid_client_message", error=e.message)
                await self._send(EventCodec.error(e.message, interaction_id))
                return

            if isinstance(message, TextMessage):
                await self._handle_text(message, interaction_id)
            elif isinstance(message, AudioMessage):
                await self._handle_audio(message, interaction_id)
            elif isinstance(message, AudioSessionEndMessage):
                await self._handle_audio_session_end(interaction_id)

        except TransportError as e:
            self._log.warning("transport_failed", error=e.message)
            await self.close(flush=False)

    async def _handle_text(self, message: TextMessage, interaction_id: str) -> None:
        if not message.text.strip():
            self._log.debug("empty_text_ignored")
            return

        payload = {"key": self.key, "interaction_id": interaction_id, "text": message.text}
        await self._dispatch(self.text_graph, payload, interaction_id)

    async def _handle_audio(self, message: AudioMessage, interaction_id: str) -> None:
        event = self.segmenter.feed(message.samples(), self.sample_rate)
        if event is None:
            return

        if event.type == SegmenterEventType.STARTED:
            self.state = OrchestratorState.CAPTURING
        elif event.type == SegmenterEventType.UTTERANCE_READY:
            await self._dispatch_utterance(event, interaction_id)

    async def _handle_audio_session_end(self, interaction_id: str) -> None:
        event = self.segmenter.end_session()
        if event is not None:
            await self._dispatch_utterance(event, interaction_id)
        elif self.state == OrchestratorState.CAPTURING:
            self.state = OrchestratorState.IDLE

    async def _dispatch_utterance(self, event: SegmenterEvent, interaction_id: str) -> None:
        payload = {
            "key": self.key,
            "interaction_id": interaction_id,
            "audio": AudioSample(samples=event.samples, sample_rate=event.sample_rate or self.sample_rate),
        }
        await self._dispatch(self.audio_graph, payload, interaction_id)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _dispatch(self, graph: PipelineGraph, payload: Dict[str, Any], interaction_id: str) -> None:
        session = await self.registry.snapshot(self.key)
        if session is None:
            self._log.warning("dispatch_without_session", interaction_id=interaction_id)
            await self._send(EventCodec.error(f"Session not found: {self.key}", interaction_id))
            return

        self.state = OrchestratorState.DISPATCHING
        execution = graph.execute(payload, correlation_id=str(uuid4()))
        self._dispatch_task = asyncio.current_task()
        log = self._log.bind(
            interaction_id=interaction_id,
            graph_id=graph.id,
            correlation_id=execution.correlation_id,
        )
        log.info("interaction_started")

        try:
            async for output in execution:
                await self._forward(output, interaction_id, session.agent.id)

            await self._send(EventCodec.interaction_end(interaction_id))
            log.info("interaction_completed")

        except (StageError, SessionError) as e:
            log.warning("interaction_failed", error=e.message, code=e.code)
            await self._send(EventCodec.error(e.message, interaction_id))
            if self.interaction_end_after_error:
                await self._send(EventCodec.interaction_end(interaction_id))

        finally:
            await execution.close()
            self._dispatch_task = None
            if not self.closed:
                self.state = OrchestratorState.CAPTURING if self.segmenter.capturing else OrchestratorState.IDLE

    async def _forward(self, output: Any, interaction_id: str, agent_id: Optional[str]) -> None:
        if isinstance(output, str):
            await self._send_agent_text(output, interaction_id, agent_id)
            await self.registry.update_or_append_assistant_message(self.key, interaction_id, output)
            return

        if not hasattr(output, "__aiter__"):
            self._log.debug("output_skipped", output_type=type(output).__name__)
            return

        content = ""
        utterance_id = str(uuid4())

        async for chunk in output:
            if isinstance(chunk, SynthesisChunk):
                text, audio = chunk.text, chunk
            else:
                text, audio = str(chunk), None

            if text:
                utterance_id = str(uuid4())
                content = f"{content} {text}" if content else text
                await self._send_agent_text(text, interaction_id, agent_id, utterance_id=utterance_id)
                await self.registry.update_or_append_assistant_message(self.key, interaction_id, content)

            if audio is not None and audio.audio.size:
                chunk_b64 = encode_wav_base64(audio.audio, audio.sample_rate)
                await self._send(EventCodec.audio(chunk_b64, interaction_id, utterance_id))

    async def _send_agent_text(
        self,
        text: str,
        interaction_id: str,
        agent_id: Optional[str],
        utterance_id: Optional[str] = None,
    ) -> None:
        await self._send(
            EventCodec.text(text, interaction_id, is_agent=True, name=agent_id, utterance_id=utterance_id)
        )

    async def _send(self, event: Dict[str, Any]) -> None:
        await self.transport.send(event)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def close(self, flush: bool = True) -> None:
        """
        Stop the connection: stop feeding audio, finalize any buffered
        utterance (dispatching it only when ``flush`` is set), abandon the
        in-flight execution and destroy the session.
        """
        if self.closed:
            return

        # Cancelling the running dispatch closes its execution.
        dispatching = self._dispatch_task
        if dispatching is not None and dispatching is not asyncio.current_task():
            dispatching.cancel()
            await asyncio.wait({dispatching})
            self._log.info("interaction_abandoned")

        event = self.segmenter.end_session()
        if event is not None:
            if flush:
                try:
                    await self._dispatch_utterance(event, str(uuid4()))
                except TransportError as e:
                    self._log.warning("flush_failed", error=e.message)
            else:
                self._log.info("utterance_dropped", samples=event.samples.size)

        self.state = OrchestratorState.CLOSED

        await self.registry.destroy(self.key)
        self._log.info("connection_closed")
