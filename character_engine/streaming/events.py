"""
Wire protocol for the client connection.

Outbound events are plain JSON objects tagged by ``type``:

    TEXT             {text: {text, final}, packetId: {utteranceId, interactionId}, routing: {source}}
    AUDIO            {audio: {chunk}, packetId: {utteranceId, interactionId}, routing: {source}}
    ERROR            {error, packetId: {interactionId}}
    INTERACTION_END  {packetId: {interactionId}}

Every event carries an ISO-8601 ``date``. Inbound messages are validated with
pydantic models.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

import numpy as np
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from ..core.errors import ProtocolError


# =============================================================================
# Outbound
# =============================================================================


class EventType(str, Enum):
    """Outbound event types."""

    TEXT = "TEXT"
    AUDIO = "AUDIO"
    ERROR = "ERROR"
    INTERACTION_END = "INTERACTION_END"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _source(is_agent: bool = False, is_user: bool = False, name: Optional[str] = None) -> Dict[str, Any]:
    source: Dict[str, Any] = {}
    if is_agent:
        source["isAgent"] = True
    if is_user:
        source["isUser"] = True
    if name is not None:
        source["name"] = name
    return source


class EventCodec:
    """Builds outbound events and parses inbound messages."""

    @staticmethod
    def text(
        text: str,
        interaction_id: str,
        is_agent: bool = False,
        is_user: bool = False,
        name: Optional[str] = None,
        utterance_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "type": EventType.TEXT.value,
            "text": {"text": text, "final": True},
            "date": _now(),
            "packetId": {
                "utteranceId": utterance_id or str(uuid4()),
                "interactionId": interaction_id,
            },
            "routing": {"source": _source(is_agent, is_user, name)},
        }

    @staticmethod
    def audio(chunk: str, interaction_id: str, utterance_id: str) -> Dict[str, Any]:
        return {
            "type": EventType.AUDIO.value,
            "audio": {"chunk": chunk},
            "date": _now(),
            "packetId": {"utteranceId": utterance_id, "interactionId": interaction_id},
            "routing": {"source": _source(is_agent=True)},
        }

    @staticmethod
    def error(error: Union[str, Exception], interaction_id: Optional[str]) -> Dict[str, Any]:
        return {
            "type": EventType.ERROR.value,
            "error": str(error),
            "date": _now(),
            "packetId": {"interactionId": interaction_id},
        }

    @staticmethod
    def interaction_end(interaction_id: str) -> Dict[str, Any]:
        return {
            "type": EventType.INTERACTION_END.value,
            "date": _now(),
            "packetId": {"interactionId": interaction_id},
        }

    @staticmethod
    def encode(event: Dict[str, Any]) -> str:
        return json.dumps(event)

    @staticmethod
    def decode(raw: Union[str, bytes, Dict[str, Any]]) -> "InboundMessage":
        return parse_inbound(raw)


# =============================================================================
# Inbound
# =============================================================================


class InboundType(str, Enum):
    """Inbound message types."""

    TEXT = "text"
    AUDIO = "audio"
    AUDIO_SESSION_END = "audioSessionEnd"


class TextMessage(BaseModel):
    type: Literal["text"]
    text: str


# Browsers serialize a Float32Array as an index-keyed object.
Frame = Union[List[float], Dict[str, float]]


class AudioMessage(BaseModel):
    type: Literal["audio"]
    audio: List[Frame] = Field(default_factory=list)

    @field_validator("audio")
    @classmethod
    def order_frames(cls, v: List[Frame]) -> List[Frame]:
        frames: List[Frame] = []
        for frame in v:
            if isinstance(frame, dict):
                frame = [frame[k] for k in sorted(frame, key=_frame_index)]
            frames.append(frame)
        return frames

    def samples(self) -> np.ndarray:
        """Flatten every frame of the message into one sample buffer."""
        parts = [np.asarray(frame, dtype=np.float32) for frame in self.audio]
        if not parts:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(parts)


class AudioSessionEndMessage(BaseModel):
    type: Literal["audioSessionEnd"]


InboundMessage = Annotated[
    Union[TextMessage, AudioMessage, AudioSessionEndMessage],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)


def _frame_index(key: str) -> int:
    try:
        return int(key)
    except ValueError:
        raise ValueError(f"Invalid audio frame index: {key!r}")


def parse_inbound(raw: Union[str, bytes, Dict[str, Any]]) -> InboundMessage:
    """Parse one client message, raising ProtocolError when it is malformed."""
    try:
        if isinstance(raw, (str, bytes)):
            return _inbound_adapter.validate_json(raw)
        return _inbound_adapter.validate_python(raw)
    except ValidationError as e:
        raise ProtocolError(
            f"Invalid client message: {e.error_count()} validation error(s)",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e
