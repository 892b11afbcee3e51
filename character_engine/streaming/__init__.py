"""Client wire protocol."""

from .events import (
    AudioMessage,
    AudioSessionEndMessage,
    EventCodec,
    EventType,
    InboundMessage,
    InboundType,
    TextMessage,
    parse_inbound,
)
from .transport import WebSocketTransport

__all__ = [
    "AudioMessage",
    "AudioSessionEndMessage",
    "EventCodec",
    "EventType",
    "InboundMessage",
    "InboundType",
    "TextMessage",
    "parse_inbound",
    "WebSocketTransport",
]
