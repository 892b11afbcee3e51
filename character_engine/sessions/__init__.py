"""Per-session conversation state."""

from .models import AgentProfile, ChatMessage, MessageRole, SessionState, Transport
from .registry import SessionRegistry

__all__ = [
    "AgentProfile",
    "ChatMessage",
    "MessageRole",
    "SessionState",
    "Transport",
    "SessionRegistry",
]
