"""Session data model."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Conversation roles."""

    USER = "user"
    ASSISTANT = "assistant"


class AgentProfile(BaseModel):
    """Character the user talks to."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str = ""
    motivation: str = ""
    knowledge: List[str] = Field(default_factory=list)


@dataclass
class ChatMessage:
    """One entry of the conversation history."""

    id: str
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "role": self.role.value, "content": self.content}


class Transport(Protocol):
    """Client connection a session streams events to."""

    async def send(self, event: Dict[str, Any]) -> None:
        ...


@dataclass
class SessionState:
    """
    Conversation state bound to one session key.

    Instances handed out by the registry are snapshots; mutating them has no
    effect on the registered session.
    """

    key: str
    agent: AgentProfile
    user_name: str
    messages: List[ChatMessage] = field(default_factory=list)
    transport: Optional[Transport] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None

    def copy(self) -> "SessionState":
        return replace(
            self,
            agent=self.agent.model_copy(deep=True),
            messages=[replace(message) for message in self.messages],
        )

    def history(self) -> List[Dict[str, str]]:
        return [message.to_dict() for message in self.messages]
