"""
Session Registry
================

Concurrent map from session key to conversation state.

Every mutation of a key runs under that key's lock, so writers for the same
session are serialized while distinct sessions never contend. The underlying
map is never exposed; callers receive snapshots.
"""

import asyncio
from typing import Dict, List, Optional

import structlog

from ..core.errors import SessionExistsError, SessionNotFoundError
from .models import AgentProfile, ChatMessage, MessageRole, SessionState, Transport

logger = structlog.get_logger(__name__)


class SessionRegistry:
    """Registry of live sessions keyed by an opaque session key."""

    def __init__(self):
        self._sessions: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _require(self, key: str) -> SessionState:
        session = self._sessions.get(key)
        if session is None:
            raise SessionNotFoundError(key)
        return session

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def keys(self) -> List[str]:
        return list(self._sessions)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create(self, key: str, agent: AgentProfile, user_name: str) -> SessionState:
        """Register a new session. Raises SessionExistsError for a taken key."""
        async with self._lock(key):
            if key in self._sessions:
                raise SessionExistsError(key)

            session = SessionState(key=key, agent=agent.model_copy(deep=True), user_name=user_name)
            self._sessions[key] = session

        logger.info("session_created", key=key, agent_id=agent.id, agent_name=agent.name)
        return session.copy()

    async def destroy(self, key: str) -> bool:
        """Remove a session. Returns False when it did not exist."""
        async with self._lock(key):
            session = self._sessions.pop(key, None)
        self._locks.pop(key, None)

        if session is None:
            return False

        logger.info("session_destroyed", key=key, messages=len(session.messages))
        return True

    async def get(self, key: str) -> SessionState:
        """Return a snapshot of the session."""
        async with self._lock(key):
            return self._require(key).copy()

    async def snapshot(self, key: str) -> Optional[SessionState]:
        """Return a snapshot of the session, or None when it does not exist."""
        async with self._lock(key):
            session = self._sessions.get(key)
            return session.copy() if session is not None else None

    async def attach_transport(self, key: str, transport: Transport) -> bool:
        """
        Bind the client transport to the session.

        The first transport wins; returns False when one was already attached.
        """
        async with self._lock(key):
            session = self._require(key)
            if session.transport is not None:
                return False
            session.transport = transport

        logger.debug("transport_attached", key=key)
        return True

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def append_message(
        self,
        key: str,
        role: MessageRole,
        content: str,
        id: str,
    ) -> ChatMessage:
        async with self._lock(key):
            message = ChatMessage(id=id, role=MessageRole(role), content=content)
            self._require(key).messages.append(message)
            return ChatMessage(id=message.id, role=message.role, content=message.content)

    async def update_or_append_assistant_message(
        self,
        key: str,
        id: str,
        content: str,
    ) -> ChatMessage:
        """Overwrite the assistant message with ``id``, or append it if absent."""
        async with self._lock(key):
            messages = self._require(key).messages
            for message in messages:
                if message.id == id and message.role == MessageRole.ASSISTANT:
                    message.content = content
                    break
            else:
                message = ChatMessage(id=id, role=MessageRole.ASSISTANT, content=content)
                messages.append(message)
            return ChatMessage(id=message.id, role=message.role, content=message.content)
