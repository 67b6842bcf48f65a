"""
Conversation session store.

Holds every conversation's message log and last processing result in
process memory. The id -> session map is guarded by a ``threading.Lock``;
requests on the same conversation are serialised with a per-conversation
``asyncio.Lock`` (waiters are woken FIFO), while different conversations
never share a lock.
"""
from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator

from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import new_id, utcnow

logger = get_logger(__name__)


# ── Data classes ────────────────────────────────────────


@dataclass
class MessageMetadata:
    source: str  # cache | generated | conversational | error
    confidence: float = 0.0
    tables: list[str] = field(default_factory=list)
    sql: str | None = None
    cache_entry_id: str | None = None
    processing_time_ms: int = 0


@dataclass
class MessageFeedback:
    type: str  # positive | negative
    helpful: bool
    comment: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Message:
    role: str  # user | assistant
    content: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)
    metadata: MessageMetadata | None = None
    feedback: MessageFeedback | None = None


@dataclass
class ConversationSession:
    id: str = field(default_factory=new_id)
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    total_interactions: int = 0
    last_result: Any = None
    context: dict[str, Any] = field(default_factory=dict)

    def user_messages(self) -> list[Message]:
        return [m for m in self.messages if m.role == "user"]

    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message
        return None

    def paired_user_message(self, assistant: Message) -> Message | None:
        """The user message immediately preceding *assistant*."""
        for i, message in enumerate(self.messages):
            if message is assistant:
                for prior in reversed(self.messages[:i]):
                    if prior.role == "user":
                        return prior
                return None
        return None


# ── Store ───────────────────────────────────────────────


class SessionStore:
    """Thread-safe keyed store of :class:`ConversationSession`."""

    def __init__(self):
        self._sessions: dict[str, ConversationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def create(self, id: str | None = None) -> ConversationSession:
        session = ConversationSession(id=id or new_id())
        with self._guard:
            self._sessions[session.id] = session
        logger.info("Conversation created  id=%s", session.id)
        return session

    def get(self, id: str) -> ConversationSession | None:
        with self._guard:
            return self._sessions.get(id)

    def get_or_create(self, id: str | None = None) -> ConversationSession:
        with self._guard:
            if id and id in self._sessions:
                return self._sessions[id]
            session = ConversationSession(id=id or new_id())
            self._sessions[session.id] = session
        logger.info("Conversation created  id=%s", session.id)
        return session

    @asynccontextmanager
    async def lock(self, id: str) -> AsyncIterator[None]:
        """Serialise work on one conversation id."""
        with self._guard:
            lock = self._locks.setdefault(id, asyncio.Lock())
        async with lock:
            yield

    def append_user_message(self, session: ConversationSession, content: str) -> Message:
        message = Message(role="user", content=content)
        with self._guard:
            session.messages.append(message)
            session.updated_at = message.timestamp
        return message

    def append_assistant_message(
        self,
        session: ConversationSession,
        content: str,
        metadata: MessageMetadata,
        result: Any = None,
        id: str | None = None,
    ) -> Message:
        """Append the reply and count the interaction."""
        message = Message(role="assistant", content=content, metadata=metadata, id=id or new_id())
        with self._guard:
            session.messages.append(message)
            session.updated_at = message.timestamp
            session.total_interactions += 1
            session.last_result = result
        return message

    def find_message(
        self, message_id: str, conversation_id: str | None = None,
    ) -> tuple[ConversationSession, Message] | None:
        """Locate a message by id, in one conversation or across all of them."""
        with self._guard:
            if conversation_id is not None:
                candidates = [self._sessions[conversation_id]] if conversation_id in self._sessions else []
            else:
                candidates = list(self._sessions.values())
            for session in candidates:
                for message in session.messages:
                    if message.id == message_id:
                        return session, message
        return None

    def record_feedback(
        self, message_id: str, feedback: MessageFeedback, conversation_id: str | None = None,
    ) -> bool:
        found = self.find_message(message_id, conversation_id)
        if found is None:
            return False
        session, message = found
        with self._guard:
            message.feedback = feedback
            session.updated_at = utcnow()
        return True

    def clear(self, id: str | None = None) -> int:
        """Drop one conversation (or all). Returns the number removed."""
        with self._guard:
            if id is None:
                count = len(self._sessions)
                self._sessions.clear()
                self._locks.clear()
                return count
            self._locks.pop(id, None)
            return 1 if self._sessions.pop(id, None) is not None else 0

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)
