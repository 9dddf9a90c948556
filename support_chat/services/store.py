"""Conversation store contract and the in-memory reference implementation.

Persistence is owned by the store. Services read a ``ConversationRecord``,
change it, and hand it back through ``save_conversation``, which rejects
stale writes using the record's ``version``.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from support_chat.services.errors import ConcurrentUpdateError, ConversationNotFound
from support_chat.services.state_machine import ConversationMode, ConversationStatus


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    ORDER_INFO = "ORDER_INFO"
    PRODUCT_LINK = "PRODUCT_LINK"


class SenderType(str, Enum):
    CUSTOMER = "CUSTOMER"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"
    AI = "AI"


CLOSED_STATUSES = {ConversationStatus.RESOLVED.value, ConversationStatus.CLOSED.value}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


TIMESTAMP_STEP = timedelta(microseconds=1)


def next_timestamp(last: Optional[datetime]) -> datetime:
    """Append time for a message stored after one stamped ``last``.

    Strictly increasing per conversation, so an exclusive ``since`` cursor
    taken from any stored message never skips a later insert.
    """
    now = utcnow()
    if last is not None and now <= last:
        return last + TIMESTAMP_STEP
    return now


@dataclass
class ConversationRecord:
    id: str
    customer_id: Optional[str]
    status: str = ConversationStatus.OPEN.value
    mode: str = ConversationMode.AI.value
    language: str = "en"
    assigned_agent_id: Optional[str] = None
    queue_position: Optional[int] = None
    queued_at: Optional[datetime] = None
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_queued(self) -> bool:
        return self.queue_position is not None


@dataclass(frozen=True)
class MessageRecord:
    id: str
    conversation_id: str
    content: str
    type: str = MessageType.TEXT.value
    sender_type: str = SenderType.CUSTOMER.value
    sender_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


def make_message(
    conversation_id: str,
    content: str,
    sender_type: SenderType,
    message_type: MessageType = MessageType.TEXT,
    metadata: Optional[dict] = None,
    sender_id: Optional[str] = None,
    message_id: Optional[str] = None,
) -> MessageRecord:
    return MessageRecord(
        id=message_id or new_id(),
        conversation_id=conversation_id,
        content=content,
        type=message_type.value,
        sender_type=sender_type.value,
        sender_id=sender_id,
        metadata=metadata or {},
    )


class ConversationStore(ABC):
    """Persistence contract for conversations and their messages."""

    @abstractmethod
    def create_conversation(self, customer_id: Optional[str], language: str = "en") -> ConversationRecord:
        pass

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        pass

    @abstractmethod
    def find_open_conversation(self, customer_id: str) -> Optional[ConversationRecord]:
        """Latest conversation of the customer that is neither resolved nor closed."""

    @abstractmethod
    def save_conversation(self, conversation: ConversationRecord) -> ConversationRecord:
        """Persist changes. Raises ConcurrentUpdateError when the stored version moved on."""

    @abstractmethod
    def append_messages(self, conversation_id: str, messages: List[MessageRecord]) -> List[MessageRecord]:
        """Append all messages or none. Ids already stored are skipped.

        The store sets each message's ``timestamp`` at append time and
        returns the records as stored.
        """

    @abstractmethod
    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        pass

    @abstractmethod
    def list_messages(
        self,
        conversation_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        """Messages in insertion order. ``since`` is exclusive; ``limit`` keeps the newest."""

    @abstractmethod
    def list_queued(self) -> List[ConversationRecord]:
        """Conversations waiting for a human, oldest enqueue first."""

    @abstractmethod
    def count_active_human(self) -> int:
        """Human-mode conversations holding agent capacity (not queued, not finished)."""


class InMemoryConversationStore(ConversationStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._conversations: Dict[str, ConversationRecord] = {}
        self._messages: Dict[str, List[MessageRecord]] = {}
        self._message_index: Dict[str, MessageRecord] = {}

    def create_conversation(self, customer_id: Optional[str], language: str = "en") -> ConversationRecord:
        now = utcnow()
        conversation = ConversationRecord(
            id=new_id(),
            customer_id=customer_id,
            language=language,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
        return replace(conversation)

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return replace(conversation) if conversation else None

    def find_open_conversation(self, customer_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            candidates = [
                c
                for c in self._conversations.values()
                if c.customer_id == customer_id and c.status not in CLOSED_STATUSES
            ]
            if not candidates:
                return None
            return replace(max(candidates, key=lambda c: c.created_at))

    def save_conversation(self, conversation: ConversationRecord) -> ConversationRecord:
        with self._lock:
            stored = self._conversations.get(conversation.id)
            if stored is None:
                raise ConversationNotFound(conversation.id)
            if stored.version != conversation.version:
                raise ConcurrentUpdateError(conversation.id, conversation.version)
            saved = replace(conversation, version=conversation.version + 1, updated_at=utcnow())
            self._conversations[conversation.id] = saved
            return replace(saved)

    def append_messages(self, conversation_id: str, messages: List[MessageRecord]) -> List[MessageRecord]:
        with self._lock:
            if conversation_id not in self._conversations:
                raise ConversationNotFound(conversation_id)
            history = self._messages[conversation_id]
            last = history[-1].timestamp if history else None
            stored = []
            seen = set()
            for message in messages:
                if message.id in self._message_index or message.id in seen:
                    continue
                seen.add(message.id)
                last = next_timestamp(last)
                stored.append(replace(message, timestamp=last))
            for message in stored:
                self._messages[conversation_id].append(message)
                self._message_index[message.id] = message
            return stored

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        with self._lock:
            return self._message_index.get(message_id)

    def list_messages(
        self,
        conversation_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        with self._lock:
            messages = list(self._messages.get(conversation_id, []))
        if since is not None:
            messages = [m for m in messages if m.timestamp > since]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def list_queued(self) -> List[ConversationRecord]:
        with self._lock:
            queued = [replace(c) for c in self._conversations.values() if c.queue_position is not None]
        return sorted(queued, key=lambda c: (c.queued_at or c.created_at, c.queue_position))

    def count_active_human(self) -> int:
        with self._lock:
            return sum(
                1
                for c in self._conversations.values()
                if c.mode == ConversationMode.HUMAN.value
                and c.queue_position is None
                and c.status not in CLOSED_STATUSES
            )
