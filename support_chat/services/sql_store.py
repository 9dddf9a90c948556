from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from support_chat.logging_config import get_logger
from support_chat.models import Conversation, Message
from support_chat.services.errors import ConcurrentUpdateError, ConversationNotFound
from support_chat.services.state_machine import ConversationMode
from support_chat.services.store import (
    CLOSED_STATUSES,
    ConversationRecord,
    ConversationStore,
    MessageRecord,
    new_id,
    next_timestamp,
    utcnow,
)

logger = get_logger("sql_store")

MAX_APPEND_ATTEMPTS = 3


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_conversation_record(row: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=row.id,
        customer_id=row.customer_id,
        status=row.status,
        mode=row.mode,
        language=row.language,
        assigned_agent_id=row.assigned_agent_id,
        queue_position=row.queue_position,
        queued_at=_aware(row.queued_at),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_message_record(row: Message) -> MessageRecord:
    return MessageRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        content=row.content,
        type=row.type,
        sender_type=row.sender_type,
        sender_id=row.sender_id,
        metadata=dict(row.message_metadata or {}),
        timestamp=_aware(row.timestamp),
    )


class SqlConversationStore(ConversationStore):
    """Conversation store on the ``conversations`` / ``messages`` tables."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    def create_conversation(self, customer_id: Optional[str], language: str = "en") -> ConversationRecord:
        now = utcnow()
        row = Conversation(
            id=new_id(),
            customer_id=customer_id,
            status="OPEN",
            mode=ConversationMode.AI.value,
            language=language,
            version=1,
            created_at=now,
            updated_at=now,
        )
        with self._session() as db:
            db.add(row)
            db.commit()
            return _to_conversation_record(row)

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._session() as db:
            row = db.get(Conversation, conversation_id)
            return _to_conversation_record(row) if row else None

    def find_open_conversation(self, customer_id: str) -> Optional[ConversationRecord]:
        with self._session() as db:
            row = (
                db.query(Conversation)
                .filter(Conversation.customer_id == customer_id, Conversation.status.notin_(CLOSED_STATUSES))
                .order_by(Conversation.created_at.desc())
                .first()
            )
            return _to_conversation_record(row) if row else None

    def save_conversation(self, conversation: ConversationRecord) -> ConversationRecord:
        now = utcnow()
        with self._session() as db:
            result = db.execute(
                update(Conversation)
                .where(Conversation.id == conversation.id, Conversation.version == conversation.version)
                .values(
                    customer_id=conversation.customer_id,
                    status=conversation.status,
                    mode=conversation.mode,
                    language=conversation.language,
                    assigned_agent_id=conversation.assigned_agent_id,
                    queue_position=conversation.queue_position,
                    queued_at=conversation.queued_at,
                    version=conversation.version + 1,
                    updated_at=now,
                )
            )
            if result.rowcount == 0:
                db.rollback()
                if db.get(Conversation, conversation.id) is None:
                    raise ConversationNotFound(conversation.id)
                logger.warning(
                    "Stale conversation write rejected",
                    extra={"context": {"conversation_id": conversation.id, "version": conversation.version}},
                )
                raise ConcurrentUpdateError(conversation.id, conversation.version)
            db.commit()
            row = db.get(Conversation, conversation.id)
            db.refresh(row)
            return _to_conversation_record(row)

    def append_messages(self, conversation_id: str, messages: List[MessageRecord]) -> List[MessageRecord]:
        for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
            with self._session() as db:
                stored = self._stage_messages(db, conversation_id, messages)
                try:
                    db.commit()
                except IntegrityError:
                    # Another writer took a message id or position between read and insert.
                    db.rollback()
                    logger.info(
                        "Message append collided, retrying",
                        extra={"context": {"conversation_id": conversation_id, "attempt": attempt}},
                    )
                    continue
                return stored
        raise ConcurrentUpdateError(conversation_id, -1)

    def _stage_messages(self, db: Session, conversation_id: str, messages: List[MessageRecord]) -> List[MessageRecord]:
        if db.get(Conversation, conversation_id) is None:
            raise ConversationNotFound(conversation_id)

        ids = [m.id for m in messages]
        existing = {row[0] for row in db.query(Message.id).filter(Message.id.in_(ids)).all()} if ids else set()
        last = (
            db.query(Message.position, Message.timestamp)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.position.desc())
            .first()
        )
        position, timestamp = (last[0], _aware(last[1])) if last else (0, None)

        stored = []
        for message in messages:
            if message.id in existing:
                continue
            existing.add(message.id)
            position += 1
            timestamp = next_timestamp(timestamp)
            db.add(
                Message(
                    id=message.id,
                    conversation_id=conversation_id,
                    position=position,
                    content=message.content,
                    type=message.type,
                    sender_type=message.sender_type,
                    sender_id=message.sender_id,
                    message_metadata=dict(message.metadata),
                    timestamp=timestamp,
                )
            )
            stored.append(replace(message, timestamp=timestamp))
        return stored

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        with self._session() as db:
            row = db.get(Message, message_id)
            return _to_message_record(row) if row else None

    def list_messages(
        self,
        conversation_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        with self._session() as db:
            query = db.query(Message).filter(Message.conversation_id == conversation_id)
            if since is not None:
                query = query.filter(Message.timestamp > since)
            if limit is not None:
                rows = query.order_by(Message.position.desc()).limit(limit).all()
                rows.reverse()
            else:
                rows = query.order_by(Message.position.asc()).all()
            return [_to_message_record(row) for row in rows]

    def list_queued(self) -> List[ConversationRecord]:
        with self._session() as db:
            rows = (
                db.query(Conversation)
                .filter(Conversation.queue_position.isnot(None))
                .order_by(Conversation.queued_at.asc(), Conversation.queue_position.asc())
                .all()
            )
            return [_to_conversation_record(row) for row in rows]

    def count_active_human(self) -> int:
        with self._session() as db:
            return (
                db.query(Conversation)
                .filter(
                    Conversation.mode == ConversationMode.HUMAN.value,
                    Conversation.queue_position.is_(None),
                    Conversation.status.notin_(CLOSED_STATUSES),
                )
                .count()
            )
