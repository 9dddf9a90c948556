"""Conversation session controller.

Single entry point for everything that touches a conversation: inbound
customer messages, escalation requests, attachments, and the agent console
callbacks. Every mutation of one conversation runs under that conversation's
lock; nothing here takes a process-wide lock.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from support_chat.logging_config import conversation_logger, get_logger
from support_chat.services.errors import (
    AuthenticationRequired,
    ConcurrentUpdateError,
    ConversationClosed,
    ConversationNotFound,
    QueueFull,
    UpstreamError,
    ValidationError,
)
from support_chat.services.escalation_service import (
    MSG_LOGIN_REQUIRED,
    EscalationManager,
    EscalationOutcome,
    localized,
)
from support_chat.services.intent_service import IntentClassifier, normalize_language
from support_chat.services.locks import KeyedLocks
from support_chat.services.responder_service import ASSISTANT_NAME, AIResponder, ResponderContext
from support_chat.services.state_machine import ConversationMode, ConversationStatus, change_status
from support_chat.services.store import (
    ConversationRecord,
    ConversationStore,
    MessageRecord,
    MessageType,
    SenderType,
    make_message,
)
from support_chat.services.upload_service import FileStorageService

logger = get_logger("conversation_service")

MAX_SAVE_ATTEMPTS = 3
MAX_MESSAGE_LENGTH = 4000

RESERVED_METADATA_KEYS = frozenset({"reply_to", "event", "sender_name", "intent", "fallback", "model"})

MSG_WELCOME = {
    "en": "Hello! 👋 I'm your smart assistant. How can I help you today?",
    "ar": "مرحباً! 👋 أنا مساعدك الذكي. كيف يمكنني مساعدتك اليوم؟",
}


@dataclass
class InboundMessage:
    content: str
    type: MessageType = MessageType.TEXT
    id: Optional[str] = None
    metadata: dict = field(default_factory=dict)


def customer_metadata(metadata: Optional[dict]) -> dict:
    """Client-supplied metadata without the keys the service writes itself."""
    return {k: v for k, v in (metadata or {}).items() if k not in RESERVED_METADATA_KEYS}


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Poll cursors without an offset are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionController:
    def __init__(
        self,
        store: ConversationStore,
        classifier: IntentClassifier,
        responder: AIResponder,
        escalation: EscalationManager,
        file_storage: Optional[FileStorageService] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.store = store
        self.classifier = classifier
        self.responder = responder
        self.escalation = escalation
        self.file_storage = file_storage
        self.locks = locks or KeyedLocks()

    # --- lookups -------------------------------------------------------

    def _get(self, conversation_id: str) -> ConversationRecord:
        if not conversation_id:
            raise ValidationError("conversation_id is required")
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def _get_writable(self, conversation_id: str) -> ConversationRecord:
        conversation = self._get(conversation_id)
        if conversation.status == ConversationStatus.CLOSED.value:
            raise ConversationClosed(conversation_id)
        return conversation

    def _require_customer(self, conversation: ConversationRecord, customer_id: Optional[str]) -> None:
        if not customer_id:
            raise AuthenticationRequired(localized(MSG_LOGIN_REQUIRED, conversation.language))
        # Someone else's conversation looks the same as a missing one.
        if conversation.customer_id and conversation.customer_id != customer_id:
            raise ConversationNotFound(conversation.id)

    def _update(
        self,
        conversation_id: str,
        mutate: Callable[[ConversationRecord], None],
    ) -> ConversationRecord:
        """Re-read, mutate and save, retrying when a concurrent writer got there first."""
        for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
            conversation = self._get(conversation_id)
            mutate(conversation)
            try:
                return self.store.save_conversation(conversation)
            except ConcurrentUpdateError:
                if attempt == MAX_SAVE_ATTEMPTS:
                    raise
                logger.info(
                    "Retrying conversation save",
                    extra={"context": {"conversation_id": conversation_id, "attempt": attempt}},
                )
        raise ConcurrentUpdateError(conversation_id, -1)

    def _append(self, conversation_id: str, message: MessageRecord) -> MessageRecord:
        stored = self.store.append_messages(conversation_id, [message])
        return stored[0] if stored else message

    def _replies_to(self, conversation_id: str, inbound_id: str) -> List[MessageRecord]:
        return [
            m
            for m in self.store.list_messages(conversation_id)
            if m.sender_type != SenderType.CUSTOMER.value and m.metadata.get("reply_to") == inbound_id
        ]

    # --- conversations -------------------------------------------------

    def create_conversation(
        self,
        customer_id: Optional[str],
        language: str = "en",
    ) -> Tuple[ConversationRecord, List[MessageRecord]]:
        language = normalize_language(language)
        conversation = self.store.create_conversation(customer_id, language)
        welcome = make_message(
            conversation.id,
            localized(MSG_WELCOME, language),
            SenderType.AI,
            metadata={"event": "welcome", "sender_name": ASSISTANT_NAME},
        )
        messages = self.store.append_messages(conversation.id, [welcome])
        logger.info(
            "Conversation created",
            extra={"context": {"conversation_id": conversation.id, "customer_id": customer_id, "language": language}},
        )
        return conversation, messages

    def get_or_create_current(
        self,
        customer_id: Optional[str],
        language: str = "en",
    ) -> Tuple[ConversationRecord, List[MessageRecord]]:
        if not customer_id:
            raise AuthenticationRequired(localized(MSG_LOGIN_REQUIRED, normalize_language(language)))

        with self.locks.hold(f"customer:{customer_id}"):
            conversation = self.store.find_open_conversation(customer_id)
            if conversation is None:
                return self.create_conversation(customer_id, language)
        return conversation, self.store.list_messages(conversation.id)

    def get_conversation(self, conversation_id: str, customer_id: Optional[str] = None) -> ConversationRecord:
        """Conversation as seen by ``customer_id``.

        Guest conversations are readable by id alone; a conversation with an
        owner is readable only by that customer.
        """
        conversation = self._get(conversation_id)
        if conversation.customer_id and conversation.customer_id != customer_id:
            if not customer_id:
                raise AuthenticationRequired(localized(MSG_LOGIN_REQUIRED, conversation.language))
            raise ConversationNotFound(conversation_id)
        return conversation

    def poll_messages(
        self,
        conversation_id: str,
        since: Optional[datetime] = None,
        customer_id: Optional[str] = None,
    ) -> List[MessageRecord]:
        self.get_conversation(conversation_id, customer_id)
        return self.store.list_messages(conversation_id, since=to_utc(since))

    # --- customer side -------------------------------------------------

    def handle_inbound_message(
        self,
        conversation_id: str,
        inbound: InboundMessage,
        customer_id: Optional[str],
    ) -> List[MessageRecord]:
        """Store a customer message and return the replies generated for it.

        Re-delivering a message id stores nothing and returns the replies
        produced the first time.
        """
        content = (inbound.content or "").strip()
        if not content:
            raise ValidationError("Message content must not be empty")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message content exceeds {MAX_MESSAGE_LENGTH} characters")

        log = conversation_logger(logger, conversation_id, customer_id=customer_id)

        with self.locks.hold(conversation_id):
            conversation = self._get_writable(conversation_id)
            self._require_customer(conversation, customer_id)

            if inbound.id:
                existing = self.store.get_message(inbound.id)
                if existing is not None:
                    if existing.conversation_id != conversation_id:
                        raise ValidationError(f"Message id {inbound.id} belongs to another conversation")
                    log.info("Duplicate inbound message", context={"message_id": inbound.id})
                    return self._replies_to(conversation_id, inbound.id)

            message = make_message(
                conversation_id,
                content,
                SenderType.CUSTOMER,
                inbound.type,
                metadata=customer_metadata(inbound.metadata),
                sender_id=customer_id,
                message_id=inbound.id,
            )

            if conversation.mode == ConversationMode.HUMAN.value:
                self.store.append_messages(conversation_id, [message])
                self._update(conversation_id, lambda c: None)
                log.info("Message forwarded to human side", context={"message_id": message.id})
                return []

            intent = self.classifier.classify(content, conversation.language)
            history = self.store.list_messages(conversation_id, limit=self.responder.history_window)
            context = ResponderContext(conversation=conversation, customer_id=customer_id, history=history)
            reply = self.responder.respond(intent, content, context)
            reply = replace(reply, metadata={**reply.metadata, "reply_to": message.id})

            if context.conversation.mode == ConversationMode.AI.value:
                self._update(conversation_id, _reopen)

            stored = self.store.append_messages(conversation_id, [message, reply])
            log.info(
                "Inbound message routed",
                context={"message_id": message.id, "intent": intent.value, "mode": context.conversation.mode},
            )
            return [m for m in stored if m.id != message.id]

    def request_human(self, conversation_id: str, customer_id: Optional[str]) -> EscalationOutcome:
        with self.locks.hold(conversation_id):
            conversation = self._get_writable(conversation_id)
            self._require_customer(conversation, customer_id)

            try:
                outcome = self.escalation.escalate(conversation, customer_id)
            except QueueFull:
                message = self._append(conversation_id, self.escalation.queue_full_message(conversation))
                return EscalationOutcome(conversation=conversation, queued=False, message=message)

            if outcome.message is not None:
                outcome = replace(outcome, message=self._append(conversation_id, outcome.message))
            return outcome

    def attach_file(
        self,
        conversation_id: str,
        customer_id: Optional[str],
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> MessageRecord:
        conversation = self._get_writable(conversation_id)
        self._require_customer(conversation, customer_id)
        if not content:
            raise ValidationError("Uploaded file is empty")
        if self.file_storage is None:
            raise UpstreamError("file_storage", "not configured")

        url = self.file_storage.upload(filename, content, content_type)
        message_type = MessageType.IMAGE if (content_type or "").startswith("image/") else MessageType.FILE

        with self.locks.hold(conversation_id):
            self._get_writable(conversation_id)
            message = self._append(
                conversation_id,
                make_message(
                    conversation_id,
                    url,
                    SenderType.CUSTOMER,
                    message_type,
                    metadata={"url": url, "filename": filename, "content_type": content_type, "size": len(content)},
                    sender_id=customer_id,
                ),
            )
            self._update(conversation_id, lambda c: None)

        logger.info(
            "Attachment stored",
            extra={"context": {"conversation_id": conversation_id, "type": message_type.value, "size": len(content)}},
        )
        return message

    # --- agent console -------------------------------------------------

    def assign_agent(self, conversation_id: str, agent_id: str) -> EscalationOutcome:
        if not agent_id:
            raise ValidationError("agent_id is required")
        with self.locks.hold(conversation_id):
            conversation = self._get_writable(conversation_id)
            outcome = self.escalation.assign(conversation, agent_id)
            return replace(outcome, message=self._append(conversation_id, outcome.message))

    def post_agent_message(self, conversation_id: str, agent_id: str, content: str) -> MessageRecord:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content must not be empty")

        with self.locks.hold(conversation_id):
            conversation = self._get_writable(conversation_id)
            if conversation.assigned_agent_id != agent_id:
                raise ValidationError(f"Conversation {conversation_id} is not assigned to agent {agent_id}")
            message = self._append(
                conversation_id,
                make_message(conversation_id, content, SenderType.AGENT, sender_id=agent_id),
            )
            self._update(conversation_id, lambda c: None)
            return message

    def resolve(self, conversation_id: str) -> ConversationRecord:
        return self._finish(conversation_id, ConversationStatus.RESOLVED)

    def close(self, conversation_id: str) -> ConversationRecord:
        return self._finish(conversation_id, ConversationStatus.CLOSED)

    def _finish(self, conversation_id: str, status: ConversationStatus) -> ConversationRecord:
        with self.locks.hold(conversation_id):
            conversation = self._get_writable(conversation_id)
            if conversation.status == status.value:
                return conversation
            saved = self.escalation.finish(conversation, status)
        logger.info(
            "Conversation finished",
            extra={"context": {"conversation_id": conversation_id, "status": status.value, "mode": saved.mode}},
        )
        return saved


def _reopen(conversation: ConversationRecord) -> None:
    if conversation.status == ConversationStatus.RESOLVED.value:
        conversation.status = change_status(ConversationStatus.RESOLVED, ConversationStatus.OPEN).value
