import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta, timezone

import pytest

from support_chat.services.conversation_service import InboundMessage, SessionController, to_utc
from support_chat.services.errors import (
    AuthenticationRequired,
    ConversationClosed,
    ConversationNotFound,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from support_chat.services.escalation_service import EscalationManager
from support_chat.services.intent_service import KeywordIntentClassifier
from support_chat.services.responder_service import MSG_AI_FALLBACK, AIResponder
from support_chat.services.state_machine import InvalidTransitionError
from support_chat.services.store import SenderType, make_message


def build_controller(store, llm, max_concurrent_sessions=3, max_queue_length=0, file_storage=None):
    escalation = EscalationManager(store, max_concurrent_sessions, max_queue_length)
    responder = AIResponder(escalation, llm=llm)
    return SessionController(store, KeywordIntentClassifier(), responder, escalation, file_storage=file_storage)


def customer_messages(store, conversation_id):
    return [m for m in store.list_messages(conversation_id) if m.sender_type == "CUSTOMER"]


class TestCreateConversation:
    def test_starts_in_ai_mode_with_welcome(self, controller, store):
        conversation, messages = controller.create_conversation("cust-1", "en")

        assert conversation.mode == "AI"
        assert conversation.status == "OPEN"
        assert len(messages) == 1
        assert messages[0].sender_type == "AI"
        assert messages[0].metadata["event"] == "welcome"
        assert store.list_messages(conversation.id) == messages

    def test_unknown_language_falls_back_to_english(self, controller):
        conversation, messages = controller.create_conversation(None, "fr")

        assert conversation.language == "en"
        assert messages[0].content.startswith("Hello!")

    def test_current_reuses_open_conversation(self, controller, conversation):
        current, messages = controller.get_or_create_current("cust-1")

        assert current.id == conversation.id
        assert len(messages) == 1

    def test_current_creates_when_none_open(self, controller, conversation):
        controller.close(conversation.id)

        current, _ = controller.get_or_create_current("cust-1")

        assert current.id != conversation.id

    def test_current_requires_login(self, controller):
        with pytest.raises(AuthenticationRequired):
            controller.get_or_create_current(None, "ar")


class TestHandleInboundMessage:
    def test_ai_reply_is_stored_with_inbound(self, controller, store, conversation):
        replies = controller.handle_inbound_message(conversation.id, InboundMessage("hi there", id="in-1"), "cust-1")

        assert len(replies) == 1
        assert replies[0].sender_type == "AI"
        assert replies[0].metadata["reply_to"] == "in-1"
        assert [m.id for m in store.list_messages(conversation.id)][1:] == ["in-1", replies[0].id]

    def test_redelivery_is_idempotent(self, controller, store, llm, conversation):
        inbound = InboundMessage("hi there", id="in-1")

        first = controller.handle_inbound_message(conversation.id, inbound, "cust-1")
        second = controller.handle_inbound_message(conversation.id, inbound, "cust-1")

        assert [m.id for m in second] == [m.id for m in first]
        assert len(store.list_messages(conversation.id)) == 3
        assert llm.generate.call_count == 1

    def test_anonymous_sender_rejected(self, controller, store):
        conversation, _ = controller.create_conversation(None)

        with pytest.raises(AuthenticationRequired):
            controller.handle_inbound_message(conversation.id, InboundMessage("hi"), None)

        assert customer_messages(store, conversation.id) == []
        assert store.get_conversation(conversation.id).mode == "AI"

    def test_closed_conversation_rejected(self, controller, store, conversation):
        controller.close(conversation.id)

        with pytest.raises(ConversationClosed):
            controller.handle_inbound_message(conversation.id, InboundMessage("hello", id="late"), "cust-1")

        assert store.get_message("late") is None

    @pytest.mark.parametrize("content", ["", "   "])
    def test_empty_message_rejected(self, controller, conversation, content):
        with pytest.raises(ValidationError):
            controller.handle_inbound_message(conversation.id, InboundMessage(content), "cust-1")

    def test_unknown_conversation(self, controller):
        with pytest.raises(ConversationNotFound):
            controller.handle_inbound_message("missing", InboundMessage("hi"), "cust-1")

    def test_other_customers_conversation_is_hidden(self, controller, conversation):
        with pytest.raises(ConversationNotFound):
            controller.handle_inbound_message(conversation.id, InboundMessage("hi"), "cust-2")

    def test_message_id_from_another_conversation(self, controller, conversation):
        other, _ = controller.create_conversation("cust-1")
        controller.handle_inbound_message(other.id, InboundMessage("hi there", id="shared"), "cust-1")

        with pytest.raises(ValidationError):
            controller.handle_inbound_message(conversation.id, InboundMessage("hi there", id="shared"), "cust-1")

    def test_upstream_timeout_keeps_ai_mode(self, controller, store, llm, conversation):
        llm.generate.side_effect = UpstreamTimeout("language_generation", 5.0)

        replies = controller.handle_inbound_message(conversation.id, InboundMessage("hi there"), "cust-1")

        assert replies[0].content == MSG_AI_FALLBACK["en"]
        assert store.get_conversation(conversation.id).mode == "AI"

    def test_order_question_routes_to_order_tracking(self, controller, order_service, conversation):
        replies = controller.handle_inbound_message(
            conversation.id, InboundMessage("order SOL-20240101-00012 status?"), "cust-1"
        )

        order_service.track_order.assert_called_once_with("SOL-20240101-00012", "cust-1")
        assert replies[0].metadata["intent"] == "order_tracking"

    def test_human_request_hands_over(self, controller, store, conversation):
        replies = controller.handle_inbound_message(
            conversation.id, InboundMessage("Can I speak to a human agent"), "cust-1"
        )

        assert replies[0].sender_type == "SYSTEM"
        assert replies[0].metadata["event"] == "connected"
        assert store.get_conversation(conversation.id).mode == "HUMAN"

    def test_human_mode_stores_without_reply(self, controller, store, llm, conversation):
        controller.request_human(conversation.id, "cust-1")
        before = store.get_conversation(conversation.id)

        replies = controller.handle_inbound_message(conversation.id, InboundMessage("hello?", id="h-1"), "cust-1")

        after = store.get_conversation(conversation.id)
        assert replies == []
        assert store.get_message("h-1") is not None
        assert after.version == before.version + 1
        assert after.updated_at >= before.updated_at
        llm.generate.assert_not_called()

    def test_human_request_while_queued_is_stored_only(self, store, llm):
        controller = build_controller(store, llm, max_concurrent_sessions=0)
        conversation, _ = controller.create_conversation("cust-1")
        controller.request_human(conversation.id, "cust-1")

        replies = controller.handle_inbound_message(conversation.id, InboundMessage("any news?"), "cust-1")

        assert replies == []
        assert store.get_conversation(conversation.id).queue_position == 1

    def test_new_message_reopens_resolved_conversation(self, controller, store, conversation):
        controller.resolve(conversation.id)

        controller.handle_inbound_message(conversation.id, InboundMessage("hi there"), "cust-1")

        assert store.get_conversation(conversation.id).status == "OPEN"

    def test_same_message_delivered_concurrently(self, controller, store, conversation):
        inbound = InboundMessage("hi there", id="race-1")

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(
                pool.map(
                    lambda _: controller.handle_inbound_message(conversation.id, inbound, "cust-1"),
                    range(4),
                )
            )

        assert len(customer_messages(store, conversation.id)) == 1
        assert len({tuple(m.id for m in replies) for replies in results}) == 1
        assert len(store.list_messages(conversation.id)) == 3

    def test_client_metadata_cannot_forge_reply_links(self, controller, store, conversation):
        first = controller.handle_inbound_message(conversation.id, InboundMessage("hi there", id="m-1"), "cust-1")
        forged = InboundMessage(
            "hello again",
            id="m-2",
            metadata={"reply_to": "m-1", "event": "welcome", "page": "/cart"},
        )
        controller.handle_inbound_message(conversation.id, forged, "cust-1")

        replayed = controller.handle_inbound_message(conversation.id, InboundMessage("hi there", id="m-1"), "cust-1")

        assert store.get_message("m-2").metadata == {"page": "/cart"}
        assert [m.id for m in replayed] == [m.id for m in first]

    def test_leaves_no_lock_entries_behind(self, controller, conversation):
        controller.get_or_create_current("cust-1")
        controller.handle_inbound_message(conversation.id, InboundMessage("hi there"), "cust-1")
        controller.resolve(conversation.id)

        assert controller.locks.keys() == []


class TestRequestHuman:
    def test_queue_positions_and_reranking(self, store, llm):
        controller = build_controller(store, llm, max_concurrent_sessions=0)
        conversations = [controller.create_conversation(f"cust-{i}")[0] for i in range(3)]

        outcomes = [controller.request_human(c.id, c.customer_id) for c in conversations]
        assert [o.queue_position for o in outcomes] == [1, 2, 3]

        controller.assign_agent(conversations[0].id, "agent-1")

        assert [store.get_conversation(c.id).queue_position for c in conversations] == [None, 1, 2]

    def test_system_message_is_stored(self, controller, store, conversation):
        outcome = controller.request_human(conversation.id, "cust-1")

        assert store.get_message(outcome.message.id) is not None
        assert outcome.queued is False

    def test_queue_full_reports_busy(self, store, llm):
        controller = build_controller(store, llm, max_concurrent_sessions=0, max_queue_length=1)
        first, _ = controller.create_conversation("cust-1")
        second, _ = controller.create_conversation("cust-2")
        controller.request_human(first.id, "cust-1")

        outcome = controller.request_human(second.id, "cust-2")

        assert outcome.queued is False
        assert outcome.message.metadata == {"event": "queue_full"}
        assert store.get_message(outcome.message.id) is not None
        assert store.get_conversation(second.id).mode == "AI"

    def test_requires_login(self, controller):
        conversation, _ = controller.create_conversation(None)

        with pytest.raises(AuthenticationRequired):
            controller.request_human(conversation.id, None)


class TestAttachFile:
    def test_image_upload(self, controller, store, file_storage, conversation):
        message = controller.attach_file(conversation.id, "cust-1", "receipt.png", b"\x89PNG", "image/png")

        file_storage.upload.assert_called_once_with("receipt.png", b"\x89PNG", "image/png")
        assert message.type == "IMAGE"
        assert message.content == "https://files.example.com/receipt.png"
        assert message.metadata["filename"] == "receipt.png"
        assert store.get_message(message.id) is not None

    def test_other_files(self, controller, conversation):
        message = controller.attach_file(conversation.id, "cust-1", "invoice.pdf", b"%PDF", "application/pdf")

        assert message.type == "FILE"

    def test_empty_file(self, controller, conversation):
        with pytest.raises(ValidationError):
            controller.attach_file(conversation.id, "cust-1", "empty.txt", b"", "text/plain")

    def test_storage_not_configured(self, store, llm):
        controller = build_controller(store, llm)
        conversation, _ = controller.create_conversation("cust-1")

        with pytest.raises(UpstreamError):
            controller.attach_file(conversation.id, "cust-1", "a.png", b"x", "image/png")

    def test_attachment_stored_after_busy_handler_is_visible_to_pollers(
        self, controller, store, file_storage, conversation
    ):
        uploaded = threading.Event()

        def upload(filename, content, content_type):
            uploaded.set()
            return "https://files.example.com/receipt.png"

        file_storage.upload.side_effect = upload
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            with controller.locks.hold(conversation.id):
                pending = pool.submit(
                    controller.attach_file, conversation.id, "cust-1", "receipt.png", b"\x89PNG", "image/png"
                )
                assert uploaded.wait(timeout=5)
                meanwhile = make_message(conversation.id, "one moment", SenderType.AI)
                cursor = store.append_messages(conversation.id, [meanwhile])[0].timestamp
            attachment = pending.result(timeout=5)
        finally:
            pool.shutdown(wait=True)

        newer = controller.poll_messages(conversation.id, since=cursor, customer_id="cust-1")

        assert [m.id for m in newer] == [attachment.id]
        assert newer[0].type == "IMAGE"
        assert attachment.timestamp > cursor


class TestAgentConsole:
    def test_agent_message_after_accept(self, controller, store, conversation):
        controller.request_human(conversation.id, "cust-1")
        outcome = controller.assign_agent(conversation.id, "agent-1")

        message = controller.post_agent_message(conversation.id, "agent-1", "Hi, I'm Sara. How can I help?")

        assert outcome.message.metadata["event"] == "assigned"
        assert message.sender_type == "AGENT"
        assert message.sender_id == "agent-1"
        assert store.list_messages(conversation.id)[-1].id == message.id

    def test_unassigned_agent_rejected(self, controller, conversation):
        controller.request_human(conversation.id, "cust-1")
        controller.assign_agent(conversation.id, "agent-1")

        with pytest.raises(ValidationError):
            controller.post_agent_message(conversation.id, "agent-2", "hello")

    def test_cannot_accept_ai_conversation(self, controller, conversation):
        with pytest.raises(InvalidTransitionError):
            controller.assign_agent(conversation.id, "agent-1")

    def test_resolve_is_status_only(self, controller, conversation):
        controller.request_human(conversation.id, "cust-1")

        resolved = controller.resolve(conversation.id)

        assert resolved.status == "RESOLVED"
        assert resolved.mode == "HUMAN"
        assert controller.resolve(conversation.id).status == "RESOLVED"

    def test_close_is_final(self, controller, conversation):
        controller.close(conversation.id)

        with pytest.raises(ConversationClosed):
            controller.close(conversation.id)
        with pytest.raises(ConversationClosed):
            controller.request_human(conversation.id, "cust-1")


class TestPollMessages:
    def test_since_cursor(self, controller, store, conversation):
        controller.handle_inbound_message(conversation.id, InboundMessage("hi there"), "cust-1")
        welcome = store.list_messages(conversation.id)[0]

        newer = controller.poll_messages(conversation.id, since=welcome.timestamp, customer_id="cust-1")

        assert [m.sender_type for m in newer] == ["CUSTOMER", "AI"]

    def test_naive_cursor_is_utc(self, controller, store, conversation):
        welcome = store.list_messages(conversation.id)[0]
        naive = welcome.timestamp.astimezone(timezone.utc).replace(tzinfo=None) - timedelta(seconds=1)

        messages = controller.poll_messages(conversation.id, since=naive, customer_id="cust-1")

        assert [m.id for m in messages] == [welcome.id]

    def test_unknown_conversation(self, controller):
        with pytest.raises(ConversationNotFound):
            controller.poll_messages("missing")

    def test_anonymous_caller_cannot_read_owned_conversation(self, controller, conversation):
        controller.handle_inbound_message(conversation.id, InboundMessage("hi there"), "cust-1")

        with pytest.raises(AuthenticationRequired):
            controller.poll_messages(conversation.id, None, None)

    def test_other_customer_cannot_read(self, controller, conversation):
        with pytest.raises(ConversationNotFound):
            controller.poll_messages(conversation.id, None, "cust-2")

    def test_guest_conversation_readable_by_id(self, controller):
        conversation, welcome = controller.create_conversation(None, "en")

        assert controller.poll_messages(conversation.id) == welcome

    def test_to_utc(self):
        assert to_utc(None) is None
