import pytest

from support_chat.services.errors import AuthenticationRequired, QueueFull
from support_chat.services.escalation_service import EscalationManager
from support_chat.services.state_machine import ConversationStatus, InvalidTransitionError


@pytest.fixture
def queue_only(store):
    """No agent capacity: every escalation waits in the queue."""
    return EscalationManager(store, max_concurrent_sessions=0)


def open_conversations(store, count, language="en"):
    return [store.create_conversation(f"cust-{i}", language) for i in range(1, count + 1)]


def positions(store, conversations):
    return [store.get_conversation(c.id).queue_position for c in conversations]


class TestEscalate:
    def test_queue_positions_follow_enqueue_order(self, store, queue_only):
        conversations = open_conversations(store, 3)

        outcomes = [queue_only.escalate(c, c.customer_id) for c in conversations]

        assert [o.queue_position for o in outcomes] == [1, 2, 3]
        assert all(o.queued for o in outcomes)
        assert positions(store, conversations) == [1, 2, 3]

    def test_queued_conversation_is_human_and_pending(self, store, queue_only):
        (conversation,) = open_conversations(store, 1)

        outcome = queue_only.escalate(conversation, "cust-1")

        saved = store.get_conversation(conversation.id)
        assert saved.mode == "HUMAN"
        assert saved.status == "PENDING"
        assert saved.assigned_agent_id is None
        assert outcome.message.sender_type == "SYSTEM"
        assert outcome.message.metadata == {"event": "queued", "queue_position": 1}
        assert "Your position: 1" in outcome.message.content

    def test_queued_message_is_localized(self, store, queue_only):
        (conversation,) = open_conversations(store, 1, language="ar")

        outcome = queue_only.escalate(conversation, "cust-1")

        assert "قائمة الانتظار" in outcome.message.content

    def test_connects_directly_when_capacity_free(self, store):
        manager = EscalationManager(store, max_concurrent_sessions=1)
        first, second = open_conversations(store, 2)

        connected = manager.escalate(first, "cust-1")
        queued = manager.escalate(second, "cust-2")

        assert connected.queued is False
        assert connected.queue_position is None
        assert connected.message.metadata == {"event": "connected"}
        assert store.get_conversation(first.id).status == "OPEN"
        assert store.get_conversation(first.id).mode == "HUMAN"
        assert queued.queued is True
        assert queued.queue_position == 1

    def test_waiting_customers_keep_their_turn(self, store):
        manager = EscalationManager(store, max_concurrent_sessions=1)
        first, second, third = open_conversations(store, 3)
        manager.escalate(first, "cust-1")
        manager.escalate(second, "cust-2")

        manager.finish(store.get_conversation(first.id), ConversationStatus.RESOLVED)
        outcome = manager.escalate(third, "cust-3")

        assert outcome.queued is True
        assert outcome.queue_position == 2

    def test_anonymous_caller_gets_login_prompt(self, store, queue_only):
        conversation = store.create_conversation(None)

        with pytest.raises(AuthenticationRequired) as exc_info:
            queue_only.escalate(conversation, None)

        assert "log in" in exc_info.value.message
        assert store.get_conversation(conversation.id).mode == "AI"
        assert store.list_queued() == []

    def test_queue_full(self, store):
        manager = EscalationManager(store, max_concurrent_sessions=0, max_queue_length=1)
        first, second = open_conversations(store, 2)
        manager.escalate(first, "cust-1")

        with pytest.raises(QueueFull):
            manager.escalate(second, "cust-2")
        assert store.get_conversation(second.id).mode == "AI"

    def test_escalating_twice_is_a_no_op(self, store, queue_only):
        (conversation,) = open_conversations(store, 1)
        queue_only.escalate(conversation, "cust-1")

        again = queue_only.escalate(store.get_conversation(conversation.id), "cust-1")

        assert again.message is None
        assert again.queued is True
        assert again.queue_position == 1
        assert len(store.list_queued()) == 1


class TestAssign:
    def test_assignment_reranks_the_rest(self, store, queue_only):
        conversations = open_conversations(store, 3)
        for c in conversations:
            queue_only.escalate(c, c.customer_id)

        outcome = queue_only.assign(store.get_conversation(conversations[0].id), "agent-7")

        assigned = store.get_conversation(conversations[0].id)
        assert assigned.assigned_agent_id == "agent-7"
        assert assigned.queue_position is None
        assert assigned.status == "OPEN"
        assert positions(store, conversations[1:]) == [1, 2]
        assert outcome.message.metadata == {"event": "assigned", "agent_id": "agent-7"}

    def test_assigning_from_the_middle(self, store, queue_only):
        conversations = open_conversations(store, 3)
        for c in conversations:
            queue_only.escalate(c, c.customer_id)

        queue_only.assign(store.get_conversation(conversations[1].id), "agent-1")

        assert positions(store, [conversations[0], conversations[2]]) == [1, 2]

    def test_assign_connected_conversation(self, store):
        manager = EscalationManager(store, max_concurrent_sessions=3)
        (conversation,) = open_conversations(store, 1)
        manager.escalate(conversation, "cust-1")

        manager.assign(store.get_conversation(conversation.id), "agent-1")

        assert store.get_conversation(conversation.id).assigned_agent_id == "agent-1"

    def test_cannot_assign_ai_conversation(self, store, queue_only):
        (conversation,) = open_conversations(store, 1)

        with pytest.raises(InvalidTransitionError):
            queue_only.assign(conversation, "agent-1")
        assert store.get_conversation(conversation.id).assigned_agent_id is None


class TestFinish:
    def test_closing_queued_conversation_frees_its_place(self, store, queue_only):
        conversations = open_conversations(store, 3)
        for c in conversations:
            queue_only.escalate(c, c.customer_id)

        closed = queue_only.finish(store.get_conversation(conversations[0].id), ConversationStatus.CLOSED)

        assert closed.status == "CLOSED"
        assert closed.queue_position is None
        assert closed.mode == "HUMAN"
        assert positions(store, conversations[1:]) == [1, 2]

    def test_resolve_keeps_mode(self, store):
        manager = EscalationManager(store)
        (conversation,) = open_conversations(store, 1)

        resolved = manager.finish(conversation, ConversationStatus.RESOLVED)

        assert resolved.status == "RESOLVED"
        assert resolved.mode == "AI"
