from support_chat.services.availability_service import is_available, next_available
from support_chat.services.intent_service import Intent, KeywordIntentClassifier, classify_intent
from support_chat.services.state_machine import (
    ConversationMode,
    ConversationStatus,
    EscalationState,
    InvalidTransitionError,
    can_transition,
    transition,
)
from support_chat.services.store import ConversationStore, InMemoryConversationStore
