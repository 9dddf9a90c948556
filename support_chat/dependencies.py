"""Application wiring: builds the store, collaborators and session controller."""

from functools import lru_cache
from typing import Optional

from fastapi import Header

from support_chat.config import settings
from support_chat.database import SessionLocal, init_db
from support_chat.logging_config import get_logger
from support_chat.services.catalog_service import CatalogSearchService, HttpCatalogSearchService
from support_chat.services.conversation_service import SessionController
from support_chat.services.escalation_service import EscalationManager
from support_chat.services.intent_service import KeywordIntentClassifier
from support_chat.services.llm import LLMProvider, OpenAIProvider
from support_chat.services.order_service import HttpOrderLookupService, OrderLookupService
from support_chat.services.responder_service import AIResponder
from support_chat.services.sql_store import SqlConversationStore
from support_chat.services.store import ConversationStore, InMemoryConversationStore
from support_chat.services.upload_service import FileStorageService, HttpFileStorageService

logger = get_logger("dependencies")


def build_store() -> ConversationStore:
    if settings.storage_backend == "memory":
        return InMemoryConversationStore()
    init_db()
    return SqlConversationStore(SessionLocal)


def build_order_service() -> Optional[OrderLookupService]:
    if not settings.order_service_url:
        return None
    return HttpOrderLookupService(settings.order_service_url, settings.order_lookup_timeout_seconds)


def build_catalog_service() -> Optional[CatalogSearchService]:
    if not settings.catalog_service_url:
        return None
    return HttpCatalogSearchService(settings.catalog_service_url, settings.catalog_timeout_seconds)


def build_llm() -> Optional[LLMProvider]:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set, general questions get the default reply")
        return None
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        default_model=settings.llm_model,
        base_url=settings.llm_base_url,
        default_timeout_seconds=settings.llm_timeout_seconds,
    )


def build_file_storage() -> Optional[FileStorageService]:
    if not settings.file_storage_url:
        return None
    return HttpFileStorageService(settings.file_storage_url, settings.upload_timeout_seconds)


def build_controller(store: Optional[ConversationStore] = None) -> SessionController:
    store = store or build_store()
    escalation = EscalationManager(
        store,
        max_concurrent_sessions=settings.max_concurrent_human_sessions,
        max_queue_length=settings.max_queue_length,
    )
    responder = AIResponder(
        escalation,
        order_service=build_order_service(),
        catalog_service=build_catalog_service(),
        llm=build_llm(),
        storefront_url=settings.storefront_url,
        order_number_prefix=settings.order_number_prefix,
        history_window=settings.history_window,
        llm_timeout_seconds=settings.llm_timeout_seconds,
    )
    return SessionController(
        store,
        KeywordIntentClassifier(),
        responder,
        escalation,
        file_storage=build_file_storage(),
    )


@lru_cache
def get_controller() -> SessionController:
    return build_controller()


def get_customer_id(x_customer_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Customer identity as forwarded by the auth gateway; None for guests."""
    return x_customer_id or None


def get_agent_id(x_agent_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_agent_id or None
