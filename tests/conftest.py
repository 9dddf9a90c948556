import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from support_chat.database import init_db  # noqa: E402
from support_chat.services.catalog_service import CatalogSearchService  # noqa: E402
from support_chat.services.conversation_service import SessionController  # noqa: E402
from support_chat.services.escalation_service import EscalationManager  # noqa: E402
from support_chat.services.intent_service import KeywordIntentClassifier  # noqa: E402
from support_chat.services.llm import LLMProvider, LLMResponse  # noqa: E402
from support_chat.services.order_service import OrderLookupService  # noqa: E402
from support_chat.services.responder_service import AIResponder  # noqa: E402
from support_chat.services.sql_store import SqlConversationStore  # noqa: E402
from support_chat.services.store import InMemoryConversationStore  # noqa: E402
from support_chat.services.upload_service import FileStorageService  # noqa: E402


@pytest.fixture
def store():
    """In-memory conversation store."""
    return InMemoryConversationStore()


@pytest.fixture
def sql_store():
    """SQL store on a private in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield SqlConversationStore(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))
    engine.dispose()


@pytest.fixture
def order_service():
    service = Mock(spec=OrderLookupService)
    service.track_order.return_value = None
    service.recent_orders.return_value = []
    return service


@pytest.fixture
def catalog_service():
    service = Mock(spec=CatalogSearchService)
    service.search.return_value = []
    return service


@pytest.fixture
def llm():
    provider = Mock(spec=LLMProvider)
    provider.generate.return_value = LLMResponse(content="Happy to help with that!", model="test-model")
    return provider


@pytest.fixture
def file_storage():
    storage = Mock(spec=FileStorageService)
    storage.upload.return_value = "https://files.example.com/receipt.png"
    return storage


@pytest.fixture
def escalation(store):
    return EscalationManager(store, max_concurrent_sessions=3)


@pytest.fixture
def responder(escalation, order_service, catalog_service, llm):
    return AIResponder(
        escalation,
        order_service=order_service,
        catalog_service=catalog_service,
        llm=llm,
        storefront_url="https://shop.example.com",
        llm_timeout_seconds=5.0,
    )


@pytest.fixture
def controller(store, responder, escalation, file_storage):
    return SessionController(
        store,
        KeywordIntentClassifier(),
        responder,
        escalation,
        file_storage=file_storage,
    )


@pytest.fixture
def conversation(controller):
    """Open AI-mode conversation owned by customer ``cust-1``."""
    record, _ = controller.create_conversation("cust-1", "en")
    return record
