import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from support_chat.logging_config import get_logger

logger = get_logger("intent_service")

DEFAULT_LANGUAGE = "en"


class Intent(str, Enum):
    ORDER_TRACKING = "order_tracking"  # Where is my order / order status
    PRODUCT_RECOMMENDATION = "product_recommendation"  # Looking for a product
    FAQ = "faq"  # Shipping, returns, payment questions
    HUMAN_REQUEST = "human_request"  # Customer asks for a person
    GENERAL = "general"  # Free-form, answered by the language model


# Checked top to bottom; the first intent with a matching keyword wins.
INTENT_PRECEDENCE: Tuple[Intent, ...] = (
    Intent.ORDER_TRACKING,
    Intent.PRODUCT_RECOMMENDATION,
    Intent.FAQ,
    Intent.HUMAN_REQUEST,
)

INTENT_KEYWORDS: Dict[Intent, Dict[str, Sequence[str]]] = {
    Intent.ORDER_TRACKING: {
        "en": ["order", "track", "tracking", "number", "where", "status", "delivery"],
        "ar": ["طلب", "تتبع", "رقم", "وين", "فين", "وصل", "شحن"],
    },
    Intent.PRODUCT_RECOMMENDATION: {
        "en": ["product", "recommend", "suggestion", "best", "new", "popular", "want", "looking", "search", "find"],
        "ar": ["منتج", "اقتراح", "توصية", "أفضل", "جديد", "شائع", "مطلوب", "أريد", "ابحث", "أبحث"],
    },
    Intent.FAQ: {
        "en": ["how", "when", "where", "why", "what is", "what are", "question", "help", "information", "support"],
        "ar": ["كيف", "متى", "أين", "لماذا", "ما هو", "ما هي", "سؤال", "استفسار", "معلومات", "مساعدة"],
    },
    Intent.HUMAN_REQUEST: {
        "en": ["human", "agent", "person", "staff", "representative", "support"],
        "ar": ["موظف", "انسان", "شخص", "عميل", "خدمة", "مندوب"],
    },
}

ORDER_NUMBER_TEMPLATE = r"\b{prefix}-\d{{8}}-\d{{5}}\b|#?\b\d{{10,}}\b"


def normalize_language(language: Optional[str]) -> str:
    if not language:
        return DEFAULT_LANGUAGE
    code = language.strip().lower().split("-")[0]
    return code if code in INTENT_KEYWORDS[Intent.ORDER_TRACKING] else DEFAULT_LANGUAGE


def matches_intent(message: str, intent: Intent, language: str = DEFAULT_LANGUAGE) -> bool:
    normalized = (message or "").casefold()
    if not normalized:
        return False
    keywords = INTENT_KEYWORDS[intent][normalize_language(language)]
    return any(keyword.casefold() in normalized for keyword in keywords)


def classify_intent(message: str, language: str = DEFAULT_LANGUAGE) -> Intent:
    """Keyword classification in fixed precedence order."""
    for intent in INTENT_PRECEDENCE:
        if matches_intent(message, intent, language):
            return intent
    return Intent.GENERAL


def extract_order_number(message: str, prefix: str = "SOL") -> Optional[str]:
    """Structured order code (PREFIX-YYYYMMDD-NNNNN) or a bare number of 10+ digits."""
    pattern = re.compile(ORDER_NUMBER_TEMPLATE.format(prefix=re.escape(prefix)), re.IGNORECASE)
    match = pattern.search(message or "")
    if not match:
        return None
    return match.group(0).lstrip("#").upper()


class IntentClassifier(ABC):
    """Swappable classification capability used by the session controller."""

    @abstractmethod
    def classify(self, message: str, language: str = DEFAULT_LANGUAGE) -> Intent:
        pass


class KeywordIntentClassifier(IntentClassifier):
    def classify(self, message: str, language: str = DEFAULT_LANGUAGE) -> Intent:
        intent = classify_intent(message, language)
        logger.debug(f"Classified intent={intent.value} language={language}")
        return intent
