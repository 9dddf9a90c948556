from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from support_chat.logging_config import get_logger
from support_chat.services.catalog_service import MAX_RESULTS, CatalogSearchService, ProductSummary
from support_chat.services.errors import QueueFull, UpstreamError, UpstreamTimeout
from support_chat.services.escalation_service import EscalationManager, localized
from support_chat.services.intent_service import Intent, extract_order_number
from support_chat.services.llm import LLMProvider, LLMResponse
from support_chat.services.order_service import OrderLookupService, OrderSummary
from support_chat.services.result import EMPTY_RESPONSE, NOT_CONFIGURED, Result
from support_chat.services.store import ConversationRecord, MessageRecord, MessageType, SenderType, make_message

logger = get_logger("responder_service")

ASSISTANT_NAME = "Support Assistant"

MSG_ASK_ORDER_NUMBER = {
    "en": 'Please provide your order number. You can find it in your email or in the "My Orders" section.',
    "ar": 'يرجى تقديم رقم الطلب الخاص بك. يمكنك العثور عليه في بريدك الإلكتروني أو في قسم "طلباتي".',
}
MSG_ORDER_NOT_FOUND = {
    "en": "I couldn't find an order with that number. Please check the order number and try again.",
    "ar": "لم أتمكن من العثور على طلب بهذا الرقم. يرجى التأكد من رقم الطلب والمحاولة مرة أخرى.",
}
MSG_NO_PRODUCTS = {
    "en": "I couldn't find products matching your search. Could you describe what you're looking for in more detail?",
    "ar": "لم أجد منتجات تطابق بحثك. هل يمكنك وصف ما تبحث عنه بشكل أكثر تفصيلاً؟",
}
MSG_GENERAL_HELP = {
    "en": (
        "I can help you with:\n\n• Order tracking\n• Product information\n• Shipping and delivery\n"
        "• Returns\n• Payment methods\n\nOr you can request to speak with a customer service agent."
    ),
    "ar": (
        "يمكنني مساعدتك في:\n\n• تتبع الطلبات\n• معلومات المنتجات\n• الشحن والتوصيل\n"
        "• المرتجعات\n• طرق الدفع\n\nأو يمكنك طلب التحدث مع موظف خدمة العملاء."
    ),
}
MSG_DEFAULT_REPLY = {
    "en": (
        "Thank you for your message! How can I help you today? I can assist with order tracking, "
        "product information, shipping, or any other inquiries."
    ),
    "ar": (
        "شكراً لرسالتك! كيف يمكنني مساعدتك اليوم؟ يمكنني مساعدتك في تتبع الطلبات، "
        "معلومات المنتجات، الشحن، أو أي استفسارات أخرى."
    ),
}
MSG_AI_FALLBACK = {
    "en": (
        "I apologize, I couldn't understand your query. "
        "Could you please rephrase it or request to speak with a human agent?"
    ),
    "ar": "أعتذر، لم أتمكن من فهم استفسارك. هل يمكنك إعادة صياغته أو طلب التحدث مع أحد موظفي خدمة العملاء؟",
}

FAQ_ANSWERS = {
    "en": {
        "how to track order": (
            'You can track your order by entering the order number in this chat, '
            'or through the "My Orders" section in your account.'
        ),
        "when will my order arrive": (
            "Orders usually arrive within 3-5 business days in Cairo, and 5-7 days for other governorates."
        ),
        "how to return product": (
            "You can return the product within 14 days of delivery. Contact us or use the return form."
        ),
        "what payment methods are available": "We accept cash on delivery, bank transfer, and digital wallets.",
        "how to change shipping address": (
            "You can change the address from your account or contact us before the order is shipped."
        ),
    },
    "ar": {
        "كيف أتتبع طلبي": 'يمكنك تتبع طلبك بإدخال رقم الطلب في هذا المحادثة، أو من خلال قسم "طلباتي" في حسابك.',
        "متى سيصل طلبي": "عادة ما تصل الطلبات خلال 3-5 أيام عمل داخل القاهرة، و5-7 أيام للمحافظات الأخرى.",
        "كيف يمكنني إرجاع منتج": "يمكنك إرجاع المنتج خلال 14 يوم من تاريخ الاستلام. اتصل بنا أو استخدم نموذج الإرجاع.",
        "ما هي طرق الدفع المتاحة": "نقبل الدفع عند الاستلام، التحويل البنكي، والمحافظ الرقمية.",
        "كيف أغير عنوان الشحن": "يمكنك تغيير العنوان من حسابك أو الاتصال بنا قبل شحن الطلب.",
    },
}

ORDER_STATUS_LABELS = {
    "PENDING": {"en": "Pending", "ar": "في الانتظار"},
    "CONFIRMED": {"en": "Confirmed", "ar": "مؤكد"},
    "PROCESSING": {"en": "Processing", "ar": "قيد التحضير"},
    "SHIPPED": {"en": "Shipped", "ar": "تم الشحن"},
    "DELIVERED": {"en": "Delivered", "ar": "تم التسليم"},
    "CANCELLED": {"en": "Cancelled", "ar": "ملغي"},
}
PAYMENT_STATUS_LABELS = {
    "PENDING": {"en": "Pending", "ar": "في الانتظار"},
    "AWAITING_PROOF": {"en": "Awaiting Proof", "ar": "في انتظار إثبات الدفع"},
    "UNDER_REVIEW": {"en": "Under Review", "ar": "قيد المراجعة"},
    "PAID": {"en": "Paid", "ar": "مدفوع"},
    "FAILED": {"en": "Failed", "ar": "فشل"},
}
SHIPPING_STATUS_LABELS = {
    "PENDING": {"en": "Pending", "ar": "في الانتظار"},
    "PROCESSING": {"en": "Processing", "ar": "قيد التحضير"},
    "SHIPPED": {"en": "Shipped", "ar": "تم الشحن"},
    "OUT_FOR_DELIVERY": {"en": "Out for Delivery", "ar": "في الطريق"},
    "DELIVERED": {"en": "Delivered", "ar": "تم التسليم"},
}

ORDER_FIELD_LABELS = {
    "en": {
        "title": "📦 Order {number} Information",
        "status": "Status",
        "payment": "Payment",
        "shipping": "Shipping",
        "total": "Total",
        "tracking": "Tracking",
        "delivery": "Est. Delivery",
        "currency": "EGP",
    },
    "ar": {
        "title": "📦 معلومات الطلب {number}",
        "status": "الحالة",
        "payment": "حالة الدفع",
        "shipping": "حالة الشحن",
        "total": "الإجمالي",
        "tracking": "رقم التتبع",
        "delivery": "التسليم المتوقع",
        "currency": "ج.م",
    },
}

PRODUCT_LABELS = {
    "en": {
        "intro": "🛍️ Here are some recommended products:",
        "new": "New",
        "view": "View Product",
        "outro": "Would you like to see more products or do you have specific questions?",
        "currency": "EGP",
    },
    "ar": {
        "intro": "🛍️ إليك بعض المنتجات المقترحة:",
        "new": "جديد",
        "view": "عرض المنتج",
        "outro": "هل تريد رؤية المزيد من المنتجات أم لديك أسئلة محددة؟",
        "currency": "ج.م",
    },
}

SYSTEM_PROMPT = (
    "You are {assistant}, the customer support assistant of an online store. "
    "Answer briefly and politely in {language_name}. "
    "You may discuss only the signed-in customer's own orders and cart. "
    "If you cannot help, suggest asking for a human agent."
)
LANGUAGE_NAMES = {"en": "English", "ar": "Arabic"}

ROLE_BY_SENDER = {
    SenderType.CUSTOMER.value: "user",
    SenderType.AI.value: "assistant",
    SenderType.AGENT.value: "assistant",
}


@dataclass
class ResponderContext:
    conversation: ConversationRecord
    customer_id: Optional[str]
    history: List[MessageRecord] = field(default_factory=list)

    @property
    def language(self) -> str:
        return self.conversation.language


def _label(table: dict, value: str, language: str) -> str:
    labels = table.get((value or "").upper())
    return localized(labels, language) if labels else value


def _format_delivery(value: str, language: str) -> str:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except (TypeError, ValueError):
        return value
    if language == "ar":
        return parsed.strftime("%d/%m/%Y")
    return parsed.strftime("%m/%d/%Y")


def format_order_info(order: OrderSummary, language: str) -> str:
    labels = ORDER_FIELD_LABELS.get(language) or ORDER_FIELD_LABELS["en"]
    lines = [
        labels["title"].format(number=order.order_number),
        "",
        f"{labels['status']}: {_label(ORDER_STATUS_LABELS, order.order_status, language)}",
        f"{labels['payment']}: {_label(PAYMENT_STATUS_LABELS, order.payment_status, language)}",
        f"{labels['shipping']}: {_label(SHIPPING_STATUS_LABELS, order.shipping_status, language)}",
    ]
    if order.total_amount is not None:
        lines.append(f"{labels['total']}: {order.total_amount} {labels['currency']}")
    if order.tracking_number:
        lines.append(f"{labels['tracking']}: {order.tracking_number}")
    if order.estimated_delivery:
        lines.append(f"{labels['delivery']}: {_format_delivery(order.estimated_delivery, language)}")
    return "\n".join(lines)


def format_product_recommendations(products: List[ProductSummary], language: str, storefront_url: str) -> str:
    labels = PRODUCT_LABELS.get(language) or PRODUCT_LABELS["en"]
    base = storefront_url.rstrip("/")
    entries = []
    for index, product in enumerate(products, start=1):
        rating = product.rating if product.rating else labels["new"]
        entries.append(
            f"{index}. **{product.name}**\n"
            f"   💰 {product.price} {labels['currency']}\n"
            f"   ⭐ {rating}\n"
            f"   🔗 [{labels['view']}]({base}/products/{product.id})"
        )
    return f"{labels['intro']}\n\n" + "\n\n".join(entries) + f"\n\n{labels['outro']}"


def find_faq_answer(message: str, language: str) -> Optional[str]:
    answers = FAQ_ANSWERS.get(language) or FAQ_ANSWERS["en"]
    normalized = (message or "").casefold()
    for question, answer in answers.items():
        if question.casefold() in normalized:
            return answer
    return None


class AIResponder:
    """Produces the assistant's reply for a classified customer message.

    Upstream failures never escape: every branch returns a message.
    """

    def __init__(
        self,
        escalation: EscalationManager,
        order_service: Optional[OrderLookupService] = None,
        catalog_service: Optional[CatalogSearchService] = None,
        llm: Optional[LLMProvider] = None,
        storefront_url: str = "http://localhost:3000",
        order_number_prefix: str = "SOL",
        history_window: int = 5,
        llm_timeout_seconds: Optional[float] = None,
    ):
        self.escalation = escalation
        self.order_service = order_service
        self.catalog_service = catalog_service
        self.llm = llm
        self.storefront_url = storefront_url
        self.order_number_prefix = order_number_prefix
        self.history_window = history_window
        self.llm_timeout_seconds = llm_timeout_seconds

    def respond(self, intent: Intent, message_text: str, context: ResponderContext) -> MessageRecord:
        handlers = {
            Intent.ORDER_TRACKING: self.handle_order_tracking,
            Intent.PRODUCT_RECOMMENDATION: self.handle_product_recommendation,
            Intent.FAQ: self.handle_faq,
            Intent.HUMAN_REQUEST: self.handle_human_request,
            Intent.GENERAL: self.handle_general,
        }
        return handlers[intent](message_text, context)

    def _reply(
        self,
        context: ResponderContext,
        content: str,
        intent: Intent,
        message_type: MessageType = MessageType.TEXT,
        **metadata,
    ) -> MessageRecord:
        return make_message(
            context.conversation.id,
            content,
            SenderType.AI,
            message_type,
            metadata={"intent": intent.value, "sender_name": ASSISTANT_NAME, **metadata},
        )

    def handle_order_tracking(self, message_text: str, context: ResponderContext) -> MessageRecord:
        language = context.language
        order_number = extract_order_number(message_text, self.order_number_prefix)
        if not order_number:
            return self._reply(context, localized(MSG_ASK_ORDER_NUMBER, language), Intent.ORDER_TRACKING)

        order = None
        if self.order_service is None:
            logger.warning("Order lookup not configured")
        else:
            try:
                order = self.order_service.track_order(order_number, context.customer_id)
            except (UpstreamTimeout, UpstreamError) as exc:
                logger.warning(
                    "Order lookup failed",
                    extra={"context": {"order_number": order_number, "error": str(exc)}},
                )

        if order is None:
            return self._reply(
                context,
                localized(MSG_ORDER_NOT_FOUND, language),
                Intent.ORDER_TRACKING,
                order_number=order_number,
            )

        return self._reply(
            context,
            format_order_info(order, language),
            Intent.ORDER_TRACKING,
            MessageType.ORDER_INFO,
            order_number=order_number,
            order=order.to_dict(),
        )

    def handle_product_recommendation(self, message_text: str, context: ResponderContext) -> MessageRecord:
        language = context.language
        products: List[ProductSummary] = []
        if self.catalog_service is None:
            logger.warning("Catalog search not configured")
        else:
            try:
                products = self.catalog_service.search(message_text, limit=MAX_RESULTS)[:MAX_RESULTS]
            except (UpstreamTimeout, UpstreamError) as exc:
                logger.warning("Catalog search failed", extra={"context": {"error": str(exc)}})

        if not products:
            return self._reply(context, localized(MSG_NO_PRODUCTS, language), Intent.PRODUCT_RECOMMENDATION)

        return self._reply(
            context,
            format_product_recommendations(products, language, self.storefront_url),
            Intent.PRODUCT_RECOMMENDATION,
            MessageType.PRODUCT_LINK,
            products=[product.to_dict() for product in products],
        )

    def handle_faq(self, message_text: str, context: ResponderContext) -> MessageRecord:
        answer = find_faq_answer(message_text, context.language)
        if answer is None:
            return self._reply(context, localized(MSG_GENERAL_HELP, context.language), Intent.FAQ, matched=False)
        return self._reply(context, answer, Intent.FAQ, matched=True)

    def handle_human_request(self, message_text: str, context: ResponderContext) -> MessageRecord:
        try:
            outcome = self.escalation.escalate(context.conversation, context.customer_id)
        except QueueFull:
            return self.escalation.queue_full_message(context.conversation)

        context.conversation = outcome.conversation
        if outcome.message is not None:
            return outcome.message
        # Already on the human side; repeat where the customer stands.
        return self.escalation.status_message(outcome)

    def handle_general(self, message_text: str, context: ResponderContext) -> MessageRecord:
        result = self.generate_reply(message_text, context)
        if result.ok:
            return self._reply(context, result.value.content, Intent.GENERAL, model=result.value.model)

        if result.error_code == NOT_CONFIGURED:
            return self._reply(context, localized(MSG_DEFAULT_REPLY, context.language), Intent.GENERAL)

        logger.warning(
            "Language generation failed, using fallback",
            extra={
                "context": {
                    "conversation_id": context.conversation.id,
                    "error_code": result.error_code,
                    "error": result.error,
                }
            },
        )
        return self._reply(context, localized(MSG_AI_FALLBACK, context.language), Intent.GENERAL, fallback=True)

    def build_prompt(self, message_text: str, context: ResponderContext) -> List[dict]:
        language = context.language
        system = SYSTEM_PROMPT.format(assistant=ASSISTANT_NAME, language_name=LANGUAGE_NAMES.get(language, "English"))
        if context.customer_id:
            system += f"\nCustomer id: {context.customer_id}."
            orders = self._recent_orders(context.customer_id)
            if orders:
                summary = "; ".join(f"{o.order_number} ({o.order_status})" for o in orders)
                system += f"\nCustomer's recent orders: {summary}."

        messages = [{"role": "system", "content": system}]
        history = [m for m in context.history if m.sender_type in ROLE_BY_SENDER]
        if self.history_window > 0:
            for message in history[-self.history_window:]:
                messages.append({"role": ROLE_BY_SENDER[message.sender_type], "content": message.content})
        messages.append({"role": "user", "content": message_text})
        return messages

    def _recent_orders(self, customer_id: str) -> List[OrderSummary]:
        if self.order_service is None:
            return []
        try:
            return self.order_service.recent_orders(customer_id, limit=5)
        except (UpstreamTimeout, UpstreamError) as exc:
            logger.info(f"Skipping order context: {exc}")
            return []

    def generate_reply(self, message_text: str, context: ResponderContext) -> Result[LLMResponse]:
        if self.llm is None:
            return Result.failure("Language generation not configured", NOT_CONFIGURED)

        messages = self.build_prompt(message_text, context)
        try:
            response = self.llm.generate(messages, timeout_seconds=self.llm_timeout_seconds)
        except UpstreamError as exc:
            return Result.from_upstream(exc)

        content = response.text
        if not content:
            return Result.failure("Empty response", EMPTY_RESPONSE)
        return Result.success(LLMResponse(content=content, model=response.model, usage=response.usage))
