"""Read-only order lookups against the storefront order service."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import List, Optional

import httpx

from support_chat.logging_config import get_logger
from support_chat.services.errors import UpstreamError, UpstreamTimeout

logger = get_logger("order_service")

SERVICE_NAME = "order_lookup"


@dataclass
class OrderSummary:
    order_number: str
    order_status: str
    payment_status: str
    shipping_status: str
    total_amount: Optional[float] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: dict) -> "OrderSummary":
        return cls(
            order_number=str(data.get("orderNumber") or data.get("order_number") or data.get("id") or ""),
            order_status=str(data.get("orderStatus") or data.get("order_status") or "PENDING"),
            payment_status=str(data.get("paymentStatus") or data.get("payment_status") or "PENDING"),
            shipping_status=str(data.get("shippingStatus") or data.get("shipping_status") or "PENDING"),
            total_amount=data.get("totalAmount", data.get("total_amount")),
            tracking_number=data.get("trackingNumber") or data.get("tracking_number"),
            estimated_delivery=data.get("estimatedDelivery") or data.get("estimated_delivery"),
        )


class OrderLookupService(ABC):
    @abstractmethod
    def track_order(self, order_number: str, customer_id: Optional[str] = None) -> Optional[OrderSummary]:
        """Order by number, or None if it does not exist for this customer."""

    @abstractmethod
    def recent_orders(self, customer_id: str, limit: int = 5) -> List[OrderSummary]:
        pass


class HttpOrderLookupService(OrderLookupService):
    def __init__(self, base_url: str, timeout_seconds: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _get(self, path: str, customer_id: Optional[str], params: Optional[dict] = None) -> httpx.Response:
        headers = {"X-Customer-Id": customer_id} if customer_id else {}
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                return client.get(f"{self.base_url}{path}", headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(SERVICE_NAME, self.timeout_seconds) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE_NAME, str(exc)) from exc

    @staticmethod
    def _data(response: httpx.Response):
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(SERVICE_NAME, "response is not JSON") from exc
        return body.get("data") if isinstance(body, dict) and "data" in body else body

    def track_order(self, order_number: str, customer_id: Optional[str] = None) -> Optional[OrderSummary]:
        response = self._get(f"/orders/track/{order_number}", customer_id)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning(f"Order lookup failed: status={response.status_code} order={order_number}")
            raise UpstreamError(SERVICE_NAME, f"status {response.status_code}")

        data = self._data(response)
        if not isinstance(data, dict):
            raise UpstreamError(SERVICE_NAME, "unexpected payload")
        return OrderSummary.from_payload(data)

    def recent_orders(self, customer_id: str, limit: int = 5) -> List[OrderSummary]:
        response = self._get("/orders", customer_id, params={"customer_id": customer_id, "limit": limit})
        if response.status_code != 200:
            raise UpstreamError(SERVICE_NAME, f"status {response.status_code}")

        data = self._data(response)
        if not isinstance(data, list):
            raise UpstreamError(SERVICE_NAME, "unexpected payload")
        return [OrderSummary.from_payload(item) for item in data[:limit] if isinstance(item, dict)]
