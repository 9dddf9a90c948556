"""Read-only product search against the storefront catalog."""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import List, Optional

import httpx

from support_chat.logging_config import get_logger
from support_chat.services.errors import UpstreamError, UpstreamTimeout

logger = get_logger("catalog_service")

SERVICE_NAME = "catalog_search"
MAX_RESULTS = 3


@dataclass
class ProductSummary:
    id: str
    name: str
    price: float
    rating: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


class CatalogSearchService(ABC):
    @abstractmethod
    def search(self, query: str, limit: int = MAX_RESULTS) -> List[ProductSummary]:
        pass


class HttpCatalogSearchService(CatalogSearchService):
    def __init__(self, base_url: str, timeout_seconds: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def search(self, query: str, limit: int = MAX_RESULTS) -> List[ProductSummary]:
        limit = min(limit, MAX_RESULTS)
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.get(f"{self.base_url}/products/search", params={"q": query, "limit": limit})
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(SERVICE_NAME, self.timeout_seconds) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE_NAME, str(exc)) from exc

        if response.status_code != 200:
            logger.warning(f"Catalog search failed: status={response.status_code}")
            raise UpstreamError(SERVICE_NAME, f"status {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(SERVICE_NAME, "response is not JSON") from exc

        items = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise UpstreamError(SERVICE_NAME, "unexpected payload")

        products = []
        for item in items[:limit]:
            if not isinstance(item, dict) or "id" not in item:
                continue
            products.append(
                ProductSummary(
                    id=str(item["id"]),
                    name=str(item.get("name", "")),
                    price=item.get("price", 0),
                    rating=item.get("rating"),
                )
            )
        return products
