from abc import ABC, abstractmethod
from typing import Optional

import httpx

from support_chat.logging_config import get_logger
from support_chat.services.errors import UpstreamError, UpstreamTimeout

logger = get_logger("upload_service")

SERVICE_NAME = "file_storage"


class FileStorageService(ABC):
    @abstractmethod
    def upload(self, filename: str, content: bytes, content_type: Optional[str] = None) -> str:
        """Store the file and return its public URL."""


class HttpFileStorageService(FileStorageService):
    def __init__(self, upload_url: str, timeout_seconds: float = 30.0):
        self.upload_url = upload_url
        self.timeout_seconds = timeout_seconds

    def upload(self, filename: str, content: bytes, content_type: Optional[str] = None) -> str:
        files = {"file": (filename or "upload", content, content_type or "application/octet-stream")}
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(self.upload_url, files=files)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(SERVICE_NAME, self.timeout_seconds) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE_NAME, str(exc)) from exc

        if response.status_code not in (200, 201):
            logger.error(f"File storage error: {response.status_code} - {response.text}")
            raise UpstreamError(SERVICE_NAME, f"status {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(SERVICE_NAME, "response is not JSON") from exc
        if not isinstance(body, dict):
            raise UpstreamError(SERVICE_NAME, "unexpected payload")
        url = body.get("url")
        if not url or not isinstance(url, str):
            raise UpstreamError(SERVICE_NAME, "no url in response")
        return url
