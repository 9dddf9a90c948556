from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from support_chat.services.errors import UpstreamError, UpstreamTimeout

T = TypeVar("T")

UPSTREAM_TIMEOUT = "upstream_timeout"
UPSTREAM_ERROR = "upstream_error"
EMPTY_RESPONSE = "empty_response"
NOT_CONFIGURED = "not_configured"


@dataclass
class Result(Generic[T]):
    """Outcome of a collaborator call that must not raise past the responder."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_upstream(exc: UpstreamError) -> "Result[T]":
        code = UPSTREAM_TIMEOUT if isinstance(exc, UpstreamTimeout) else UPSTREAM_ERROR
        return Result(ok=False, error=str(exc), error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
