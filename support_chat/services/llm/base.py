from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None

    @property
    def text(self) -> str:
        """Reply text with surrounding whitespace removed; empty for non-text content."""
        return self.content.strip() if isinstance(self.content, str) else ""


class LLMProvider(ABC):
    """Language-generation backend used for free-form customer questions."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Chat-completion style generation over role/content messages.

        Raises UpstreamTimeout when ``timeout_seconds`` elapses and
        UpstreamError for any other transport or API failure.
        """
