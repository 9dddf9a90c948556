from support_chat.services.llm.base import LLMProvider, LLMResponse
from support_chat.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
