class ChatError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ChatError):
    """Malformed input; rejected, never retried."""


class ConversationNotFound(ValidationError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class ConversationClosed(ChatError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} is closed")


class AuthenticationRequired(ChatError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class QueueFull(ChatError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Human queue is full ({limit} waiting)")


class ConcurrentUpdateError(ChatError):
    def __init__(self, conversation_id: str, expected_version: int):
        self.conversation_id = conversation_id
        self.expected_version = expected_version
        super().__init__(f"Conversation {conversation_id} changed since version {expected_version}")


class UpstreamError(ChatError):
    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class UpstreamTimeout(UpstreamError):
    def __init__(self, service: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(service, f"timed out after {timeout_seconds}s")
