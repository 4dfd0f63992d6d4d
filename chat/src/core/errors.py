"""Typed failures raised by the messaging core.

Every error carries a stable ``code`` and an HTTP ``status_code``; the core
never uses the status itself, it only exists so the API layer can render
errors without a lookup table.
"""

from typing import Any, Optional


class MessagingError(Exception):
    status_code = 400
    code = "MESSAGING_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class Unauthenticated(MessagingError):
    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "No authenticated actor"):
        super().__init__(message)


class InvalidParticipants(MessagingError):
    status_code = 422
    code = "INVALID_PARTICIPANTS"

    def __init__(self, customer_id: str | None, vendor_id: str | None):
        if not customer_id or not vendor_id:
            message = "Both a customer and a vendor are required"
        else:
            message = "Customer and vendor must be different participants"
        super().__init__(
            message,
            details={"customer_id": customer_id, "vendor_id": vendor_id},
        )


class NotAParticipant(MessagingError):
    status_code = 403
    code = "NOT_A_PARTICIPANT"

    def __init__(self, actor_id: str, conversation_id: str | None = None):
        super().__init__(
            "Unable to send: actor is not part of this conversation",
            details={"actor_id": actor_id, "conversation_id": conversation_id},
        )


class ConversationNotFound(MessagingError):
    status_code = 404
    code = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: str):
        super().__init__(
            f"Conversation not found: {conversation_id}",
            details={"conversation_id": conversation_id},
        )


class MessageNotFound(MessagingError):
    status_code = 404
    code = "MESSAGE_NOT_FOUND"

    def __init__(self, message_id: str):
        super().__init__(
            f"Message not found: {message_id}",
            details={"message_id": message_id},
        )


class EmptyContent(MessagingError):
    status_code = 422
    code = "EMPTY_CONTENT"

    def __init__(self):
        super().__init__("Message content cannot be empty")


class InvalidPayload(MessagingError):
    status_code = 422
    code = "INVALID_PAYLOAD"

    def __init__(self, reason: str, content_type: str | None = None):
        super().__init__(reason, details={"content_type": content_type})


class StoreUnavailable(MessagingError):
    status_code = 503
    code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str):
        super().__init__(
            f"Message store unavailable during {operation}",
            details={"operation": operation},
        )
