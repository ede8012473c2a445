"""Error taxonomy shared by the room, account and file services.

Every error carries a stable ``code`` (sent to clients in ``error`` frames
and HTTP bodies) and an HTTP ``status_code`` for the REST routes.
"""
from typing import Optional


class ChatError(Exception):
    """Base exception for messaging errors."""
    code = "ChatError"

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InvalidParticipants(ChatError):
    """Raised when a room id cannot be derived from (or split into) a pair."""
    code = "InvalidParticipants"

    def __init__(self, message: str = "Invalid room participants"):
        super().__init__(message, status_code=400)


class NotAuthorized(ChatError):
    """Raised when an account acts on a room or message it may not touch."""
    code = "NotAuthorized"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=403)


class NotFound(ChatError):
    """Raised when a referenced room, message, account or file is unknown."""
    code = "NotFound"

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class InvalidMessage(ChatError):
    """Raised for malformed frames or message payloads."""
    code = "InvalidMessage"

    def __init__(self, message: str = "Invalid message format"):
        super().__init__(message, status_code=422)


class StorageUnavailable(ChatError):
    """Raised when the persistence layer fails or times out."""
    code = "StorageUnavailable"

    def __init__(self, message: str = "Storage unavailable", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message, status_code=503)
