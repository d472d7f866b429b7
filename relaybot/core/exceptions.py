from enum import Enum
from typing import Optional, Any


class RelayBotError(Exception):
    """
    Base exception for the relay bot application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class ResourceNotFoundError(RelayBotError):
    """
    Raised when a requested resource is not found.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class AuthenticationError(RelayBotError):
    """
    Raised when authentication fails.
    """
    def __init__(self, message: str = "Authentication failed", details: Optional[Any] = None):
        super().__init__(message, code="AUTHENTICATION_FAILED", status_code=401, details=details)


class ValidationError(RelayBotError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class InvalidUpdateError(RelayBotError):
    """
    Raised when an inbound webhook body cannot be parsed as a Telegram update.
    """
    def __init__(self, message: str = "Bad Request", details: Optional[Any] = None):
        super().__init__(message, code="BAD_REQUEST", status_code=400, details=details)


class ExternalServiceError(RelayBotError):
    """
    Raised when an external service (e.g., captcha provider) fails.
    """
    def __init__(self, message: str = "External service error", details: Optional[Any] = None):
        super().__init__(message, code="EXTERNAL_SERVICE_ERROR", status_code=502, details=details)


class ErrorKind(str, Enum):
    """Failure categories reported by the Bot API adapter."""

    THREAD_NOT_FOUND = "thread_not_found"
    MESSAGE_NOT_FOUND = "message_not_found"
    CONTENT_REJECTED = "content_rejected"
    BAD_REQUEST = "bad_request"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    UNKNOWN = "unknown"


class GatewayError(ExternalServiceError):
    """
    Raised when a Bot API call fails (ok=false reply or transport error).
    """
    def __init__(
        self,
        method: str,
        description: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        error_code: Optional[int] = None,
    ):
        self.method = method
        self.description = description
        self.kind = kind
        self.error_code = error_code
        super().__init__(
            f"{method} failed: {description}",
            details={"method": method, "kind": kind.value, "error_code": error_code},
        )


class TopicInvalidError(RelayBotError):
    """
    Raised when the stored discussion thread no longer resolves.
    Callers clear the topic reference and rerun the relay.
    """
    def __init__(self, topic_id: Optional[str], cause: Optional[GatewayError] = None):
        self.topic_id = topic_id
        self.cause = cause
        super().__init__(f"Topic {topic_id} is no longer available", code="TOPIC_INVALID")


class TopicCreationError(RelayBotError):
    """
    Raised when a new discussion thread could not be created.
    """
    def __init__(self, user_id: str, cause: Optional[Exception] = None):
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Could not create topic for user {user_id}", code="TOPIC_CREATION_FAILED", status_code=503)


class TopicBusyError(RelayBotError):
    """
    Raised when another task is already creating the topic for this user.
    """
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Topic creation already in progress for user {user_id}", code="TOPIC_BUSY", status_code=409)
