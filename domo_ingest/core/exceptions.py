"""Custom exceptions for the Domo ingestion service."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "AuthenticationError": "Webhook authentication failed.",
    "MalformedPayloadError": "The request body is not a valid JSON object.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "UnresolvedConversationError": "No demo is associated with this conversation.",
    "PartialIngestionError": "Some analytics records could not be stored.",
    "IdempotencyLedgerError": "Event deduplication is temporarily unavailable.",
    "DatabaseError": "A database error occurred. Please try again.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the exception's MRO so subclasses inherit their parent's message.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class DomoException(Exception):
    """Base exception for all ingestion-specific errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize Domo exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(DomoException):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class AuthenticationError(DomoException):
    """Webhook signature or token verification failed (401)."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            status_code=401,
        )


class MalformedPayloadError(DomoException):
    """Request body could not be decoded as a JSON object (400)."""

    def __init__(self, message: str = "Invalid JSON payload") -> None:
        super().__init__(
            message=message,
            code="MALFORMED_PAYLOAD",
            status_code=400,
        )


class ValidationError(DomoException):
    """Input validation error (400)."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class UnresolvedConversationError(NotFoundError):
    """Event references a conversation with no owning demo.

    Contained by the router: logged and skipped, never surfaced to the provider.
    """

    def __init__(self, conversation_id: str | None) -> None:
        super().__init__("Demo for conversation", conversation_id)
        self.code = "UNRESOLVED_CONVERSATION"
        self.conversation_id = conversation_id


class PartialIngestionError(DomoException):
    """One or more table writes failed while others succeeded."""

    def __init__(self, failures: dict[str, str], succeeded: list[str] | None = None) -> None:
        """Initialize partial ingestion error.

        Args:
            failures: Mapping of table name to error message.
            succeeded: Tables that were written successfully.
        """
        tables = ", ".join(sorted(failures))
        super().__init__(
            message=f"Ingestion failed for: {tables}",
            code="PARTIAL_INGESTION",
            status_code=500,
            details={"failures": failures, "succeeded": succeeded or []},
        )
        self.failures = failures
        self.succeeded = succeeded or []


class DuplicateEventError(DomoException):
    """Idempotency guard saw an already-processed event.

    Informational: the webhook is acknowledged and no handler runs.
    """

    def __init__(self, event_id: str) -> None:
        super().__init__(
            message=f"Event '{event_id}' was already processed",
            code="DUPLICATE_EVENT",
            status_code=200,
            details={"event_id": event_id},
        )
        self.event_id = event_id


class IdempotencyLedgerError(DomoException):
    """Ledger insert failed for a reason other than a unique violation (503)."""

    def __init__(self, event_id: str, message: str) -> None:
        super().__init__(
            message=f"Failed to record event '{event_id}': {message}",
            code="IDEMPOTENCY_LEDGER_ERROR",
            status_code=503,
            details={"event_id": event_id},
        )
        self.event_id = event_id


class DatabaseError(DomoException):
    """Database operation error (500)."""

    def __init__(self, message: str = "A database error occurred") -> None:
        """Initialize database error.

        Args:
            message: Error message.
        """
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
            status_code=500,
        )
