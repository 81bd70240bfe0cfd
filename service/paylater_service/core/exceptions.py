"""Domain exceptions raised by the ledger core.

Each exception carries the HTTP status and machine-readable error code the
API layer renders, so services never build HTTP responses themselves.
"""

from typing import Any, Optional


class PayLaterError(Exception):
    """Base exception for all ledger errors."""

    status_code: int = 400
    error_code: str = "ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.status_code}] {self.error_code}: {self.message}"


class NotFound(PayLaterError):
    """Raised when a referenced entity does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"


class Forbidden(PayLaterError):
    """Raised when the actor is not authorized for the target entity."""

    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(
        self,
        message: str = "Not allowed to access this resource",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)


class InvalidState(PayLaterError):
    """Raised when an entity is not in an eligible status for the operation."""

    status_code = 400
    error_code = "INVALID_STATE"


class RefundExceedsBalance(InvalidState):
    """Raised when a refund would exceed the refundable remainder."""

    error_code = "REFUND_EXCEEDS_BALANCE"


class ConcurrencyConflict(PayLaterError):
    """Raised when a concurrent write invalidated the state an operation read.

    Callers should retry the whole operation.
    """

    status_code = 409
    error_code = "CONCURRENCY_CONFLICT"

    def __init__(
        self,
        message: str = "Concurrent modification detected, retry the operation",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)


class PersistenceFailure(PayLaterError):
    """Raised when the store is unavailable or a write failed."""

    status_code = 503
    error_code = "PERSISTENCE_FAILURE"

    def __init__(
        self,
        message: str = "Storage unavailable. Please try again later.",
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)


class ValidationFailed(PayLaterError):
    """Raised when request input is malformed."""

    status_code = 400
    error_code = "INVALID_REQUEST"


class AlreadyExists(PayLaterError):
    """Raised when creating an entity that collides with an existing one."""

    status_code = 409
    error_code = "ALREADY_EXISTS"
