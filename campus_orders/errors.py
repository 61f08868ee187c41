"""
Error taxonomy for the order lifecycle.

Every failure a caller can see is one of these. Each carries a machine-readable
code, an HTTP status, and optional structured detail (the field or scope that
failed); storage driver messages are never placed in them.
"""
from typing import Any, Dict, Optional


class OrderServiceError(Exception):
    """Base class for errors surfaced to callers."""
    code = "InternalError"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = {k: v for k, v in extra.items() if v is not None}

    def to_detail(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message}
        detail.update(self.extra)
        if self.retryable:
            detail["retryable"] = True
        return detail


class Unauthenticated(OrderServiceError):
    code = "Unauthenticated"
    status_code = 401


class AuthorizationDenied(OrderServiceError):
    """Base for the 403 denials; the subclass code is the reason."""
    code = "InsufficientPrivilege"
    status_code = 403


class InsufficientPrivilege(AuthorizationDenied):
    code = "InsufficientPrivilege"


class WrongServiceScope(AuthorizationDenied):
    code = "WrongServiceScope"


class NotYourRestaurant(AuthorizationDenied):
    code = "NotYourRestaurant"


class NotFound(OrderServiceError):
    code = "NotFound"
    status_code = 404


class IllegalTransition(OrderServiceError):
    code = "IllegalTransition"
    status_code = 409


class ConflictUnderConcurrentUpdate(OrderServiceError):
    code = "ConflictUnderConcurrentUpdate"
    status_code = 409
    retryable = True


class ValidationError(OrderServiceError):
    code = "ValidationError"
    status_code = 400


class StorageUnavailable(OrderServiceError):
    code = "StorageUnavailable"
    status_code = 503
    retryable = True


DENIAL_ERRORS = {
    cls.code: cls for cls in (InsufficientPrivilege, WrongServiceScope, NotYourRestaurant)
}


def denial_for(reason: str, message: str, scope: Optional[str] = None) -> AuthorizationDenied:
    """Build the 403 error matching an authorization reason code."""
    return DENIAL_ERRORS.get(reason, InsufficientPrivilege)(message, scope=scope)
