"""
Exception classes for the authorization and audit core.

Every failure that blocks a mutation is a subclass of AccessCoreError so the
HTTP layer (and any other caller) can map it to a response in one place.

Exception Hierarchy:
    AccessCoreError (base)
    ├── ValidationError (400)
    ├── Unauthorized (403)
    ├── ProtectedRole (403)
    ├── NotFound (404)
    ├── AlreadyMember (409)
    ├── LastAdmin (409)
    ├── Conflict (409)
    ├── InvalidTransition (409)
    └── AuditWriteFailed (500, never surfaced past the audit log)
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes for API responses."""

    INTERNAL_ERROR = "INTERNAL_ERROR"

    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FIELD_NOT_MUTABLE = "FIELD_NOT_MUTABLE"

    # 403
    NOT_PERMITTED = "NOT_PERMITTED"
    PROTECTED_ROLE = "PROTECTED_ROLE"

    # 404
    NOT_FOUND = "NOT_FOUND"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    MEMBERSHIP_NOT_FOUND = "MEMBERSHIP_NOT_FOUND"

    # 409
    ALREADY_MEMBER = "ALREADY_MEMBER"
    LAST_ADMIN = "LAST_ADMIN"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # 500
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"


class AccessCoreError(Exception):
    """
    Base exception for all authorization/audit core failures.

    Attributes:
        message: Human-readable message, safe to show to the caller.
        error_code: Machine-readable error code.
        status_code: HTTP status code used by the API layer.
        details: Additional context (must not contain sensitive data).
        internal_message: Detailed message for logging only.
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to an API response body."""
        response = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            response["details"] = self.details
        return response

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code.value!r}, "
            f"status_code={self.status_code})"
        )


class ValidationError(AccessCoreError):
    """Raised when input is malformed or names a field that cannot be changed."""

    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request data"

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            internal_message=internal_message,
        )


class Unauthorized(AccessCoreError):
    """
    Raised when the actor lacks the permission an operation requires.

    The public message never says why, so a caller outside the tenant cannot
    learn whether the target exists. The reason goes to internal_message.
    """

    status_code = 403
    default_error_code = ErrorCode.NOT_PERMITTED
    default_message = "Not permitted"

    def __init__(
        self,
        required_permission: Optional[str] = None,
        internal_message: Optional[str] = None,
    ):
        self.required_permission = required_permission
        super().__init__(
            internal_message=internal_message
            or (f"missing {required_permission}" if required_permission else None),
        )


class ProtectedRole(AccessCoreError):
    """Raised when an actor targets a member of equal or higher privilege rank."""

    status_code = 403
    default_error_code = ErrorCode.PROTECTED_ROLE
    default_message = "This member's role is protected from this change"

    def __init__(
        self,
        message: Optional[str] = None,
        target_role: Optional[str] = None,
        internal_message: Optional[str] = None,
    ):
        details = {"target_role": target_role} if target_role else None
        super().__init__(
            message=message,
            details=details,
            internal_message=internal_message,
        )


class NotFound(AccessCoreError):
    """Raised when a tenant, user or membership does not exist."""

    status_code = 404
    default_error_code = ErrorCode.NOT_FOUND
    default_message = "Resource not found"

    def __init__(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        message: Optional[str] = None,
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id[:36]
        super().__init__(
            message=message or (
                f"{resource_type.capitalize()} not found" if resource_type else None
            ),
            error_code=error_code,
            details=details,
        )


class AlreadyMember(AccessCoreError):
    """Raised when inviting a user who is already an active member."""

    status_code = 409
    default_error_code = ErrorCode.ALREADY_MEMBER
    default_message = "User is already a member of this company"


class LastAdmin(AccessCoreError):
    """Raised when a change would leave a tenant without an active company admin."""

    status_code = 409
    default_error_code = ErrorCode.LAST_ADMIN
    default_message = "A company must keep at least one active admin"


class Conflict(AccessCoreError):
    """Raised when a concurrent mutation won the optimistic-concurrency race."""

    status_code = 409
    default_error_code = ErrorCode.CONCURRENT_MODIFICATION
    default_message = "The record was modified concurrently, please retry"

    def __init__(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        internal_message: Optional[str] = None,
    ):
        details = {"resource_type": resource_type} if resource_type else None
        super().__init__(
            details=details,
            internal_message=internal_message
            or (f"{resource_type} {resource_id} version mismatch" if resource_type else None),
        )


class InvalidTransition(AccessCoreError):
    """Raised when a membership status change is not allowed by the state machine."""

    status_code = 409
    default_error_code = ErrorCode.INVALID_TRANSITION
    default_message = "Membership status change not allowed"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            message=f"Cannot change membership from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class AuditWriteFailed(AccessCoreError):
    """
    Raised by audit stores when the durable write fails.

    AuditLog.append catches it; it never reaches the caller of a business
    operation.
    """

    status_code = 500
    default_error_code = ErrorCode.AUDIT_WRITE_FAILED
    default_message = "Audit log write failed"

    def __init__(
        self,
        entry_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.entry_id = entry_id
        self.original_error = original_error
        super().__init__(
            internal_message=str(original_error) if original_error else None,
        )


def get_safe_error_message(exc: Exception) -> str:
    """Return a message that is safe to show to the caller."""
    if isinstance(exc, AccessCoreError):
        return exc.message
    return "An unexpected error occurred. Please try again later."
