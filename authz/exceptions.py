"""
Custom Exception Classes for the authorization engine

Every error raised by the engine derives from AuthzError so the HTTP layer
can render a consistent error envelope, and so callers can tell an
"indeterminate" authorization (store trouble) apart from a plain deny.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in the error envelope."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    STATE_CONFLICT = "STATE_CONFLICT"
    OVERRIDE_ALREADY_ACTIVE = "OVERRIDE_ALREADY_ACTIVE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    STORE_TIMEOUT = "STORE_TIMEOUT"
    AUTHORIZATION_INDETERMINATE = "AUTHORIZATION_INDETERMINATE"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AuthzError(Exception):
    """Base exception class for all authorization-engine exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Validation
# ============================================================================


class ValidationError(AuthzError):
    """Raised when a request is malformed; never cached, never reaches the store."""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=error_details,
        )


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class ResourceNotFoundError(AuthzError):
    """Base class for resource not found errors"""

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code=ErrorCode.RESOURCE_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class RoleNotFoundError(ResourceNotFoundError):
    def __init__(self, role_id: Any | None = None):
        super().__init__(resource_type="Role", resource_id=role_id)


class AssignmentNotFoundError(ResourceNotFoundError):
    def __init__(self, assignment_id: Any | None = None):
        super().__init__(resource_type="RoleAssignment", resource_id=assignment_id)


class DelegationNotFoundError(ResourceNotFoundError):
    def __init__(self, delegation_id: Any | None = None):
        super().__init__(resource_type="Delegation", resource_id=delegation_id)


class OverrideNotFoundError(ResourceNotFoundError):
    def __init__(self, override_id: Any | None = None):
        super().__init__(resource_type="EmergencyOverride", resource_id=override_id)


class PermissionSetNotFoundError(ResourceNotFoundError):
    def __init__(self, permission_set_id: Any | None = None):
        super().__init__(resource_type="PermissionSet", resource_id=permission_set_id)


# ============================================================================
# State conflicts
# ============================================================================


class StateConflictError(AuthzError):
    """Raised when a write targets a record that is no longer in a state that allows it."""

    def __init__(self, resource_type: str, resource_id: Any, current_state: str, target_state: str):
        super().__init__(
            message=f"Cannot transition {resource_type} '{resource_id}' from '{current_state}' to '{target_state}'",
            status_code=status.HTTP_409_CONFLICT,
            error_code=ErrorCode.STATE_CONFLICT,
            details={
                "resource_type": resource_type,
                "resource_id": str(resource_id),
                "current_state": current_state,
                "target_state": target_state,
            },
        )


class OverrideAlreadyActiveError(AuthzError):
    """Raised when a second emergency override is activated for the same user."""

    def __init__(self, user_id: Any, active_override_id: Any):
        super().__init__(
            message=f"User '{user_id}' already has an active emergency override",
            status_code=status.HTTP_409_CONFLICT,
            error_code=ErrorCode.OVERRIDE_ALREADY_ACTIVE,
            details={"user_id": str(user_id), "active_override_id": str(active_override_id)},
        )


# ============================================================================
# Authorization outcomes
# ============================================================================


class PermissionDeniedError(AuthzError):
    """Raised when an actor lacks permission for an action"""

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        required_permission: str | None = None,
        reason: str | None = None,
    ):
        details = {}
        if required_permission:
            details["required_permission"] = required_permission
        if reason:
            details["reason"] = reason
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=ErrorCode.AUTH_PERMISSION_DENIED,
            details=details,
        )


class AuthorizationIndeterminateError(AuthzError):
    """The decision could not be computed; neither an allow nor a deny."""

    def __init__(self, message: str = "Authorization check could not be completed", details: dict | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code=ErrorCode.AUTHORIZATION_INDETERMINATE,
            details=details,
        )


# ============================================================================
# Infrastructure
# ============================================================================


class StoreError(AuthzError):
    """Raised when the backing store cannot answer"""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORE_UNAVAILABLE, operation: str | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code=error_code,
            details={"operation": operation} if operation else {},
        )


class StoreUnavailableError(StoreError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Store operation '{operation}' failed: {reason}", operation=operation)


class StoreTimeoutError(StoreError):
    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"Store operation '{operation}' timed out after {timeout}s",
            error_code=ErrorCode.STORE_TIMEOUT,
            operation=operation,
        )


class AuditWriteError(AuthzError):
    """Raised when a required audit record could not be persisted"""

    def __init__(self, event_type: str, reason: str):
        super().__init__(
            message=f"Failed to write audit event '{event_type}': {reason}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code=ErrorCode.AUDIT_WRITE_FAILED,
            details={"event_type": event_type},
        )
