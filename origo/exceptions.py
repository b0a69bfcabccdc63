"""
Custom Exception Classes for the Origo tenancy core

Every failure the core can report carries a machine-readable error code, an
HTTP status for the routing layer and a ``details`` dict with the structured
data a caller needs to build a precise message (counts, limits, owners).
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes, stable across releases."""

    # Generic
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Authentication / authorization
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"

    # Tenancy
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_ACCESS_DENIED = "TENANT_ACCESS_DENIED"

    # Plans and quotas
    PLAN_LIMIT_REACHED = "PLAN_LIMIT_REACHED"
    PLAN_FEATURE_UNAVAILABLE = "PLAN_FEATURE_UNAVAILABLE"

    # Roles
    ROLE_NAME_CONFLICT = "ROLE_NAME_CONFLICT"
    ROLE_IN_USE = "ROLE_IN_USE"

    # Custom domains
    DOMAIN_INVALID_FORMAT = "DOMAIN_INVALID_FORMAT"
    DOMAIN_ALREADY_BOUND = "DOMAIN_ALREADY_BOUND"
    DOMAIN_VERIFICATION_FAILED = "DOMAIN_VERIFICATION_FAILED"
    DOMAIN_NOT_CONFIGURED = "DOMAIN_NOT_CONFIGURED"
    DNS_LOOKUP_TIMEOUT = "DNS_LOOKUP_TIMEOUT"


class OrigoError(Exception):
    """Base exception class for all tenancy-core errors"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(OrigoError):
    """Raised when the credential verifier cannot produce a subject"""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, error_code=ErrorCode.AUTH_FAILED)


class PermissionDeniedError(OrigoError):
    """Raised when the subject may not perform ``action`` on ``resource``"""

    def __init__(self, resource: str, action: str, message: str | None = None):
        self.resource = resource
        self.action = action
        super().__init__(
            message=message or f"You do not have permission to {action} {resource}",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=ErrorCode.AUTH_PERMISSION_DENIED,
            details={"resource": resource, "action": action},
        )


# ============================================================================
# Tenancy Exceptions
# ============================================================================


class TenantNotFoundError(OrigoError):
    """Raised when no tenant could be resolved for the request"""

    def __init__(self, message: str = "No tenant could be resolved for this request", tenant_id: Any | None = None):
        details = {"tenant_id": tenant_id} if tenant_id is not None else {}
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code=ErrorCode.TENANT_NOT_FOUND,
            details=details,
        )


class TenantAccessDeniedError(OrigoError):
    """Raised when an explicitly requested tenant is not one the subject belongs to"""

    def __init__(self, tenant_id: Any, subject_id: Any | None = None):
        super().__init__(
            message="You are not a member of the requested organization",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=ErrorCode.TENANT_ACCESS_DENIED,
            details={"tenant_id": tenant_id, "subject_id": subject_id},
        )


# ============================================================================
# Resource & Validation Exceptions
# ============================================================================


class ResourceNotFoundError(OrigoError):
    """Raised when a looked-up record does not exist"""

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code=ErrorCode.RESOURCE_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class ValidationError(OrigoError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.VALIDATION_FAILED,
            details=error_details,
        )


# ============================================================================
# Plan & Quota Exceptions
# ============================================================================


class PlanLimitExceededError(OrigoError):
    """Raised when creating one more resource would exceed the plan limit"""

    def __init__(self, resource_type: str, current: float, limit: float):
        self.resource_type = resource_type
        self.current = current
        self.limit = limit
        super().__init__(
            message=f"Plan limit reached for {resource_type} ({current} of {limit})",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=ErrorCode.PLAN_LIMIT_REACHED,
            details={"resource_type": resource_type, "current": current, "limit": limit},
        )


class PlanFeatureUnavailableError(OrigoError):
    """Raised when the tenant's plan does not include a feature"""

    def __init__(self, feature: str, plan: str):
        super().__init__(
            message=f"The '{plan}' plan does not include {feature.replace('_', ' ')}",
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=ErrorCode.PLAN_FEATURE_UNAVAILABLE,
            details={"feature": feature, "plan": plan},
        )


# ============================================================================
# Role Exceptions
# ============================================================================


class RoleNameConflictError(OrigoError):
    """Raised when a custom role name is already taken inside the tenant"""

    def __init__(self, name: str, tenant_id: int):
        super().__init__(
            message=f"A role named '{name}' already exists in this organization",
            status_code=status.HTTP_409_CONFLICT,
            error_code=ErrorCode.ROLE_NAME_CONFLICT,
            details={"name": name, "tenant_id": tenant_id},
        )


class RoleInUseError(OrigoError):
    """Raised when deleting a custom role that members still reference"""

    def __init__(self, role_id: int, count: int):
        self.count = count
        noun = "member" if count == 1 else "members"
        super().__init__(
            message=f"Role is still assigned to {count} {noun}",
            status_code=status.HTTP_409_CONFLICT,
            error_code=ErrorCode.ROLE_IN_USE,
            details={"role_id": role_id, "count": count},
        )


# ============================================================================
# Custom Domain Exceptions
# ============================================================================


class InvalidDomainFormatError(OrigoError):
    """Raised when a domain name fails syntax validation"""

    def __init__(self, domain: str, reason: str):
        super().__init__(
            message=f"'{domain}' is not a valid domain name: {reason}",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.DOMAIN_INVALID_FORMAT,
            details={"domain": domain, "reason": reason},
        )


class DomainAlreadyBoundError(OrigoError):
    """Raised when a domain is verified under another tenant"""

    def __init__(self, domain: str, owner_slug: str | None = None):
        details: dict[str, Any] = {"domain": domain}
        if owner_slug is not None:
            details["owner"] = owner_slug
        super().__init__(
            message=f"The domain '{domain}' is already in use by another organization",
            status_code=status.HTTP_409_CONFLICT,
            error_code=ErrorCode.DOMAIN_ALREADY_BOUND,
            details=details,
        )


class DomainNotConfiguredError(OrigoError):
    """Raised when verifying a tenant that has no custom domain"""

    def __init__(self, tenant_id: int):
        super().__init__(
            message="No custom domain is configured for this organization",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.DOMAIN_NOT_CONFIGURED,
            details={"tenant_id": tenant_id},
        )


class DomainVerificationFailedError(OrigoError):
    """Raised by callers that need verification to have succeeded. Retryable."""

    retryable = True

    def __init__(self, domain: str, remediation: dict[str, Any], reason: str = "record_not_found"):
        self.remediation = remediation
        super().__init__(
            message=f"Ownership of '{domain}' could not be verified yet",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=ErrorCode.DOMAIN_VERIFICATION_FAILED,
            details={"domain": domain, "reason": reason, "retryable": True, "remediation": remediation},
        )


class DnsLookupTimeoutError(OrigoError):
    """Raised when a DNS query exceeds its hard timeout. Retryable."""

    retryable = True

    def __init__(self, name: str, timeout: float):
        super().__init__(
            message=f"DNS lookup for '{name}' timed out after {timeout:g}s",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_code=ErrorCode.DNS_LOOKUP_TIMEOUT,
            details={"name": name, "timeout": timeout, "retryable": True},
        )
