"""
Tenancy and membership exceptions.

Every tenancy failure is fail-closed: callers see a 404/403-equivalent and
never a partially scoped result.
"""

from typing import Optional


class TenancyException(Exception):
    """Base exception for tenant resolution and isolation"""

    status_code = 400

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "TENANCY_ERROR"
        self.details = details or {}


class TenantNotFound(TenancyException):
    """Raised when no tenant matches the request's slug or id"""

    status_code = 404

    def __init__(self, identifier: str, strategy: str, **kwargs):
        super().__init__(f"Tenant not found: {identifier}", code="TENANT_NOT_FOUND", **kwargs)
        self.identifier = identifier
        self.strategy = strategy


class TenantInactive(TenancyException):
    """Raised when the matched tenant is not active"""

    status_code = 403

    def __init__(self, identifier: str, strategy: str, **kwargs):
        super().__init__(f"Tenant is inactive: {identifier}", code="TENANT_INACTIVE", **kwargs)
        self.identifier = identifier
        self.strategy = strategy


class InvalidTenantSignature(TenancyException):
    """Raised when X-Tenant-Signature is missing or does not match"""

    status_code = 403

    def __init__(self, tenant_id: str, **kwargs):
        super().__init__("Invalid tenant signature", code="INVALID_TENANT_SIGNATURE", **kwargs)
        self.tenant_id = tenant_id
        self.strategy = "header"


class NoTenantResolved(TenancyException):
    """Raised when tenant-scoped work is attempted without a resolved tenant"""

    status_code = 403

    def __init__(self, message: str = "No tenant resolved for this request.", **kwargs):
        super().__init__(message, code="NO_TENANT_RESOLVED", **kwargs)


class MembershipIntegrityError(TenancyException):
    """Raised when a membership change would break a tenant invariant"""

    status_code = 409

    def __init__(self, message: str, tenant_id: Optional[str] = None, **kwargs):
        super().__init__(message, code=kwargs.pop("code", "MEMBERSHIP_INTEGRITY"), **kwargs)
        self.tenant_id = tenant_id


class LastOwnerViolation(MembershipIntegrityError):
    """Raised when removing or demoting the only owner of a tenant"""

    def __init__(self, tenant_id: str, **kwargs):
        super().__init__(
            "Cannot remove the last owner of a tenant.",
            tenant_id=tenant_id,
            code="LAST_OWNER_VIOLATION",
            **kwargs
        )


class DuplicateMembership(MembershipIntegrityError):
    """Raised when a user is added to a tenant they already belong to"""

    def __init__(self, tenant_id: str, user_id: str, **kwargs):
        super().__init__(
            f"User {user_id} is already a member of tenant {tenant_id}",
            tenant_id=tenant_id,
            code="DUPLICATE_MEMBERSHIP",
            **kwargs
        )
        self.user_id = user_id
