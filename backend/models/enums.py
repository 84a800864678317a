"""
Enumerations shared by the tenancy and billing models.
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Local subscription status"""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    READ_ONLY = "read_only"
    LOCKED = "locked"


class BillingInterval(str, Enum):
    """Billing interval chosen at checkout"""
    MONTHLY = "monthly"
    ANNUAL = "annual"

    @property
    def stripe_interval(self) -> str:
        return "year" if self is BillingInterval.ANNUAL else "month"


class UsageType(str, Enum):
    """Metered consumption categories"""
    API_CALLS = "api_calls"
    REPORTS = "reports"
    EXPORTS = "exports"
    STORAGE_MB = "storage_mb"


class RoleContext(str, Enum):
    """Where a role applies"""
    TENANT = "tenant"
    ADMINISTRATION = "administration"
