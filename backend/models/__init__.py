"""
Database Models Package

Tenancy, membership, subscription, metering and catalog models.
"""

from .base import Base, utcnow
from .enums import BillingInterval, RoleContext, SubscriptionStatus, UsageType
from .tenant import Tenant
from .user import User
from .membership import Role, TenantMembership, OWNER_ROLE
from .subscription import TenantSubscription
from .usage import UsageRecord, SeatSnapshot
from .checkout_session import CheckoutSession
from .module import Module
from .app_setting import AppSetting

__all__ = [
    "Base",
    "utcnow",
    "BillingInterval",
    "RoleContext",
    "SubscriptionStatus",
    "UsageType",
    "Tenant",
    "User",
    "Role",
    "TenantMembership",
    "OWNER_ROLE",
    "TenantSubscription",
    "UsageRecord",
    "SeatSnapshot",
    "CheckoutSession",
    "Module",
    "AppSetting",
]
