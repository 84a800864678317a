"""
Middleware package.

Tenant resolution and subscription gating for the HTTP surface.
"""

from .tenant_resolver import (
    TenantResolver,
    TenantMiddleware,
    extract_subdomain,
    sign_tenant_id,
    get_tenancy,
    require_tenant,
)
from .subscription_status import SubscriptionStatusMiddleware

__all__ = [
    "TenantResolver",
    "TenantMiddleware",
    "extract_subdomain",
    "sign_tenant_id",
    "get_tenancy",
    "require_tenant",
    "SubscriptionStatusMiddleware",
]
