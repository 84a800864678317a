"""
Tenancy Context

Request-scoped holder of the resolved tenant. One instance is created per
request (or per job) and cleared when that unit of work ends; it is never
shared process-wide.
"""

from typing import Optional

from models.tenant import Tenant

from .config import get_app_config
from .exceptions import NoTenantResolved


class TenancyContext:
    """Holds zero or one resolved tenant for the current unit of work."""

    __slots__ = ("_tenant",)

    def __init__(self, tenant: Optional[Tenant] = None):
        self._tenant = tenant

    def set(self, tenant: Tenant) -> None:
        """Set the resolved tenant for the current unit of work."""
        self._tenant = tenant

    def get(self) -> Optional[Tenant]:
        """Get the resolved tenant, or None if none is set."""
        return self._tenant

    def current(self) -> Tenant:
        """
        Get the resolved tenant.

        Raises:
            NoTenantResolved: If no tenant has been set
        """
        if self._tenant is None:
            raise NoTenantResolved()
        return self._tenant

    def has_tenant(self) -> bool:
        return self._tenant is not None

    @property
    def tenant_id(self) -> Optional[str]:
        return self._tenant.id if self._tenant is not None else None

    def clear(self) -> None:
        """Forget the resolved tenant. Must run at the end of every unit of work."""
        self._tenant = None

    def __repr__(self) -> str:
        return f"<TenancyContext(tenant_id={self.tenant_id})>"


def tenant_url(tenant: Tenant, path: str = "/") -> str:
    """Absolute URL on the tenant's subdomain."""
    config = get_app_config()
    host = config.base_domain or "localhost"
    port = f":{config.url_port}" if config.url_port else ""
    return f"{config.url_scheme}://{tenant.slug}.{host}{port}{path}"
