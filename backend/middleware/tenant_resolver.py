"""
Tenant Resolver Middleware

Resolves the tenant of each request and exposes it through a request-scoped
TenancyContext.

Resolution order:
1. Subdomain of the configured base domain (primary, user-facing)
2. X-Tenant-ID header, authenticated by an HMAC-SHA256 X-Tenant-Signature
3. Neither: the request proceeds without a tenant (root/public traffic)

A subdomain signal always wins over the header. Every failure is fail-closed.
"""

import hashlib
import hmac
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
import structlog
from sqlalchemy import select

from core.config import get_app_config
from core.exceptions import (
    InvalidTenantSignature,
    NoTenantResolved,
    TenancyException,
    TenantInactive,
    TenantNotFound,
)
from core.tenancy import TenancyContext
from models.tenant import Tenant

logger = structlog.get_logger(__name__)


TENANT_ID_HEADER = "X-Tenant-ID"
TENANT_SIGNATURE_HEADER = "X-Tenant-Signature"
RESERVED_SUBDOMAINS = {"www"}


def sign_tenant_id(tenant_id: str, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw tenant id, as expected in X-Tenant-Signature."""
    return hmac.new(secret.encode(), tenant_id.encode(), hashlib.sha256).hexdigest()


def extract_subdomain(host: str, base_domain: Optional[str]) -> Optional[str]:
    """
    Subdomain label of host under base_domain.

    Returns None for the bare base domain, the reserved "www" label, and
    hosts outside the base domain.
    """
    if not host or not base_domain:
        return None

    host = host.split(":")[0].lower().rstrip(".")
    base_domain = base_domain.lower()
    if host == base_domain:
        return None

    suffix = f".{base_domain}"
    if not host.endswith(suffix):
        return None

    label = host[: -len(suffix)]
    if not label or label in RESERVED_SUBDOMAINS:
        return None
    return label


class TenantResolver:
    """
    Resolves tenants from HTTP requests.

    Args:
        db_session_factory: Async session factory used for tenant lookups
        app_key: HMAC secret for signed headers (defaults to APP_KEY)
        base_domain: Domain tenant subdomains hang off (defaults to APP_URL's host)
    """

    def __init__(self, db_session_factory, app_key: str = None, base_domain: str = None):
        config = get_app_config()
        self.db_session_factory = db_session_factory
        self.app_key = config.app_key if app_key is None else app_key
        self.base_domain = config.base_domain if base_domain is None else base_domain

    async def resolve(self, request: Request, context: TenancyContext) -> Optional[Tenant]:
        """
        Resolve the request's tenant into context.

        Returns:
            The resolved tenant, or None for tenant-less requests

        Raises:
            TenantNotFound: No tenant for the slug or id
            TenantInactive: Tenant exists but is inactive
            InvalidTenantSignature: Header signature missing or wrong
        """
        subdomain = extract_subdomain(request.headers.get("host", ""), self.base_domain)
        if subdomain is not None:
            tenant = await self._resolve_by_subdomain(subdomain)
        elif request.headers.get(TENANT_ID_HEADER):
            tenant = await self._resolve_by_header(
                request.headers[TENANT_ID_HEADER],
                request.headers.get(TENANT_SIGNATURE_HEADER, ""),
            )
        else:
            return None

        context.set(tenant)
        return tenant

    def verify_signature(self, tenant_id: str, signature: str) -> bool:
        if not self.app_key or not signature:
            return False
        expected = sign_tenant_id(tenant_id, self.app_key)
        return hmac.compare_digest(expected, signature)

    async def _resolve_by_subdomain(self, subdomain: str) -> Tenant:
        tenant = await self._load(Tenant.slug == subdomain)

        if tenant is None:
            logger.warning("Tenant resolution failed", strategy="subdomain", slug=subdomain)
            raise TenantNotFound(subdomain, strategy="subdomain")

        if not tenant.is_active:
            logger.warning("Tenant resolution failed: tenant inactive",
                           strategy="subdomain", slug=subdomain, tenant_id=tenant.id)
            raise TenantInactive(subdomain, strategy="subdomain")

        logger.debug("Tenant resolved", strategy="subdomain", slug=subdomain, tenant_id=tenant.id)
        return tenant

    async def _resolve_by_header(self, tenant_id: str, signature: str) -> Tenant:
        if not self.verify_signature(tenant_id, signature):
            logger.warning("Tenant resolution failed: invalid signature", strategy="header", tenant_id=tenant_id)
            raise InvalidTenantSignature(tenant_id)

        tenant = await self._load(Tenant.id == tenant_id)

        if tenant is None:
            logger.warning("Tenant resolution failed", strategy="header", tenant_id=tenant_id)
            raise TenantNotFound(tenant_id, strategy="header")

        if not tenant.is_active:
            logger.warning("Tenant resolution failed: tenant inactive", strategy="header", tenant_id=tenant_id)
            raise TenantInactive(tenant_id, strategy="header")

        logger.debug("Tenant resolved", strategy="header", slug=tenant.slug, tenant_id=tenant.id)
        return tenant

    async def _load(self, criterion) -> Optional[Tenant]:
        async with self.db_session_factory() as session:
            result = await session.execute(select(Tenant).where(criterion))
            return result.scalar_one_or_none()


def tenancy_error_response(exc: TenancyException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
        },
    )


class TenantMiddleware:
    """
    FastAPI middleware for tenant resolution and context injection.

    Each request gets its own TenancyContext on request.state.tenancy; it is
    cleared when the request finishes, whatever the outcome.
    """

    def __init__(self, tenant_resolver: TenantResolver):
        self.tenant_resolver = tenant_resolver

    async def __call__(self, request: Request, call_next):
        """Process request with tenant resolution."""
        context = TenancyContext()
        request.state.tenancy = context

        try:
            if not self._should_skip_tenant_resolution(request.url.path):
                try:
                    await self.tenant_resolver.resolve(request, context)
                except TenancyException as e:
                    return tenancy_error_response(e)

            response = await call_next(request)
            if context.has_tenant():
                response.headers["X-Tenant-ID"] = context.tenant_id
            return response
        finally:
            context.clear()

    def _should_skip_tenant_resolution(self, path: str) -> bool:
        """Check if path should skip tenant resolution."""
        skip_paths = [
            '/health',
            '/favicon.ico',
            '/robots.txt',
            '/api/docs',
            '/api/redoc',
            '/api/openapi.json',
            '/api/v1/billing/webhooks',
        ]

        return any(path.startswith(skip_path) for skip_path in skip_paths)


# Dependencies for FastAPI dependency injection
def get_tenancy(request: Request) -> TenancyContext:
    """Request-scoped tenancy context (empty if the middleware did not run)."""
    context = getattr(request.state, "tenancy", None)
    if context is None:
        context = TenancyContext()
        request.state.tenancy = context
    return context


def require_tenant(request: Request) -> Tenant:
    """Resolved tenant of the request, or NoTenantResolved."""
    context = get_tenancy(request)
    if not context.has_tenant():
        raise NoTenantResolved()
    return context.current()
