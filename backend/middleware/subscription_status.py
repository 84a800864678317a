"""
Subscription Status Middleware

Gates requests of the resolved tenant on its subscription status: locked
tenants are refused outright, read-only tenants are flagged on
request.state.subscription_read_only for downstream write enforcement.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
import structlog
from sqlalchemy import select

from models.subscription import TenantSubscription

logger = structlog.get_logger(__name__)


class SubscriptionStatusMiddleware:
    """Runs inside TenantMiddleware, after the tenant has been resolved."""

    def __init__(self, db_session_factory):
        self.db_session_factory = db_session_factory

    async def __call__(self, request: Request, call_next):
        request.state.subscription_read_only = False

        context = getattr(request.state, "tenancy", None)
        if context is None or not context.has_tenant():
            return await call_next(request)

        subscription = await self._subscription(context.tenant_id)
        if subscription is None:
            return await call_next(request)

        if subscription.is_locked:
            logger.info("Request refused for locked subscription", tenant_id=context.tenant_id)
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={
                    "error": "SUBSCRIPTION_LOCKED",
                    "message": "Your subscription has been locked. Please contact support.",
                },
            )

        if subscription.is_read_only:
            request.state.subscription_read_only = True

        return await call_next(request)

    async def _subscription(self, tenant_id: str):
        async with self.db_session_factory() as session:
            result = await session.execute(
                select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()
