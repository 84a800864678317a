"""ARQ worker entrypoint and billing jobs."""

import logging

from arq import Retry, cron
from sqlalchemy import select

from billing.exceptions import ExternalBillingUnavailable
from billing.product_sync import StripeProductSync
from billing.stripe_client import StripeClient
from billing.subscription_lifecycle import SubscriptionStateMachine
from billing.usage_reporter import StripeUsageReporter
from core.tenancy import TenancyContext
from models.module import Module
from models.tenant import Tenant

from .dispatch import redis_settings

logger = logging.getLogger(__name__)


def _retry_delay(ctx: dict) -> int:
    """Back off 10s, 20s, 40s... between attempts."""
    return 10 * 2 ** (ctx.get("job_try", 1) - 1)


async def _with_tenant(ctx: dict, tenant_id: str, work):
    """Run work(session, context) with the tenant resolved into a fresh, job-scoped tenancy context."""
    context = TenancyContext()
    try:
        async with ctx["session_factory"]() as session:
            tenant = await session.get(Tenant, tenant_id)
            if tenant is None:
                logger.info(f"Tenant {tenant_id} no longer exists; skipping job")
                return None
            context.set(tenant)
            return await work(session, context)
    finally:
        context.clear()


async def report_usage(ctx: dict, tenant_id: str):
    """Report the tenant's current-period usage to Stripe."""
    async def work(session, context):
        reporter = StripeUsageReporter(session, ctx["stripe_client"])
        return await reporter.report_usage(context.tenant_id)

    try:
        return await _with_tenant(ctx, tenant_id, work)
    except ExternalBillingUnavailable as e:
        logger.warning(f"Usage report for tenant {tenant_id} failed, retrying: {e.message}")
        raise Retry(defer=_retry_delay(ctx))


async def report_seats(ctx: dict, tenant_id: str):
    """Report the tenant's peak seat count to Stripe."""
    async def work(session, context):
        reporter = StripeUsageReporter(session, ctx["stripe_client"])
        return await reporter.report_seats(context.tenant_id)

    try:
        return await _with_tenant(ctx, tenant_id, work)
    except ExternalBillingUnavailable as e:
        logger.warning(f"Seat report for tenant {tenant_id} failed, retrying: {e.message}")
        raise Retry(defer=_retry_delay(ctx))


async def sync_module(ctx: dict, module_id: str) -> dict:
    """Sync one catalog module to Stripe."""
    async with ctx["session_factory"]() as session:
        module = (await session.execute(select(Module).where(Module.id == module_id))).scalar_one_or_none()
        if module is None:
            logger.info(f"Module {module_id} no longer exists; nothing to sync")
            return {"status": "missing"}

        try:
            await StripeProductSync(session, ctx["stripe_client"]).sync(module)
        except ExternalBillingUnavailable as e:
            logger.warning(f"Stripe sync of module {module.slug} failed, retrying: {e.message}")
            raise Retry(defer=_retry_delay(ctx))

    return {"status": "synced", "module": module_id}


async def sync_catalog(ctx: dict) -> dict:
    """Sync seat, usage and module products to Stripe."""
    async with ctx["session_factory"]() as session:
        try:
            return await StripeProductSync(session, ctx["stripe_client"]).sync_all()
        except ExternalBillingUnavailable as e:
            logger.warning(f"Catalog sync failed, retrying: {e.message}")
            raise Retry(defer=_retry_delay(ctx))


async def lock_expired_subscriptions(ctx: dict) -> dict:
    """Daily sweep: read-only subscriptions past their grace period become locked."""
    async with ctx["session_factory"]() as session:
        count = await SubscriptionStateMachine(session, config=ctx["stripe_client"].config).lock_expired_read_only()
    return {"locked": count}


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from database import SessionLocal
    ctx["session_factory"] = SessionLocal
    ctx["stripe_client"] = StripeClient()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    from database import engine
    await engine.dispose()


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [report_usage, report_seats, sync_module, sync_catalog, lock_expired_subscriptions]
    cron_jobs = [
        cron(lock_expired_subscriptions, hour={0}, minute={15}),
        cron(sync_catalog, hour={3}, minute={0}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings()
    max_jobs = 10
    max_tries = 5
    job_timeout = 300


if __name__ == "__main__":
    from arq import run_worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]
