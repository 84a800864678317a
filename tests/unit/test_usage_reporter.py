"""
Unit tests for Stripe usage reporting and the billing worker jobs
"""

from datetime import timedelta

import pytest
from arq import Retry
from sqlalchemy import select

from billing.usage_reporter import StripeUsageReporter
from billing.seat_tracker import SeatTracker
from billing.usage_tracker import UsageTracker
from models import SubscriptionStatus, TenantSubscription, UsageRecord, UsageType
from workers import main as worker

from conftest import NOW, fixed_clock


@pytest.fixture
async def billed_tenant(session, factory, stripe_fake):
    tenant = await factory.tenant("acme", stripe_customer_id="cus_acme")
    await factory.member(tenant, "owner")
    await factory.member(tenant)
    await factory.subscription(
        tenant,
        stripe_subscription_id="sub_1",
        seat_stripe_price_id="price_seat",
        usage_stripe_price_id="price_usage",
        current_period_end=NOW + timedelta(days=10),
    )
    session.add(UsageRecord(tenant_id=tenant.id, type=UsageType.API_CALLS, quantity=42, recorded_at=NOW))
    await session.commit()
    stripe_fake.add_subscription("sub_1", ["price_seat", "price_usage"])
    return tenant


@pytest.fixture
def reporter(session, stripe_fake):
    return StripeUsageReporter(
        session, stripe_fake,
        seat_tracker=SeatTracker(session, clock=fixed_clock),
        usage_tracker=UsageTracker(session, clock=fixed_clock),
    )


class TestStripeUsageReporter:
    """Absolute-quantity reports to subscription items"""

    @pytest.mark.asyncio
    async def test_reports_peak_seats(self, reporter, stripe_fake, billed_tenant):
        assert await reporter.report_seats(billed_tenant.id) == 2
        assert stripe_fake.usage_reports == [("si_price_seat", 2)]

    @pytest.mark.asyncio
    async def test_reports_period_usage(self, reporter, stripe_fake, billed_tenant):
        assert await reporter.report_usage(billed_tenant.id) == 42
        assert stripe_fake.meter_events == [("platform_usage_overage", "cus_acme", 42)]
        assert stripe_fake.usage_reports == []

    @pytest.mark.asyncio
    async def test_repeated_report_sends_same_total(self, reporter, stripe_fake, billed_tenant):
        await reporter.report_usage(billed_tenant.id)
        await reporter.report_usage(billed_tenant.id)

        assert [quantity for _, _, quantity in stripe_fake.meter_events] == [42, 42]

    @pytest.mark.asyncio
    async def test_inactive_subscription_is_not_reported(self, session, reporter, stripe_fake, billed_tenant):
        subscription = await session.scalar(
            select(TenantSubscription).where(TenantSubscription.tenant_id == billed_tenant.id)
        )
        subscription.status = SubscriptionStatus.READ_ONLY
        await session.commit()

        assert await reporter.report_usage(billed_tenant.id) is None
        assert stripe_fake.usage_reports == []

    @pytest.mark.asyncio
    async def test_usage_without_stripe_customer_is_skipped(self, session, reporter, stripe_fake, billed_tenant):
        billed_tenant.stripe_customer_id = None
        await session.commit()

        assert await reporter.report_usage(billed_tenant.id) is None
        assert stripe_fake.meter_events == []

    @pytest.mark.asyncio
    async def test_missing_line_item_is_skipped(self, reporter, stripe_fake, billed_tenant):
        stripe_fake.add_subscription("sub_1", ["price_other"])

        assert await reporter.report_seats(billed_tenant.id) is None
        assert stripe_fake.usage_reports == []

    @pytest.mark.asyncio
    async def test_tenant_without_subscription_is_skipped(self, reporter, factory):
        tenant = await factory.tenant()

        assert await reporter.report_usage(tenant.id) is None

    @pytest.mark.asyncio
    async def test_unconfigured_billing_reports_nothing(self, session, unconfigured_stripe, billed_tenant):
        reporter = StripeUsageReporter(session, unconfigured_stripe)

        assert await reporter.report_seats(billed_tenant.id) is None
        assert unconfigured_stripe.usage_reports == []


@pytest.fixture
def ctx(session_factory, stripe_fake):
    return {"session_factory": session_factory, "stripe_client": stripe_fake, "job_try": 1}


class TestWorkerJobs:
    """ARQ job functions"""

    @pytest.mark.asyncio
    async def test_report_usage_job(self, ctx, stripe_fake, billed_tenant):
        assert await worker.report_usage(ctx, billed_tenant.id) == 42
        assert stripe_fake.meter_events == [("platform_usage_overage", "cus_acme", 42)]

    @pytest.mark.asyncio
    async def test_report_seats_job(self, ctx, stripe_fake, billed_tenant):
        assert await worker.report_seats(ctx, billed_tenant.id) == 2

    @pytest.mark.asyncio
    async def test_stripe_outage_becomes_retry(self, ctx, stripe_fake, billed_tenant):
        stripe_fake.failing.add("report_meter_usage")
        ctx["job_try"] = 3

        with pytest.raises(Retry) as exc_info:
            await worker.report_usage(ctx, billed_tenant.id)

        assert exc_info.value.defer_score == 40_000

    @pytest.mark.asyncio
    async def test_deleted_tenant_is_skipped(self, ctx, stripe_fake, session):
        assert await worker.report_usage(ctx, "missing-tenant") is None
        assert stripe_fake.meter_events == []

    @pytest.mark.asyncio
    async def test_jobs_run_inside_a_tenancy_context(self, ctx, billed_tenant):
        seen = []

        async def work(session, context):
            seen.append(context)
            return context.tenant_id

        assert await worker._with_tenant(ctx, billed_tenant.id, work) == billed_tenant.id
        assert not seen[0].has_tenant()

    @pytest.mark.asyncio
    async def test_sync_module_job(self, ctx, session, factory, stripe_fake):
        module = await factory.module("analytics")
        await session.commit()

        result = await worker.sync_module(ctx, module.id)

        assert result == {"status": "synced", "module": module.id}
        assert "platform_module_analytics" in stripe_fake.products

    @pytest.mark.asyncio
    async def test_sync_module_job_for_missing_module(self, ctx, session):
        assert await worker.sync_module(ctx, "missing") == {"status": "missing"}

    @pytest.mark.asyncio
    async def test_sync_catalog_job(self, ctx, session, stripe_fake):
        assert await worker.sync_catalog(ctx) == {"status": "synced", "modules": 0}
        assert "platform_seat" in stripe_fake.products

    @pytest.mark.asyncio
    async def test_lock_expired_job(self, ctx, session, factory):
        await factory.subscription(
            await factory.tenant(), status=SubscriptionStatus.READ_ONLY,
            read_only_ends_at=NOW - timedelta(days=400),
        )
        await session.commit()

        assert await worker.lock_expired_subscriptions(ctx) == {"locked": 1}

    def test_worker_settings(self):
        names = {function.__name__ for function in worker.WorkerSettings.functions}

        assert names == {"report_usage", "report_seats", "sync_module", "sync_catalog", "lock_expired_subscriptions"}
        assert len(worker.WorkerSettings.cron_jobs) == 2
