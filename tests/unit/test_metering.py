"""
Unit tests for seat and usage metering
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from billing.seat_tracker import SeatTracker
from billing.usage_tracker import UsageTracker
from models import BillingInterval, SeatSnapshot, UsageRecord, UsageType

from conftest import NOW, fixed_clock


class TestSeatTracker:
    """Peak-of-period seat counting"""

    @pytest.mark.asyncio
    async def test_peak_is_highest_snapshot_in_period(self, session, factory):
        tenant = await factory.tenant()
        subscription = await factory.subscription(tenant, current_period_end=NOW + timedelta(days=10))
        members = [await factory.member(tenant, "owner")]
        for _ in range(7):
            members.append(await factory.member(tenant))

        tracker = SeatTracker(session, clock=fixed_clock)
        for membership in members[5:]:
            await session.delete(membership)
            await session.flush()
            await tracker.record(tenant.id)

        assert await tracker.current_seat_count(tenant.id) == 5
        assert await tracker.peak_seat_count(tenant.id, subscription) == 8

    @pytest.mark.asyncio
    async def test_snapshots_before_period_are_ignored(self, session, factory):
        tenant = await factory.tenant()
        subscription = await factory.subscription(tenant, current_period_end=NOW + timedelta(days=10))
        await factory.member(tenant, "owner")
        session.add(SeatSnapshot(tenant_id=tenant.id, seat_count=12, recorded_at=NOW - timedelta(days=45)))
        await session.flush()

        tracker = SeatTracker(session, clock=fixed_clock)

        assert await tracker.peak_seat_count(tenant.id, subscription) == 1

    @pytest.mark.asyncio
    async def test_annual_period_window(self, session, factory):
        tenant = await factory.tenant()
        subscription = await factory.subscription(
            tenant,
            billing_interval=BillingInterval.ANNUAL,
            current_period_end=NOW + timedelta(days=100),
        )
        session.add(SeatSnapshot(tenant_id=tenant.id, seat_count=9, recorded_at=NOW - timedelta(days=200)))
        await session.flush()

        tracker = SeatTracker(session, clock=fixed_clock)

        assert await tracker.peak_seat_count(tenant.id, subscription) == 9

    @pytest.mark.asyncio
    async def test_falls_back_to_live_count_without_period(self, session, factory):
        tenant = await factory.tenant()
        subscription = await factory.subscription(tenant, current_period_end=None)
        await factory.member(tenant, "owner")
        await factory.member(tenant)

        tracker = SeatTracker(session, clock=fixed_clock)

        assert await tracker.peak_seat_count(tenant.id, subscription) == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_live_count_without_snapshots(self, session, factory):
        tenant = await factory.tenant()
        await factory.subscription(tenant)

        tracker = SeatTracker(session, clock=fixed_clock)

        assert await tracker.peak_seat_count(tenant.id) == 0

    @pytest.mark.asyncio
    async def test_snapshots_are_appended(self, session, factory):
        tenant = await factory.tenant()
        await factory.member(tenant, "owner")
        tracker = SeatTracker(session, clock=fixed_clock)

        await tracker.record(tenant.id)
        await tracker.record(tenant.id)

        count = await session.scalar(
            select(func.count()).select_from(SeatSnapshot).where(SeatSnapshot.tenant_id == tenant.id)
        )
        assert count == 3


class TestUsageTracker:
    """Usage ledger and quota checks"""

    @pytest.mark.asyncio
    async def test_remaining_quota(self, session, factory, dispatcher):
        tenant = await factory.tenant()
        subscription = await factory.subscription(tenant, usage_quota=1000)
        await session.commit()
        tracker = UsageTracker(session, dispatcher=dispatcher, clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.API_CALLS, 200)
        await tracker.record(tenant.id, UsageType.REPORTS, 100)

        assert await tracker.current_period_usage(tenant.id) == 300
        assert await tracker.remaining_quota(tenant.id, subscription) == 700
        assert not await tracker.is_over_quota(tenant.id)

    @pytest.mark.asyncio
    async def test_over_quota(self, session, factory):
        tenant = await factory.tenant()
        await factory.subscription(tenant, usage_quota=1000)
        await session.commit()
        tracker = UsageTracker(session, clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.API_CALLS, 1001)

        assert await tracker.remaining_quota(tenant.id) == 0
        assert await tracker.is_over_quota(tenant.id)

    @pytest.mark.asyncio
    async def test_exact_quota_is_not_over(self, session, factory):
        tenant = await factory.tenant()
        await factory.subscription(tenant, usage_quota=50)
        await session.commit()
        tracker = UsageTracker(session, clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.EXPORTS, 50)

        assert await tracker.remaining_quota(tenant.id) == 0
        assert not await tracker.is_over_quota(tenant.id)

    @pytest.mark.asyncio
    async def test_usage_outside_period_is_ignored(self, session, factory):
        tenant = await factory.tenant()
        await factory.subscription(tenant, current_period_end=NOW + timedelta(days=10))
        session.add(UsageRecord(
            tenant_id=tenant.id, type=UsageType.API_CALLS, quantity=500,
            recorded_at=NOW - timedelta(days=40),
        ))
        await session.commit()
        tracker = UsageTracker(session, clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.API_CALLS, 5)

        assert await tracker.current_period_usage(tenant.id) == 5

    @pytest.mark.asyncio
    async def test_record_enqueues_report(self, session, factory, dispatcher):
        tenant = await factory.tenant()
        await session.commit()
        tracker = UsageTracker(session, dispatcher=dispatcher, clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.API_CALLS)

        assert dispatcher.named("report_usage") == [(tenant.id,)]

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_the_record(self, session, factory):
        class BrokenDispatcher:
            async def dispatch(self, function, *args, **kwargs):
                raise ConnectionError("redis down")

        tenant = await factory.tenant()
        await session.commit()
        tracker = UsageTracker(session, dispatcher=BrokenDispatcher(), clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.API_CALLS, 4)

        assert await tracker.current_period_usage(tenant.id) == 4

    @pytest.mark.asyncio
    async def test_non_positive_quantity_is_rejected(self, session, factory):
        tenant = await factory.tenant()
        tracker = UsageTracker(session, clock=fixed_clock)

        with pytest.raises(ValueError):
            await tracker.record(tenant.id, UsageType.API_CALLS, 0)

    @pytest.mark.asyncio
    async def test_no_subscription(self, session, factory):
        tenant = await factory.tenant()
        await session.commit()
        tracker = UsageTracker(session, clock=fixed_clock)

        await tracker.record(tenant.id, UsageType.API_CALLS, 10)

        assert await tracker.current_period_usage(tenant.id) == 10
        assert await tracker.remaining_quota(tenant.id) == 0
        assert not await tracker.is_over_quota(tenant.id)
