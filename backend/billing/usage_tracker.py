"""
Usage tracking

Records metered consumption into the append-only usage ledger and derives
the per-period figures used for quota gating and Stripe reporting.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utcnow
from models.enums import UsageType
from models.subscription import TenantSubscription
from models.usage import UsageRecord


logger = logging.getLogger(__name__)


class UsageTracker:
    """
    Usage ledger access for a tenant.

    Recording is durable before anything else happens: the row is committed,
    then a report_usage job is requested. A failure to enqueue the report is
    logged and never undoes the recorded usage.
    """

    def __init__(self, session: AsyncSession, dispatcher=None,
                 clock: Callable[[], datetime] = utcnow):
        """
        Initialize usage tracker

        Args:
            session: Database session
            dispatcher: JobDispatcher used to request Stripe reports
            clock: Source of the current naive-UTC time
        """
        self.session = session
        self.dispatcher = dispatcher
        self.clock = clock

    async def record(self, tenant_id: str, usage_type: UsageType, quantity: int = 1) -> UsageRecord:
        """
        Record a usage event

        Args:
            tenant_id: Tenant identifier
            usage_type: Consumption category
            quantity: Positive quantity

        Returns:
            Created usage record

        Raises:
            ValueError: If quantity is not positive
        """
        if quantity <= 0:
            raise ValueError("Usage quantity must be positive")

        record = UsageRecord(
            tenant_id=tenant_id,
            type=usage_type,
            quantity=quantity,
            recorded_at=self.clock(),
        )
        self.session.add(record)
        await self.session.commit()

        logger.debug(f"Recorded usage: tenant={tenant_id}, type={usage_type.value}, quantity={quantity}")

        if self.dispatcher is not None:
            try:
                await self.dispatcher.dispatch("report_usage", tenant_id)
            except Exception as e:
                logger.warning(f"Could not enqueue usage report for tenant {tenant_id}: {e}")

        return record

    async def period_start(self, tenant_id: str,
                           subscription: Optional[TenantSubscription] = None) -> datetime:
        """Start of the usage window: the subscription's period start, else one month back."""
        if subscription is None:
            subscription = await self._subscription(tenant_id)

        start = subscription.period_start() if subscription else None
        if start is None:
            start = self.clock() - relativedelta(months=1)
        return start

    async def current_period_usage(self, tenant_id: str,
                                   subscription: Optional[TenantSubscription] = None) -> int:
        """Sum of quantities recorded since the start of the current period."""
        start = await self.period_start(tenant_id, subscription)
        result = await self.session.execute(
            select(func.coalesce(func.sum(UsageRecord.quantity), 0)).where(
                UsageRecord.tenant_id == tenant_id,
                UsageRecord.recorded_at >= start,
            )
        )
        return int(result.scalar_one())

    async def remaining_quota(self, tenant_id: str,
                              subscription: Optional[TenantSubscription] = None) -> int:
        """Quota left this period. Zero when the tenant has no subscription."""
        if subscription is None:
            subscription = await self._subscription(tenant_id)
        if subscription is None:
            return 0

        used = await self.current_period_usage(tenant_id, subscription)
        return max(0, subscription.usage_quota - used)

    async def is_over_quota(self, tenant_id: str,
                            subscription: Optional[TenantSubscription] = None) -> bool:
        """Whether period usage exceeds the quota. False without a subscription."""
        if subscription is None:
            subscription = await self._subscription(tenant_id)
        if subscription is None:
            return False

        used = await self.current_period_usage(tenant_id, subscription)
        return used > subscription.usage_quota

    async def _subscription(self, tenant_id: str) -> Optional[TenantSubscription]:
        result = await self.session.execute(
            select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()
