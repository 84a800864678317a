"""
Stripe usage reporting

Mirrors the local seat and usage ledgers onto Stripe. Peak seats are set on
the metered seat line item; period usage goes to the usage billing meter.
Both reports carry absolute quantities, so a retried or duplicated report
is harmless.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.subscription import TenantSubscription
from models.tenant import Tenant

from .seat_tracker import SeatTracker
from .stripe_client import StripeClient
from .usage_tracker import UsageTracker


logger = logging.getLogger(__name__)


class StripeUsageReporter:
    """Reports peak seats and period usage for one tenant at a time."""

    def __init__(self, session: AsyncSession, stripe_client: StripeClient,
                 seat_tracker: SeatTracker = None, usage_tracker: UsageTracker = None):
        self.session = session
        self.stripe_client = stripe_client
        self.seat_tracker = seat_tracker or SeatTracker(session)
        self.usage_tracker = usage_tracker or UsageTracker(session)

    async def report_seats(self, tenant_id: str) -> Optional[int]:
        """
        Report the period's peak seat count.

        Returns:
            The reported quantity, or None when nothing was reported

        Raises:
            ExternalBillingUnavailable: If Stripe cannot be reached
        """
        subscription = await self._reportable(tenant_id, "seat_stripe_price_id")
        if subscription is None:
            return None

        item_id = self.stripe_client.find_subscription_item_id(
            subscription.stripe_subscription_id, subscription.seat_stripe_price_id
        )
        if item_id is None:
            logger.info(f"No seat line item on {subscription.stripe_subscription_id}; skipping report")
            return None

        peak = await self.seat_tracker.peak_seat_count(tenant_id, subscription)
        self.stripe_client.set_usage(item_id, peak)
        logger.info(f"Reported {peak} seats for tenant {tenant_id}")
        return peak

    async def report_usage(self, tenant_id: str) -> Optional[int]:
        """
        Report the period's total usage.

        Returns:
            The reported quantity, or None when nothing was reported

        Raises:
            ExternalBillingUnavailable: If Stripe cannot be reached
        """
        subscription = await self._reportable(tenant_id, "usage_stripe_price_id")
        if subscription is None:
            return None

        item_id = self.stripe_client.find_subscription_item_id(
            subscription.stripe_subscription_id, subscription.usage_stripe_price_id
        )
        if item_id is None:
            logger.info(f"No usage line item on {subscription.stripe_subscription_id}; skipping report")
            return None

        customer_id = await self.session.scalar(select(Tenant.stripe_customer_id).where(Tenant.id == tenant_id))
        if not customer_id:
            logger.info(f"Tenant {tenant_id} has no Stripe customer; skipping usage report")
            return None

        usage = await self.usage_tracker.current_period_usage(tenant_id, subscription)
        period_start = await self.usage_tracker.period_start(tenant_id, subscription)
        self.stripe_client.report_meter_usage(
            self.stripe_client.config.usage_meter_event_name,
            customer_id,
            usage,
            identifier=f"{tenant_id}:{period_start:%Y%m%d}:{usage}",
        )
        logger.info(f"Reported usage {usage} for tenant {tenant_id}")
        return usage

    async def _reportable(self, tenant_id: str, price_attr: str) -> Optional[TenantSubscription]:
        if not self.stripe_client.is_configured:
            return None

        result = await self.session.execute(
            select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
        )
        subscription = result.scalar_one_or_none()

        if subscription is None or not subscription.is_active:
            return None
        if not subscription.stripe_subscription_id or not getattr(subscription, price_attr):
            return None
        return subscription
