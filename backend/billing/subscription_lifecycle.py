"""
Subscription Lifecycle

State machine for TenantSubscription.status, driven by Stripe webhook
events and by the daily read-only sweep.

    trialing/active/past_due/cancelled  <- customer.subscription.updated
    any         -> read_only            <- customer.subscription.deleted
    any         -> past_due             <- invoice.payment_failed
    read_only   -> locked               <- sweep, once read_only_ends_at passes

Events for subscription ids this system does not track raise
UnknownExternalReference, which the webhook handler absorbs.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utcnow
from models.enums import SubscriptionStatus
from models.subscription import TenantSubscription

from .exceptions import UnknownExternalReference
from .stripe_config import StripeConfig, get_stripe_config


logger = logging.getLogger(__name__)


STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
}


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Unix timestamp from Stripe to naive UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def period_end_of(stripe_subscription: Dict[str, Any]) -> Optional[int]:
    """
    current_period_end of a Stripe subscription payload.

    Newer API versions carry the period on each item instead of the
    subscription itself.
    """
    value = stripe_subscription.get("current_period_end")
    if value is not None:
        return value

    items = (stripe_subscription.get("items") or {}).get("data") or []
    ends = [item.get("current_period_end") for item in items if item.get("current_period_end")]
    return max(ends) if ends else None


class SubscriptionStateMachine:
    """
    Applies billing events to local subscriptions.

    Each handler locks the subscription row, applies the transition and
    commits before any follow-up job is dispatched, so no lock is held
    while Stripe is being called.
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher=None,
        config: StripeConfig = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the state machine

        Args:
            session: Database session
            dispatcher: JobDispatcher for the period-rollover seat report
            config: Stripe configuration (read-only grace days)
            clock: Source of the current naive-UTC time
        """
        self.session = session
        self.dispatcher = dispatcher
        self.config = config or get_stripe_config()
        self.clock = clock

    async def _locked_subscription(self, stripe_subscription_id: Optional[str]) -> TenantSubscription:
        subscription = None
        if stripe_subscription_id:
            result = await self.session.execute(
                select(TenantSubscription)
                .where(TenantSubscription.stripe_subscription_id == stripe_subscription_id)
                .with_for_update()
            )
            subscription = result.scalar_one_or_none()

        if subscription is None:
            raise UnknownExternalReference(stripe_subscription_id)
        return subscription

    async def handle_subscription_updated(self, stripe_subscription: Dict[str, Any]) -> Dict[str, Any]:
        """Handle customer.subscription.updated"""
        subscription_id = stripe_subscription.get("id")
        subscription = await self._locked_subscription(subscription_id)

        previous_period_end = subscription.current_period_end

        stripe_status = stripe_subscription.get("status")
        new_status = STRIPE_STATUS_MAP.get(stripe_status)
        if new_status is not None:
            subscription.status = new_status
        else:
            logger.info(f"Unmapped Stripe status {stripe_status} for {subscription_id}; status unchanged")

        period_end = period_end_of(stripe_subscription)
        if period_end is not None:
            subscription.current_period_end = from_timestamp(period_end)

        trial_end = stripe_subscription.get("trial_end")
        if trial_end is not None:
            subscription.trial_ends_at = from_timestamp(trial_end)

        new_period_end = subscription.current_period_end
        rolled_over = new_period_end is not None and new_period_end != previous_period_end
        should_report = rolled_over and subscription.is_active
        tenant_id = subscription.tenant_id

        await self.session.commit()

        logger.info(
            f"Subscription {subscription_id} updated: status={subscription.status.value}, "
            f"period_end={new_period_end}"
        )

        if should_report and self.dispatcher is not None:
            try:
                await self.dispatcher.dispatch("report_seats", tenant_id)
            except Exception:
                await self._restore_period_end(subscription_id, previous_period_end)
                raise
            logger.info(f"Billing period rolled over for tenant {tenant_id}; seat report requested")

        return {
            "action": "subscription_updated",
            "subscription_id": subscription_id,
            "local_status": subscription.status.value,
            "period_rolled_over": rolled_over,
        }

    async def _restore_period_end(self, subscription_id: str, period_end: Optional[datetime]) -> None:
        """Undo a period change whose rollover report could not be queued, so a redelivery retries it."""
        subscription = await self._locked_subscription(subscription_id)
        subscription.current_period_end = period_end
        await self.session.commit()
        logger.error(f"Seat report dispatch failed for {subscription_id}; period end restored to {period_end}")

    async def handle_subscription_deleted(self, stripe_subscription: Dict[str, Any]) -> Dict[str, Any]:
        """Handle customer.subscription.deleted: start the read-only grace period."""
        subscription_id = stripe_subscription.get("id")
        subscription = await self._locked_subscription(subscription_id)

        subscription.status = SubscriptionStatus.READ_ONLY
        subscription.read_only_ends_at = subscription.read_only_deadline(self.config.read_only_days, self.clock())
        await self.session.commit()

        logger.info(f"Subscription {subscription_id} deleted; read-only until {subscription.read_only_ends_at}")

        return {
            "action": "subscription_deleted",
            "subscription_id": subscription_id,
            "read_only_ends_at": subscription.read_only_ends_at.isoformat(),
        }

    async def handle_invoice_payment_failed(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        """Handle invoice.payment_failed"""
        subscription_id = invoice.get("subscription")
        if subscription_id is None:
            parent = (invoice.get("parent") or {}).get("subscription_details") or {}
            subscription_id = parent.get("subscription")

        subscription = await self._locked_subscription(subscription_id)

        subscription.status = SubscriptionStatus.PAST_DUE
        await self.session.commit()

        logger.warning(f"Invoice payment failed for subscription {subscription_id}")

        return {"action": "invoice_payment_failed", "subscription_id": subscription_id}

    async def lock_expired_read_only(self) -> int:
        """
        Move read-only subscriptions whose grace period has ended to locked.

        Returns:
            Number of subscriptions locked
        """
        result = await self.session.execute(
            update(TenantSubscription)
            .where(
                TenantSubscription.status == SubscriptionStatus.READ_ONLY,
                TenantSubscription.read_only_ends_at.is_not(None),
                TenantSubscription.read_only_ends_at <= self.clock(),
            )
            .values(status=SubscriptionStatus.LOCKED)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        count = result.rowcount or 0
        logger.info(f"Updated {count} subscription(s) from read-only to locked")
        return count
