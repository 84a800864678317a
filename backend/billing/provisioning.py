"""
Tenant provisioning

Turns a completed Stripe checkout into a user, an inactive tenant, its
subscription and an owner membership, all in one transaction.
Redelivered events are absorbed: the CheckoutSession row is consumed by
the first successful run, and later runs find nothing to do.
"""

import logging
import re
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.events import EventBus, TenantProvisioned
from core.memberships import MembershipService
from models.app_setting import AppSetting
from models.checkout_session import CheckoutSession
from models.enums import SubscriptionStatus
from models.membership import OWNER_ROLE
from models.subscription import TenantSubscription
from models.tenant import Tenant
from models.user import User

from .exceptions import DuplicateProvisioning, ExternalBillingUnavailable
from .product_sync import USAGE_PRICE_KEY, seat_price_key
from .stripe_client import StripeClient
from .subscription_lifecycle import from_timestamp, period_end_of


logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    """Lowercase alphanumerics separated by single hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "tenant"


def tenant_id_for_checkout(session_id: str) -> str:
    """Stable tenant id for a checkout, so retried Stripe calls carry identical parameters."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"stripe-checkout:{session_id}"))


class TenantProvisioningService:
    """Provisions tenants from checkout.session.completed events."""

    def __init__(self, session: AsyncSession, stripe_client: StripeClient,
                 events: Optional[EventBus] = None):
        """
        Initialize provisioning service

        Args:
            session: Database session; the whole provisioning runs in it
            stripe_client: Stripe API client
            events: Bus receiving TenantProvisioned after commit
        """
        self.session = session
        self.stripe_client = stripe_client
        self.events = events

    async def provision(self, checkout: Dict[str, Any]) -> Optional[TenantProvisioned]:
        """
        Provision from a Stripe checkout session object.

        Args:
            checkout: The event's data.object (id, subscription, ...)

        Returns:
            The published TenantProvisioned event, or None when nothing was created

        Raises:
            ExternalBillingUnavailable: If the Stripe subscription cannot be fetched
        """
        session_id = checkout.get("id")
        if not session_id:
            return None

        pending = await self._pending_checkout(session_id)
        if pending is None:
            logger.info(f"No pending checkout for session {session_id}; nothing to provision")
            return None

        try:
            await self._guard_duplicate(pending)
        except DuplicateProvisioning as e:
            # TODO: surface repeat purchases for an existing email to operators instead of dropping them
            logger.warning(f"{e.message}; discarding checkout session {session_id}")
            await self.session.delete(pending)
            await self.session.commit()
            return None

        try:
            event = await self._provision(pending, checkout)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.error(f"Provisioning failed for checkout session {session_id}; rolled back")
            raise

        logger.info(f"Provisioned tenant {event.tenant.slug} for {event.user.email}")

        if self.events is not None:
            await self.events.publish(event)
        return event

    async def _pending_checkout(self, session_id: str) -> Optional[CheckoutSession]:
        result = await self.session.execute(
            select(CheckoutSession)
            .where(CheckoutSession.session_id == session_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _guard_duplicate(self, pending: CheckoutSession) -> None:
        taken = await self.session.scalar(select(exists().where(User.email == pending.email)))
        if taken:
            raise DuplicateProvisioning(pending.email, session_id=pending.session_id)

    async def _provision(self, pending: CheckoutSession, checkout: Dict[str, Any]) -> TenantProvisioned:
        local_part = pending.email.split("@", 1)[0]
        slug = await self._unique_slug(slugify(local_part))
        tenant_id = tenant_id_for_checkout(pending.session_id)

        # Stripe calls run before any row is written; the customer is created last.
        stripe_subscription_id = checkout.get("subscription")
        trial_ends_at = None
        period_end = None
        if stripe_subscription_id and self.stripe_client.is_configured:
            stripe_subscription = self.stripe_client.retrieve_subscription(stripe_subscription_id)
            if stripe_subscription is not None:
                trial_ends_at = from_timestamp(stripe_subscription.get("trial_end"))
                period_end = from_timestamp(period_end_of(stripe_subscription))

        customer_id = self._register_customer(pending.email, tenant_id, pending.session_id)

        user = User(email=pending.email, name=local_part, password_hash=None, email_verified_at=None)
        tenant = Tenant(id=tenant_id, name=slug, slug=slug, is_active=False, stripe_customer_id=customer_id)
        self.session.add_all([user, tenant])
        await self.session.flush()

        self.session.add(TenantSubscription(
            tenant_id=tenant.id,
            stripe_subscription_id=stripe_subscription_id,
            status=SubscriptionStatus.TRIALING if trial_ends_at else SubscriptionStatus.ACTIVE,
            billing_interval=pending.billing_interval,
            module_slugs=list(pending.module_slugs or []),
            seat_limit=pending.seat_limit,
            usage_quota=pending.usage_quota,
            trial_ends_at=trial_ends_at,
            current_period_end=period_end,
            seat_stripe_price_id=await AppSetting.get(self.session, seat_price_key(pending.billing_interval)),
            usage_stripe_price_id=await AppSetting.get(self.session, USAGE_PRICE_KEY),
        ))

        await MembershipService(self.session).add_member(tenant.id, user.id, OWNER_ROLE)

        await self.session.delete(pending)
        await self.session.flush()

        return TenantProvisioned(user=user, tenant=tenant)

    def _register_customer(self, email: str, tenant_id: str, session_id: str) -> Optional[str]:
        if not self.stripe_client.is_configured:
            return None
        try:
            return self.stripe_client.create_customer(
                email,
                metadata={"tenant_id": tenant_id},
                idempotency_key=f"customer-{session_id}",
            )
        except ExternalBillingUnavailable as e:
            logger.warning(f"Could not register Stripe customer for tenant {tenant_id}: {e.message}")
            return None

    async def _unique_slug(self, base: str) -> str:
        slug = base
        counter = 1
        while await self.session.scalar(select(exists().where(Tenant.slug == slug))):
            slug = f"{base}-{counter}"
            counter += 1
        return slug
