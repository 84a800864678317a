"""
Checkout session builder.

Starts a purchase: builds the Stripe line items for the chosen modules,
seats and usage overage, opens a Stripe checkout session and records the
pending intent that provisioning later consumes.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.app_setting import AppSetting
from models.base import utcnow
from models.checkout_session import CheckoutSession
from models.enums import BillingInterval
from models.module import Module

from .exceptions import InvalidModuleSelection
from .product_sync import USAGE_PRICE_KEY, seat_price_key
from .stripe_client import StripeClient
from .stripe_config import StripeConfig


logger = logging.getLogger(__name__)


CHECKOUT_SESSION_TTL = timedelta(hours=24)


class CheckoutSessionBuilder:
    """Creates Stripe checkout sessions and their local CheckoutSession rows."""

    def __init__(self, session: AsyncSession, stripe_client: StripeClient,
                 config: StripeConfig = None, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.stripe_client = stripe_client
        self.config = config or stripe_client.config
        self.clock = clock

    async def build(
        self,
        email: str,
        module_slugs: List[str],
        billing_interval: BillingInterval,
        success_url: str,
        cancel_url: str,
        seat_limit: int = None,
        usage_quota: int = None,
    ) -> str:
        """
        Start a checkout.

        Args:
            email: Buyer email
            module_slugs: Chosen module slugs
            billing_interval: Monthly or annual billing
            success_url: Redirect after payment
            cancel_url: Redirect when the buyer abandons checkout
            seat_limit: Seats purchased, at least the configured minimum
            usage_quota: Included usage, defaults to the configured quota

        Returns:
            The Stripe-hosted checkout URL

        Raises:
            InvalidModuleSelection: If a slug is unknown, inactive or unpriced
            ExternalBillingUnavailable: If Stripe rejects the session
        """
        seat_limit = max(seat_limit or self.config.min_seats, self.config.min_seats)
        usage_quota = self.config.included_usage if usage_quota is None else usage_quota

        modules = await self._modules(module_slugs)

        line_items = [
            {"price": module.price_id_for(billing_interval), "quantity": 1}
            for module in modules
        ]

        seat_price_id = await AppSetting.get(self.session, seat_price_key(billing_interval))
        if seat_price_id:
            line_items.append({"price": seat_price_id})

        usage_price_id = await AppSetting.get(self.session, USAGE_PRICE_KEY)
        if usage_price_id:
            line_items.append({"price": usage_price_id})

        stripe_session = self.stripe_client.create_checkout_session(
            line_items=line_items,
            customer_email=email,
            success_url=success_url,
            cancel_url=cancel_url,
            trial_period_days=self.config.trial_period_days,
            metadata={
                "seat_limit": str(seat_limit),
                "usage_quota": str(usage_quota),
                "module_slugs": ",".join(module_slugs),
                "billing_interval": billing_interval.value,
            },
        )

        self.session.add(CheckoutSession(
            session_id=stripe_session["id"],
            email=email,
            module_slugs=list(module_slugs),
            seat_limit=seat_limit,
            usage_quota=usage_quota,
            billing_interval=billing_interval,
            expires_at=self.clock() + CHECKOUT_SESSION_TTL,
        ))
        await self.session.commit()

        logger.info(f"Started checkout {stripe_session['id']} for {email}")
        return stripe_session["url"]

    async def _modules(self, module_slugs: List[str]) -> List[Module]:
        if not module_slugs:
            raise InvalidModuleSelection([])

        result = await self.session.execute(
            select(Module)
            .where(Module.slug.in_(module_slugs), Module.is_active.is_(True))
            .order_by(Module.sort_order)
        )
        modules = list(result.scalars().all())

        found = {module.slug for module in modules}
        missing = [slug for slug in module_slugs if slug not in found]
        unpriced = [module.slug for module in modules
                    if not module.stripe_monthly_price_id or not module.stripe_annual_price_id]
        if missing or unpriced:
            raise InvalidModuleSelection(missing + unpriced)
        return modules
