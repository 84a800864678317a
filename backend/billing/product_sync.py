"""
Stripe catalog synchronization

Makes Stripe's product/price graph match the local catalog:

- one product per module, plus seat-overage and usage-overage products,
  each looked up by a deterministic product id instead of a search query
- flat recurring module prices, graduated tiered metered overage prices
- prices are immutable in Stripe, so a changed amount archives the old
  price and creates a new one

Repeated runs with an unchanged catalog reuse every stored id. When Stripe
is not configured every operation returns without doing anything.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.app_setting import AppSetting
from models.enums import BillingInterval
from models.module import Module

from .stripe_client import StripeClient
from .stripe_config import StripeConfig


logger = logging.getLogger(__name__)


SEAT_MONTHLY_PRICE_KEY = "billing.seat_monthly_price_id"
SEAT_ANNUAL_PRICE_KEY = "billing.seat_annual_price_id"
USAGE_PRICE_KEY = "billing.usage_metered_price_id"
USAGE_METER_KEY = "billing.usage_meter_id"


def seat_price_key(interval: BillingInterval) -> str:
    if interval == BillingInterval.ANNUAL:
        return SEAT_ANNUAL_PRICE_KEY
    return SEAT_MONTHLY_PRICE_KEY


def build_tiers(included: int, overage_cents: int) -> List[Dict[str, Any]]:
    """Free tier up to included units, then overage_cents per unit."""
    tiers = []
    if included > 0:
        tiers.append({"up_to": included, "unit_amount": 0})
    tiers.append({"up_to": "inf", "unit_amount": overage_cents})
    return tiers


def _normalize_tiers(tiers) -> List[tuple]:
    normalized = []
    for tier in tiers or []:
        up_to = tier.get("up_to")
        if up_to is None or up_to == "inf":
            up_to = math.inf
        normalized.append((up_to, tier.get("unit_amount") or 0))
    return normalized


def tiers_match(existing, expected) -> bool:
    return _normalize_tiers(existing) == _normalize_tiers(expected)


class StripeProductSync:
    """
    Create-or-reuse synchronization of the catalog into Stripe.

    Not safe to run concurrently for the same product key; the worker runs
    a single sync job at a time.
    """

    def __init__(self, session: AsyncSession, stripe_client: StripeClient, config: StripeConfig = None):
        """
        Args:
            session: Database session
            stripe_client: Stripe API client
            config: Stripe configuration (defaults to the client's)
        """
        self.session = session
        self.stripe_client = stripe_client
        self.config = config or stripe_client.config

    @property
    def enabled(self) -> bool:
        return self.stripe_client.is_configured

    def product_id(self, key: str) -> str:
        return f"{self.config.product_id_prefix}_{key}"

    @property
    def meter_event_name(self) -> str:
        return self.config.usage_meter_event_name

    async def sync(self, module: Module) -> None:
        """Sync one module's product and its monthly and annual prices."""
        if not self.enabled:
            return

        product = self._find_or_create_product(
            self.product_id(f"module_{module.slug}"), module.name, module.description
        )

        module.stripe_monthly_price_id = self._sync_flat_price(
            product["id"], module.stripe_monthly_price_id, module.monthly_price_cents,
            BillingInterval.MONTHLY.stripe_interval,
        )
        module.stripe_annual_price_id = self._sync_flat_price(
            product["id"], module.stripe_annual_price_id, module.annual_price_cents,
            BillingInterval.ANNUAL.stripe_interval,
        )
        await self.session.commit()

        logger.info(f"Synced module {module.slug} to Stripe product {product['id']}")

    async def sync_seat_product(self) -> None:
        """Sync the seat overage product and its graduated monthly and annual prices."""
        if not self.enabled:
            return

        product = self._find_or_create_product(
            self.product_id("seat"),
            "Additional Seat",
            "Per-seat overage charge for additional team members.",
        )

        for interval in (BillingInterval.MONTHLY, BillingInterval.ANNUAL):
            key = seat_price_key(interval)
            price_id = self._sync_tiered_price(
                product["id"],
                await AppSetting.get(self.session, key),
                build_tiers(self.config.included_seats, self.config.seat_cents_for(interval)),
                interval.stripe_interval,
            )
            await AppSetting.set(self.session, key, price_id)

        await self.session.commit()
        logger.info("Synced seat overage product")

    async def sync_usage_product(self) -> None:
        """Sync the usage overage product, its billing meter and its graduated monthly price."""
        if not self.enabled:
            return

        product = self._find_or_create_product(
            self.product_id("usage"),
            "Usage Overage",
            "Metered usage overage charge.",
        )
        meter_id = await self._find_or_create_meter()

        price_id = self._sync_tiered_price(
            product["id"],
            await AppSetting.get(self.session, USAGE_PRICE_KEY),
            build_tiers(self.config.included_usage, self.config.usage_overage_cents),
            BillingInterval.MONTHLY.stripe_interval,
            meter_id=meter_id,
        )
        await AppSetting.set(self.session, USAGE_PRICE_KEY, price_id)
        await self.session.commit()
        logger.info("Synced usage overage product")

    async def sync_all(self) -> Dict[str, Any]:
        """Sync seat and usage products, then every module."""
        if not self.enabled:
            logger.warning("Stripe is not configured; skipping catalog sync")
            return {"status": "skipped", "modules": 0}

        await self.sync_seat_product()
        await self.sync_usage_product()

        result = await self.session.execute(select(Module).order_by(Module.sort_order, Module.name))
        modules = result.scalars().all()
        for module in modules:
            await self.sync(module)

        return {"status": "synced", "modules": len(modules)}

    def _find_or_create_product(self, product_id: str, name: str,
                                description: Optional[str]) -> Dict[str, Any]:
        product = self.stripe_client.retrieve_product(product_id)
        if product is None:
            return self.stripe_client.create_product(product_id, name, description)

        if product["name"] != name:
            product = self.stripe_client.update_product(product_id, name=name)
        return product

    async def _find_or_create_meter(self) -> str:
        meter_id = await AppSetting.get(self.session, USAGE_METER_KEY)
        if meter_id and self.stripe_client.retrieve_meter(meter_id) is not None:
            return meter_id

        meter = self.stripe_client.find_meter_by_event_name(self.meter_event_name)
        if meter is None:
            meter = self.stripe_client.create_meter("Usage Overage", self.meter_event_name)

        await AppSetting.set(self.session, USAGE_METER_KEY, meter["id"])
        return meter["id"]

    def _reusable(self, existing_price_id: Optional[str], matches) -> Optional[str]:
        """
        Return existing_price_id if it still matches, archiving it otherwise.
        """
        if not existing_price_id:
            return None

        price = self.stripe_client.retrieve_price(existing_price_id)
        if price is None:
            return None

        if price.get("active", True) and matches(price):
            return existing_price_id

        if price.get("active", True):
            self.stripe_client.deactivate_price(existing_price_id)
        return None

    def _sync_flat_price(self, product_id: str, existing_price_id: Optional[str],
                         unit_amount: int, interval: str) -> str:
        reused = self._reusable(existing_price_id, lambda price: price.get("unit_amount") == unit_amount)
        if reused:
            return reused

        price = self.stripe_client.create_price(product_id, interval, unit_amount=unit_amount)
        return price["id"]

    def _sync_tiered_price(self, product_id: str, existing_price_id: Optional[str],
                           tiers: List[Dict[str, Any]], interval: str,
                           meter_id: Optional[str] = None) -> str:
        reused = self._reusable(existing_price_id, lambda price: tiers_match(price.get("tiers"), tiers))
        if reused:
            return reused

        price = self.stripe_client.create_price(product_id, interval, tiers=tiers, meter_id=meter_id)
        return price["id"]
