"""
Catalog module model.
"""

from typing import Optional

from sqlalchemy import Column, String, Integer, Boolean, Text

from .base import BaseModel
from .enums import BillingInterval


# Changes to any of these fields must be mirrored to the billing provider.
SYNCED_FIELDS = ("name", "description", "monthly_price_cents", "annual_price_cents")


class Module(BaseModel):
    """Purchasable product module."""

    __tablename__ = "modules"

    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True, doc="Stable external correlation key")
    description = Column(Text, nullable=True)

    # Pricing in minor currency units
    monthly_price_cents = Column(Integer, nullable=False, default=0)
    annual_price_cents = Column(Integer, nullable=False, default=0)

    # Provider prices, NULL until synced
    stripe_monthly_price_id = Column(String(255), nullable=True)
    stripe_annual_price_id = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    def price_id_for(self, interval: BillingInterval) -> Optional[str]:
        if interval == BillingInterval.ANNUAL:
            return self.stripe_annual_price_id
        return self.stripe_monthly_price_id

    def __repr__(self) -> str:
        return f"<Module(slug='{self.slug}')>"
