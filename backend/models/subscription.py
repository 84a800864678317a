"""
Tenant subscription model and its gating predicates.
"""

from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Enum as SAEnum
from sqlalchemy.orm import relationship

from .base import BaseModel, utcnow
from .enums import BillingInterval, SubscriptionStatus


class TenantSubscription(BaseModel):
    """
    One-to-one billing state of a tenant.

    Only the subscription state machine and provisioning write to this row.
    """

    __tablename__ = "tenant_subscriptions"

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        doc="Owning tenant (at most one subscription per tenant)"
    )

    # External references
    stripe_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    seat_stripe_price_id = Column(String(255), nullable=True)
    usage_stripe_price_id = Column(String(255), nullable=True)

    # Lifecycle
    status = Column(
        SAEnum(SubscriptionStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    billing_interval = Column(
        SAEnum(BillingInterval, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=BillingInterval.MONTHLY,
    )

    # Entitlements
    module_slugs = Column(JSON, default=list, nullable=False, doc="Entitled module slugs")
    seat_limit = Column(Integer, default=0, nullable=False)
    usage_quota = Column(Integer, default=0, nullable=False)

    # Timestamps
    trial_ends_at = Column(DateTime, nullable=True)
    read_only_ends_at = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="subscription")

    @property
    def is_active(self) -> bool:
        """Active or trialing"""
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

    @property
    def is_read_only(self) -> bool:
        return self.status == SubscriptionStatus.READ_ONLY

    @property
    def is_locked(self) -> bool:
        return self.status == SubscriptionStatus.LOCKED

    @property
    def is_past_due(self) -> bool:
        return self.status == SubscriptionStatus.PAST_DUE

    def period_start(self) -> Optional[datetime]:
        """
        Start of the current billing period.

        Derived as current_period_end minus one billing interval; None when
        the provider has not reported a period end yet.
        """
        if self.current_period_end is None:
            return None

        if self.billing_interval == BillingInterval.ANNUAL:
            return self.current_period_end - relativedelta(years=1)
        return self.current_period_end - relativedelta(months=1)

    def read_only_deadline(self, grace_days: int, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) + timedelta(days=grace_days)

    def __repr__(self) -> str:
        return f"<TenantSubscription(tenant_id='{self.tenant_id}', status='{self.status}')>"
