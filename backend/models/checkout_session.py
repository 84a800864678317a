"""
Pending purchase intent bridging an anonymous checkout and a future tenant.
"""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Enum as SAEnum

from .base import BaseModel
from .enums import BillingInterval


class CheckoutSession(BaseModel):
    """
    Created when a purchase flow starts, deleted exactly once by
    provisioning. Never updated in between.
    """

    __tablename__ = "checkout_sessions"

    session_id = Column(String(255), unique=True, nullable=False, index=True, doc="Provider checkout session id")
    email = Column(String(255), nullable=False, doc="Buyer email")
    module_slugs = Column(JSON, default=list, nullable=False)
    seat_limit = Column(Integer, nullable=False)
    usage_quota = Column(Integer, nullable=False)
    billing_interval = Column(
        SAEnum(BillingInterval, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    expires_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<CheckoutSession(session_id='{self.session_id}', email='{self.email}')>"
