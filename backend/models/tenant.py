"""
Tenant model for multi-tenancy support.
"""

from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship

from .base import BaseModel


SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class Tenant(BaseModel):
    """
    Customer organization and unit of data partitioning.

    The primary key is a random UUID string: it travels in the signed
    X-Tenant-ID header, so it must not be guessable.
    """

    __tablename__ = "tenants"

    name = Column(String(255), nullable=False, doc="Display name")
    slug = Column(String(100), unique=True, nullable=False, index=True, doc="Subdomain label")
    is_active = Column(Boolean, default=False, nullable=False, doc="Whether tenant may be resolved")

    # Billing
    stripe_customer_id = Column(String(255), nullable=True, doc="External billing customer reference")

    # Owned aggregate; rows cascade at the database level
    subscription = relationship(
        "TenantSubscription",
        back_populates="tenant",
        uselist=False,
        passive_deletes=True,
    )
    memberships = relationship(
        "TenantMembership",
        back_populates="tenant",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Tenant(name='{self.name}', slug='{self.slug}')>"
