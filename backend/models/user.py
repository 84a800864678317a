"""
User model for authentication and tenant membership.
"""

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from .base import BaseModel


class User(BaseModel):
    """Platform user. A user reaches tenants only through memberships."""

    __tablename__ = "users"

    # Basic info
    email = Column(String(255), unique=True, nullable=False, index=True, doc="User email address")
    name = Column(String(255), nullable=False, doc="Display name")

    # Authentication
    password_hash = Column(String(255), nullable=True, doc="Hashed password, NULL until onboarding")
    is_active = Column(Boolean, default=True, nullable=False, doc="Whether user account is active")

    # Timestamps
    email_verified_at = Column(DateTime, nullable=True, doc="Email verification timestamp")
    onboarding_completed_at = Column(DateTime, nullable=True, doc="Onboarding completion timestamp")

    memberships = relationship(
        "TenantMembership",
        back_populates="user",
        passive_deletes=True,
    )

    @property
    def has_usable_password(self) -> bool:
        return self.password_hash is not None

    @property
    def has_completed_onboarding(self) -> bool:
        return self.onboarding_completed_at is not None

    def __repr__(self) -> str:
        return f"<User(email='{self.email}')>"
