"""
Roles and tenant memberships.
"""

from sqlalchemy import Column, String, Boolean, ForeignKey, JSON, UniqueConstraint, Enum as SAEnum
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import RoleContext


OWNER_ROLE = "owner"


class Role(BaseModel):
    """Named bundle of permission slugs."""

    __tablename__ = "roles"

    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    context = Column(
        SAEnum(RoleContext, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RoleContext.TENANT,
    )
    is_default = Column(Boolean, default=False, nullable=False)
    permissions = Column(JSON, default=list, nullable=False, doc="Permission slugs granted by this role")

    def has_permission(self, permission_slug: str) -> bool:
        return permission_slug in (self.permissions or [])

    def __repr__(self) -> str:
        return f"<Role(slug='{self.slug}')>"


class TenantMembership(BaseModel):
    """A user's seat in a tenant. Each membership is one billable seat."""

    __tablename__ = "tenant_memberships"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_memberships_tenant_user"),
    )

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_id = Column(String(36), ForeignKey("roles.id"), nullable=False)

    tenant = relationship("Tenant", back_populates="memberships")
    user = relationship("User", back_populates="memberships")
    role = relationship("Role", lazy="joined")

    def __repr__(self) -> str:
        return f"<TenantMembership(tenant_id='{self.tenant_id}', user_id='{self.user_id}')>"
