"""
Membership Management

Adds, removes and re-roles tenant members as explicit transaction steps:
duplicate and last-owner checks run before the change, and a seat
snapshot is appended after it, all in the caller's transaction.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.seat_tracker import SeatTracker
from models.base import utcnow
from models.enums import RoleContext
from models.membership import OWNER_ROLE, Role, TenantMembership

from .exceptions import DuplicateMembership, LastOwnerViolation

logger = structlog.get_logger(__name__)


DEFAULT_ROLES: List[Dict] = [
    {
        "name": "Owner", "slug": "owner", "context": RoleContext.TENANT,
        "permissions": [
            "members.view", "members.manage", "members.remove",
            "settings.view", "settings.manage", "tenant.manage",
        ],
    },
    {
        "name": "Admin", "slug": "admin", "context": RoleContext.TENANT,
        "permissions": ["members.view", "members.manage", "settings.view", "settings.manage"],
    },
    {
        "name": "Member", "slug": "member", "context": RoleContext.TENANT,
        "permissions": ["members.view", "settings.view"],
    },
    {
        "name": "Viewer", "slug": "viewer", "context": RoleContext.TENANT,
        "permissions": ["members.view"],
    },
    {
        "name": "Super Admin", "slug": "super-admin", "context": RoleContext.ADMINISTRATION,
        "permissions": ["tenants.view", "tenants.manage", "users.view", "users.manage", "impersonate"],
    },
    {
        "name": "Support", "slug": "support", "context": RoleContext.ADMINISTRATION,
        "permissions": ["tenants.view", "users.view"],
    },
]


async def ensure_default_roles(session: AsyncSession) -> None:
    """Create any missing default role. Existing roles are left untouched."""
    result = await session.execute(select(Role.slug))
    existing = set(result.scalars().all())

    for definition in DEFAULT_ROLES:
        if definition["slug"] in existing:
            continue
        session.add(Role(is_default=True, **definition))

    await session.flush()


async def get_role(session: AsyncSession, slug: str) -> Role:
    result = await session.execute(select(Role).where(Role.slug == slug))
    role = result.scalar_one_or_none()
    if role is None:
        raise LookupError(f"Role not found: {slug}")
    return role


async def has_permission(session: AsyncSession, user_id: str, tenant_id: str, permission: str) -> bool:
    """Whether the user's role in the tenant grants the permission."""
    result = await session.execute(
        select(TenantMembership).where(
            TenantMembership.tenant_id == tenant_id,
            TenantMembership.user_id == user_id,
        )
    )
    membership = result.unique().scalar_one_or_none()
    if membership is None:
        return False
    return membership.role.has_permission(permission)


class MembershipService:
    """Membership changes for one unit of work. Flushes; the caller commits."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.seats = SeatTracker(session, clock=clock)

    async def add_member(self, tenant_id: str, user_id: str, role_slug: str = "member") -> TenantMembership:
        """
        Add a user to a tenant.

        Raises:
            DuplicateMembership: If the user already belongs to the tenant
            LookupError: If the role does not exist
        """
        existing = await self._find(tenant_id, user_id)
        if existing is not None:
            raise DuplicateMembership(tenant_id, user_id)

        role = await get_role(self.session, role_slug)
        membership = TenantMembership(tenant_id=tenant_id, user_id=user_id, role_id=role.id)
        membership.role = role
        self.session.add(membership)
        await self.session.flush()

        await self.seats.record(tenant_id)
        logger.info("Membership added", tenant_id=tenant_id, user_id=user_id, role=role_slug)
        return membership

    async def remove_member(self, membership: TenantMembership) -> None:
        """
        Remove a membership.

        Raises:
            LastOwnerViolation: If it is the tenant's only owner membership
        """
        if membership.role.slug == OWNER_ROLE:
            await self._guard_last_owner(membership)

        tenant_id = membership.tenant_id
        await self.session.delete(membership)
        await self.session.flush()

        await self.seats.record(tenant_id)
        logger.info("Membership removed", tenant_id=tenant_id, user_id=membership.user_id)

    async def change_role(self, membership: TenantMembership, role_slug: str) -> TenantMembership:
        """
        Assign a different role to a membership.

        Raises:
            LastOwnerViolation: If this demotes the tenant's only owner
        """
        role = await get_role(self.session, role_slug)
        if membership.role.slug == OWNER_ROLE and role.slug != OWNER_ROLE:
            await self._guard_last_owner(membership)

        membership.role_id = role.id
        membership.role = role
        await self.session.flush()

        logger.info("Membership role changed", tenant_id=membership.tenant_id,
                    user_id=membership.user_id, role=role_slug)
        return membership

    async def _guard_last_owner(self, membership: TenantMembership) -> None:
        # Row locks serialize concurrent owner removals on backends that support them.
        result = await self.session.execute(
            select(TenantMembership.id)
            .join(Role, Role.id == TenantMembership.role_id)
            .where(
                TenantMembership.tenant_id == membership.tenant_id,
                Role.slug == OWNER_ROLE,
                TenantMembership.id != membership.id,
            )
            .with_for_update(of=TenantMembership)
        )
        if not result.scalars().all():
            logger.warning("Last owner protected", tenant_id=membership.tenant_id, user_id=membership.user_id)
            raise LastOwnerViolation(membership.tenant_id)

    async def _find(self, tenant_id: str, user_id: str) -> Optional[TenantMembership]:
        result = await self.session.execute(
            select(TenantMembership).where(
                TenantMembership.tenant_id == tenant_id,
                TenantMembership.user_id == user_id,
            )
        )
        return result.unique().scalar_one_or_none()
