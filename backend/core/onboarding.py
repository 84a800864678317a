"""
Onboarding completion for provisioned owners.

Provisioning creates a passwordless user and an inactive tenant. The owner
finishes setup here: name and password are set, the email counts as
verified (the setup link went to it), and the tenant is renamed, given its
chosen slug and activated.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.models import OnboardingRequest
from auth.password import get_password_hash
from models.base import utcnow
from models.membership import TenantMembership
from models.tenant import Tenant
from models.user import User

from .exceptions import TenancyException

logger = structlog.get_logger(__name__)


class OnboardingError(TenancyException):
    """Raised when onboarding cannot be completed"""

    status_code = 409

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="ONBOARDING_FAILED", **kwargs)


async def complete_onboarding(
    session: AsyncSession,
    user: User,
    data: OnboardingRequest,
    clock: Callable[[], datetime] = utcnow,
) -> Optional[Tenant]:
    """
    Finish onboarding for a provisioned user.

    Returns:
        The user's activated tenant, or None if the user has no membership

    Raises:
        OnboardingError: If onboarding is already complete or the slug is taken
    """
    if user.has_completed_onboarding:
        raise OnboardingError("Onboarding has already been completed.")

    result = await session.execute(
        select(Tenant)
        .join(TenantMembership, TenantMembership.tenant_id == Tenant.id)
        .where(TenantMembership.user_id == user.id)
        .order_by(TenantMembership.created_at)
        .limit(1)
    )
    tenant = result.scalar_one_or_none()

    if tenant is not None and data.slug != tenant.slug:
        taken = await session.scalar(select(exists().where(Tenant.slug == data.slug, Tenant.id != tenant.id)))
        if taken:
            raise OnboardingError(f"The subdomain '{data.slug}' is already taken.", details={"slug": data.slug})

    now = clock()
    user.name = data.name
    user.password_hash = get_password_hash(data.password)
    user.onboarding_completed_at = now
    user.email_verified_at = now

    if tenant is not None:
        tenant.name = data.organisation_name
        tenant.slug = data.slug
        tenant.is_active = True

    await session.commit()

    logger.info("Onboarding completed", user_id=user.id, tenant_id=tenant.id if tenant else None)
    return tenant
