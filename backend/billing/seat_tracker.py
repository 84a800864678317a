"""
Seat metering.

Seats are tenant memberships. Every membership change appends a snapshot
of the post-change count; the billed figure for a period is the peak of
those snapshots.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utcnow
from models.membership import TenantMembership
from models.subscription import TenantSubscription
from models.usage import SeatSnapshot

logger = logging.getLogger(__name__)


class SeatTracker:
    """Records seat snapshots and computes current and peak seat counts."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    async def current_seat_count(self, tenant_id: str) -> int:
        """Live count of memberships for the tenant."""
        result = await self.session.execute(
            select(func.count())
            .select_from(TenantMembership)
            .where(TenantMembership.tenant_id == tenant_id)
        )
        return result.scalar_one()

    async def record(self, tenant_id: str) -> SeatSnapshot:
        """
        Append a snapshot of the tenant's current seat count.

        Must be called after the membership change has been flushed so the
        count reflects it. Never updates an earlier snapshot.
        """
        count = await self.current_seat_count(tenant_id)
        snapshot = SeatSnapshot(tenant_id=tenant_id, seat_count=count, recorded_at=self.clock())
        self.session.add(snapshot)
        await self.session.flush()

        logger.debug(f"Recorded seat snapshot for tenant {tenant_id}: {count}")
        return snapshot

    async def peak_seat_count(self, tenant_id: str,
                              subscription: Optional[TenantSubscription] = None) -> int:
        """
        Peak seat count for the current billing period.

        Falls back to the live count when the subscription has no period end
        or no snapshot falls inside the period.
        """
        if subscription is None:
            subscription = await self._subscription(tenant_id)

        period_start = subscription.period_start() if subscription else None
        if period_start is None:
            return await self.current_seat_count(tenant_id)

        result = await self.session.execute(
            select(func.max(SeatSnapshot.seat_count)).where(
                SeatSnapshot.tenant_id == tenant_id,
                SeatSnapshot.recorded_at >= period_start,
            )
        )
        peak = result.scalar_one_or_none()
        if peak is None:
            return await self.current_seat_count(tenant_id)
        return int(peak)

    async def _subscription(self, tenant_id: str) -> Optional[TenantSubscription]:
        result = await self.session.execute(
            select(TenantSubscription).where(TenantSubscription.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()
