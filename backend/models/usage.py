"""
Append-only metering ledgers: usage records and seat snapshots.

Rows in these tables are facts. Normal operation only ever inserts;
per-period figures are computed by windowing on recorded_at.
"""

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint, Index, Enum as SAEnum

from .base import BaseModel, utcnow
from .enums import UsageType


class UsageRecord(BaseModel):
    """One consumption event for a tenant."""

    __tablename__ = "usage_records"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_usage_records_quantity_positive"),
        Index("idx_usage_records_tenant_recorded", "tenant_id", "recorded_at"),
    )

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    type = Column(
        SAEnum(UsageType, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    quantity = Column(Integer, nullable=False)
    recorded_at = Column(DateTime, default=utcnow, nullable=False)


class SeatSnapshot(BaseModel):
    """Seat count of a tenant right after a membership change."""

    __tablename__ = "seat_snapshots"
    __table_args__ = (
        Index("idx_seat_snapshots_tenant_recorded", "tenant_id", "recorded_at"),
    )

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    seat_count = Column(Integer, nullable=False)
    recorded_at = Column(DateTime, default=utcnow, nullable=False)
