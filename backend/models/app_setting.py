"""
Generic key/value settings store.
"""

from typing import Any, Optional

from sqlalchemy import Column, String, Text, DateTime, select
from sqlalchemy.ext.asyncio import AsyncSession

from .base import Base, utcnow


class AppSetting(Base):
    """Keyed setting row. Used for provider ids that belong to no single entity."""

    __tablename__ = "app_settings"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @classmethod
    async def get(cls, session: AsyncSession, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the stored value for key, or default."""
        result = await session.execute(select(cls.value).where(cls.key == key))
        value = result.scalar_one_or_none()
        return value if value is not None else default

    @classmethod
    async def set(cls, session: AsyncSession, key: str, value: Any) -> None:
        """Insert or update key. Repeating the same call is harmless."""
        setting = await session.get(cls, key)
        if setting is None:
            session.add(cls(key=key, value=None if value is None else str(value)))
        else:
            setting.value = None if value is None else str(value)
        await session.flush()

    def __repr__(self) -> str:
        return f"<AppSetting(key='{self.key}')>"
