"""
Module catalog management.

Administrative create/update of catalog modules. Changes that affect what
Stripe bills for enqueue a sync_module job; ordering and visibility edits
stay local.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.module import Module, SYNCED_FIELDS


logger = logging.getLogger(__name__)


EDITABLE_FIELDS = SYNCED_FIELDS + ("slug", "is_active", "sort_order")


class ModuleCatalog:
    """Catalog service. Commits its own changes before dispatching jobs."""

    def __init__(self, session: AsyncSession, dispatcher=None):
        self.session = session
        self.dispatcher = dispatcher

    async def active_modules(self) -> List[Module]:
        """Active modules in display order"""
        result = await self.session.execute(
            select(Module).where(Module.is_active.is_(True)).order_by(Module.sort_order, Module.name)
        )
        return list(result.scalars().all())

    async def get_by_slug(self, slug: str) -> Module:
        result = await self.session.execute(select(Module).where(Module.slug == slug))
        module = result.scalar_one_or_none()
        if module is None:
            raise LookupError(f"Module not found: {slug}")
        return module

    async def create_module(self, **fields: Any) -> Module:
        """Create a module and request its first Stripe sync."""
        module = Module(**self._editable(fields))
        self.session.add(module)
        await self.session.commit()

        logger.info(f"Created module {module.slug}")
        await self._request_sync(module)
        return module

    async def update_module(self, module: Module, **fields: Any) -> Module:
        """
        Apply field changes to a module.

        A sync is requested only when name, description or a price actually
        changed.
        """
        changed = []
        for name, value in self._editable(fields).items():
            if getattr(module, name) != value:
                setattr(module, name, value)
                changed.append(name)

        if not changed:
            return module

        await self.session.commit()
        logger.info(f"Updated module {module.slug}: {', '.join(changed)}")

        if any(name in SYNCED_FIELDS for name in changed):
            await self._request_sync(module)
        return module

    def _editable(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown module fields: {', '.join(sorted(unknown))}")
        return fields

    async def _request_sync(self, module: Module) -> None:
        if self.dispatcher is None:
            return
        try:
            await self.dispatcher.dispatch("sync_module", module.id)
        except Exception as e:
            logger.warning(f"Could not enqueue Stripe sync for module {module.slug}: {e}")
