"""
Tenant-scoped data access.

Every query built here is constrained to the tenant held by the given
TenancyContext. With no tenant resolved, reads return nothing and writes
raise NoTenantResolved.
"""

from typing import Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, false, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import NoTenantResolved
from .tenancy import TenancyContext

ModelT = TypeVar("ModelT")


class TenantScopedRepository(Generic[ModelT]):
    """
    Query helper for a model that carries a ``tenant_id`` column.

    Args:
        session: Database session
        context: Tenancy context of the current unit of work
        model: Tenant-owned model class
    """

    def __init__(self, session: AsyncSession, context: TenancyContext, model: Type[ModelT]):
        if not hasattr(model, "tenant_id"):
            raise TypeError(f"{model.__name__} is not tenant-owned")
        self.session = session
        self.context = context
        self.model = model

    def scoped(self, stmt: Optional[Select] = None) -> Select:
        """Apply the tenant filter to stmt (or a plain select of the model)."""
        if stmt is None:
            stmt = select(self.model)

        tenant_id = self.context.tenant_id
        if tenant_id is None:
            return stmt.where(false())
        return stmt.where(self.model.tenant_id == tenant_id)

    async def all(self, *criteria) -> Sequence[ModelT]:
        result = await self.session.execute(self.scoped().where(*criteria))
        return result.scalars().all()

    async def first(self, *criteria) -> Optional[ModelT]:
        result = await self.session.execute(self.scoped().where(*criteria).limit(1))
        return result.scalars().first()

    async def get(self, record_id: str) -> Optional[ModelT]:
        """Fetch by primary key, only if the row belongs to the current tenant."""
        return await self.first(self.model.id == record_id)

    async def count(self, *criteria) -> int:
        stmt = self.scoped(select(func.count()).select_from(self.model)).where(*criteria)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    def add(self, instance: ModelT) -> ModelT:
        """
        Stage a new tenant-owned row for the current tenant.

        Raises:
            NoTenantResolved: If the context holds no tenant
            NoTenantResolved: If the instance names a different tenant
        """
        tenant_id = self.context.tenant_id
        if tenant_id is None:
            raise NoTenantResolved("Cannot write tenant-owned data without a resolved tenant.")

        current = getattr(instance, "tenant_id", None)
        if current is not None and current != tenant_id:
            raise NoTenantResolved("Refusing to write a row owned by another tenant.")

        instance.tenant_id = tenant_id
        self.session.add(instance)
        return instance
