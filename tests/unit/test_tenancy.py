"""
Unit tests for the tenancy context and tenant-scoped data access
"""

import pytest

from core.exceptions import NoTenantResolved
from core.tenancy import TenancyContext, tenant_url
from core.tenant_scope import TenantScopedRepository
from models import Tenant, UsageRecord, UsageType

from conftest import NOW


class TestTenancyContext:
    """Request-scoped tenant holder"""

    def test_empty_context(self):
        context = TenancyContext()

        assert context.get() is None
        assert context.tenant_id is None
        assert not context.has_tenant()

    def test_current_without_tenant_raises(self):
        with pytest.raises(NoTenantResolved) as exc_info:
            TenancyContext().current()

        assert exc_info.value.status_code == 403
        assert exc_info.value.code == "NO_TENANT_RESOLVED"

    def test_set_and_clear(self):
        tenant = Tenant(id="t-1", name="Acme", slug="acme", is_active=True)
        context = TenancyContext()

        context.set(tenant)
        assert context.current() is tenant
        assert context.tenant_id == "t-1"

        context.clear()
        assert context.get() is None

    def test_contexts_are_independent(self):
        first = TenancyContext(Tenant(id="t-1", name="A", slug="a"))
        second = TenancyContext()

        assert first.has_tenant()
        assert not second.has_tenant()

    def test_tenant_url(self):
        tenant = Tenant(id="t-1", name="Acme", slug="acme")

        assert tenant_url(tenant, "/dashboard") == "http://acme.platform.test/dashboard"


@pytest.fixture
async def two_tenants(session, factory):
    acme = await factory.tenant("acme")
    globex = await factory.tenant("globex")
    session.add_all([
        UsageRecord(tenant_id=acme.id, type=UsageType.API_CALLS, quantity=3, recorded_at=NOW),
        UsageRecord(tenant_id=acme.id, type=UsageType.REPORTS, quantity=1, recorded_at=NOW),
        UsageRecord(tenant_id=globex.id, type=UsageType.API_CALLS, quantity=7, recorded_at=NOW),
    ])
    await session.commit()
    return acme, globex


@pytest.mark.asyncio
async def test_scoped_reads_only_see_current_tenant(session, two_tenants):
    acme, globex = two_tenants
    repository = TenantScopedRepository(session, TenancyContext(acme), UsageRecord)

    records = await repository.all()

    assert len(records) == 2
    assert {record.tenant_id for record in records} == {acme.id}
    assert await repository.count() == 2
    assert await repository.count(UsageRecord.type == UsageType.REPORTS) == 1


@pytest.mark.asyncio
async def test_get_refuses_other_tenants_row(session, two_tenants):
    acme, globex = two_tenants
    foreign = (await TenantScopedRepository(session, TenancyContext(globex), UsageRecord).all())[0]

    repository = TenantScopedRepository(session, TenancyContext(acme), UsageRecord)

    assert await repository.get(foreign.id) is None


@pytest.mark.asyncio
async def test_reads_without_tenant_return_nothing(session, two_tenants):
    repository = TenantScopedRepository(session, TenancyContext(), UsageRecord)

    assert await repository.all() == []
    assert await repository.first() is None
    assert await repository.count() == 0


@pytest.mark.asyncio
async def test_write_without_tenant_raises(session):
    repository = TenantScopedRepository(session, TenancyContext(), UsageRecord)

    with pytest.raises(NoTenantResolved):
        repository.add(UsageRecord(type=UsageType.API_CALLS, quantity=1, recorded_at=NOW))


@pytest.mark.asyncio
async def test_write_stamps_current_tenant(session, two_tenants):
    acme, globex = two_tenants
    repository = TenantScopedRepository(session, TenancyContext(acme), UsageRecord)

    record = repository.add(UsageRecord(type=UsageType.EXPORTS, quantity=2, recorded_at=NOW))
    await session.flush()

    assert record.tenant_id == acme.id
    assert await repository.count() == 3


@pytest.mark.asyncio
async def test_write_for_another_tenant_raises(session, two_tenants):
    acme, globex = two_tenants
    repository = TenantScopedRepository(session, TenancyContext(acme), UsageRecord)

    with pytest.raises(NoTenantResolved):
        repository.add(UsageRecord(tenant_id=globex.id, type=UsageType.API_CALLS, quantity=1, recorded_at=NOW))


def test_repository_requires_tenant_owned_model():
    with pytest.raises(TypeError):
        TenantScopedRepository(None, TenancyContext(), Tenant)
