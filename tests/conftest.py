"""
Shared fixtures: in-memory database, Stripe and job fakes, fixed clock.
"""

import itertools
import json
import os
from datetime import datetime, timedelta

os.environ["APP_URL"] = "http://platform.test"
os.environ["APP_KEY"] = "test-app-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billing.exceptions import ExternalBillingUnavailable, WebhookVerificationException
from billing.stripe_config import StripeConfig, StripeEnvironment
from core.config import app_config_manager
from core.memberships import MembershipService, ensure_default_roles
from models import (
    Base,
    BillingInterval,
    Module,
    SubscriptionStatus,
    Tenant,
    TenantSubscription,
    User,
)


NOW = datetime(2026, 3, 15, 12, 0, 0)
VALID_SIGNATURE = "t=1,v1=valid"


def fixed_clock() -> datetime:
    return NOW


class FakeStripeClient:
    """In-memory stand-in for StripeClient with the same method surface."""

    def __init__(self, config: StripeConfig = None, configured: bool = True):
        self.config = config or StripeConfig(
            environment=StripeEnvironment.DEVELOPMENT,
            secret_key="sk_test_fake" if configured else "",
            webhook_secret="whsec_fake",
        )
        self.products = {}
        self.prices = {}
        self.meters = {}
        self.subscriptions = {}
        self.customers = []
        self.checkout_sessions = []
        self.usage_reports = []
        self.meter_events = []
        self.deactivated = []
        self.failing = set()
        self._ids = itertools.count(1)

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _next(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise ExternalBillingUnavailable(f"{name} failed", stripe_error_type="APIConnectionError")

    def create_customer(self, email, name=None, metadata=None, idempotency_key=None):
        self._maybe_fail("create_customer")
        for customer in self.customers:
            if idempotency_key and customer["idempotency_key"] == idempotency_key:
                return customer["id"]
        customer_id = self._next("cus")
        self.customers.append({
            "id": customer_id, "email": email, "metadata": metadata or {}, "idempotency_key": idempotency_key,
        })
        return customer_id

    def retrieve_product(self, product_id):
        return self.products.get(product_id)

    def create_product(self, product_id, name, description=None):
        self._maybe_fail("create_product")
        self.products[product_id] = {"id": product_id, "name": name, "description": description}
        return self.products[product_id]

    def update_product(self, product_id, **fields):
        self.products[product_id].update(fields)
        return self.products[product_id]

    def retrieve_price(self, price_id):
        return self.prices.get(price_id)

    def create_price(self, product_id, interval, unit_amount=None, tiers=None, meter_id=None):
        self._maybe_fail("create_price")
        price = {
            "id": self._next("price"),
            "product": product_id,
            "active": True,
            "unit_amount": unit_amount,
            "recurring": {"interval": interval, "meter": meter_id},
            "tiers": None,
        }
        if tiers is not None:
            # Stripe reports the open-ended tier as up_to None
            price["tiers"] = [
                {"up_to": None if tier["up_to"] == "inf" else tier["up_to"],
                 "unit_amount": tier["unit_amount"], "flat_amount": None}
                for tier in tiers
            ]
        self.prices[price["id"]] = price
        return price

    def deactivate_price(self, price_id):
        self.prices[price_id]["active"] = False
        self.deactivated.append(price_id)

    def retrieve_meter(self, meter_id):
        return self.meters.get(meter_id)

    def find_meter_by_event_name(self, event_name):
        for meter in self.meters.values():
            if meter["event_name"] == event_name:
                return meter
        return None

    def create_meter(self, display_name, event_name):
        meter = {"id": self._next("mtr"), "display_name": display_name, "event_name": event_name}
        self.meters[meter["id"]] = meter
        return meter

    def report_meter_usage(self, event_name, customer_id, quantity, identifier=None, timestamp=None):
        self._maybe_fail("report_meter_usage")
        self.meter_events.append((event_name, customer_id, quantity))

    def retrieve_subscription(self, subscription_id):
        self._maybe_fail("retrieve_subscription")
        return self.subscriptions.get(subscription_id)

    def find_subscription_item_id(self, subscription_id, price_id):
        subscription = self.retrieve_subscription(subscription_id)
        if subscription is None:
            return None
        for item in subscription["items"]["data"]:
            if item["price"]["id"] == price_id:
                return item["id"]
        return None

    def set_usage(self, subscription_item_id, quantity, timestamp=None):
        self._maybe_fail("set_usage")
        self.usage_reports.append((subscription_item_id, quantity))

    def create_checkout_session(self, line_items, customer_email, success_url, cancel_url,
                                trial_period_days=None, metadata=None):
        self._maybe_fail("create_checkout_session")
        session_id = self._next("cs_test")
        self.checkout_sessions.append({
            "id": session_id,
            "line_items": line_items,
            "customer_email": customer_email,
            "trial_period_days": trial_period_days,
            "metadata": metadata or {},
        })
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def verify_webhook_signature(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise WebhookVerificationException("Invalid signature")
        return json.loads(payload)

    def add_subscription(self, subscription_id, price_ids, current_period_end=None, trial_end=None):
        """Register a provider subscription with one item per price id."""
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "status": "trialing" if trial_end else "active",
            "trial_end": trial_end,
            "current_period_end": current_period_end,
            "items": {"data": [
                {"id": f"si_{price_id}", "price": {"id": price_id}} for price_id in price_ids
            ]},
        }
        return self.subscriptions[subscription_id]


class FakeDispatcher:
    """Records enqueued jobs instead of talking to Redis."""

    def __init__(self):
        self.jobs = []
        self.failures = 0

    async def dispatch(self, function, *args, **kwargs):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("Redis unavailable")
        self.jobs.append((function, args))

    async def close(self):
        pass

    def named(self, function):
        return [args for name, args in self.jobs if name == function]


class Factory:
    """Row builders for the current test session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._counter = itertools.count(1)

    async def tenant(self, slug=None, is_active=True, **fields) -> Tenant:
        slug = slug or f"tenant-{next(self._counter)}"
        tenant = Tenant(name=fields.pop("name", slug.title()), slug=slug, is_active=is_active, **fields)
        self.session.add(tenant)
        await self.session.flush()
        return tenant

    async def user(self, email=None, **fields) -> User:
        email = email or f"user{next(self._counter)}@example.com"
        user = User(email=email, name=fields.pop("name", email.split("@")[0]), **fields)
        self.session.add(user)
        await self.session.flush()
        return user

    async def member(self, tenant: Tenant, role: str = "member", user: User = None):
        user = user or await self.user()
        return await MembershipService(self.session, clock=fixed_clock).add_member(tenant.id, user.id, role)

    async def subscription(self, tenant: Tenant, **fields) -> TenantSubscription:
        values = {
            "status": SubscriptionStatus.ACTIVE,
            "billing_interval": BillingInterval.MONTHLY,
            "module_slugs": [],
            "seat_limit": 5,
            "usage_quota": 1000,
            "current_period_end": NOW + timedelta(days=10),
        }
        values.update(fields)
        subscription = TenantSubscription(tenant_id=tenant.id, **values)
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def module(self, slug, **fields) -> Module:
        values = {"name": slug.title(), "monthly_price_cents": 2900, "annual_price_cents": 29000}
        values.update(fields)
        module = Module(slug=slug, **values)
        self.session.add(module)
        await self.session.flush()
        return module


@pytest.fixture(autouse=True)
def reset_config():
    app_config_manager.reset()
    yield
    app_config_manager.reset()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        await ensure_default_roles(session)
        await session.commit()
        yield session


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
def stripe_fake():
    return FakeStripeClient()


@pytest.fixture
def unconfigured_stripe():
    return FakeStripeClient(configured=False)


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def app(session, session_factory, stripe_fake, dispatcher):
    from api.dependencies import get_stripe_client
    from core.events import EventBus
    from database import get_db
    from main import create_app

    app = create_app(session_factory=session_factory, dispatcher=dispatcher, events=EventBus())

    async def override_get_db():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_client] = lambda: stripe_fake
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://platform.test") as client:
        yield client
