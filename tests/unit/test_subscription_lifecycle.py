"""
Unit tests for the subscription state machine and the read-only sweep
"""

from datetime import datetime, timedelta, timezone

import pytest

from billing.exceptions import UnknownExternalReference
from billing.subscription_lifecycle import SubscriptionStateMachine, from_timestamp, period_end_of
from models import SubscriptionStatus

from conftest import NOW, fixed_clock


def ts(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


@pytest.fixture
def machine(session, dispatcher, stripe_fake):
    return SubscriptionStateMachine(session, dispatcher, config=stripe_fake.config, clock=fixed_clock)


@pytest.fixture
async def subscription(session, factory):
    tenant = await factory.tenant()
    subscription = await factory.subscription(
        tenant,
        stripe_subscription_id="sub_123",
        current_period_end=NOW + timedelta(days=10),
    )
    await session.commit()
    return subscription


def test_from_timestamp_is_naive_utc():
    assert from_timestamp(0) == datetime(1970, 1, 1)
    assert from_timestamp(None) is None


def test_period_end_falls_back_to_items():
    payload = {"items": {"data": [{"current_period_end": 100}, {"current_period_end": 200}]}}

    assert period_end_of(payload) == 200
    assert period_end_of({"current_period_end": 50, "items": {"data": []}}) == 50
    assert period_end_of({}) is None


@pytest.mark.parametrize("stripe_status,expected", [
    ("active", SubscriptionStatus.ACTIVE),
    ("trialing", SubscriptionStatus.TRIALING),
    ("past_due", SubscriptionStatus.PAST_DUE),
    ("canceled", SubscriptionStatus.CANCELLED),
])
@pytest.mark.asyncio
async def test_updated_maps_status(machine, subscription, stripe_status, expected):
    await machine.handle_subscription_updated({"id": "sub_123", "status": stripe_status})

    assert subscription.status == expected


@pytest.mark.asyncio
async def test_unmapped_status_leaves_status_unchanged(machine, subscription):
    await machine.handle_subscription_updated({"id": "sub_123", "status": "incomplete"})

    assert subscription.status == SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_period_rollover_requests_seat_report(machine, subscription, dispatcher):
    new_end = NOW + timedelta(days=40)

    result = await machine.handle_subscription_updated({
        "id": "sub_123",
        "status": "active",
        "current_period_end": ts(new_end),
    })

    assert result["period_rolled_over"] is True
    assert subscription.current_period_end == new_end
    assert dispatcher.named("report_seats") == [(subscription.tenant_id,)]


@pytest.mark.asyncio
async def test_failed_seat_report_dispatch_is_retried_on_redelivery(machine, subscription, dispatcher):
    previous_end = subscription.current_period_end
    payload = {"id": "sub_123", "status": "active", "current_period_end": ts(NOW + timedelta(days=40))}
    dispatcher.failures = 1

    with pytest.raises(ConnectionError):
        await machine.handle_subscription_updated(payload)

    assert subscription.current_period_end == previous_end
    assert dispatcher.jobs == []

    result = await machine.handle_subscription_updated(payload)

    assert result["period_rolled_over"] is True
    assert dispatcher.named("report_seats") == [(subscription.tenant_id,)]


@pytest.mark.asyncio
async def test_same_period_requests_nothing(machine, subscription, dispatcher):
    result = await machine.handle_subscription_updated({
        "id": "sub_123",
        "status": "active",
        "current_period_end": ts(NOW + timedelta(days=10)),
    })

    assert result["period_rolled_over"] is False
    assert dispatcher.jobs == []


@pytest.mark.asyncio
async def test_rollover_while_past_due_is_not_reported(machine, subscription, dispatcher):
    await machine.handle_subscription_updated({
        "id": "sub_123",
        "status": "past_due",
        "current_period_end": ts(NOW + timedelta(days=40)),
    })

    assert dispatcher.jobs == []


@pytest.mark.asyncio
async def test_trial_end_is_recorded(machine, subscription):
    trial_end = NOW + timedelta(days=14)

    await machine.handle_subscription_updated({"id": "sub_123", "status": "trialing", "trial_end": ts(trial_end)})

    assert subscription.trial_ends_at == trial_end


@pytest.mark.asyncio
async def test_deleted_starts_read_only_grace(machine, subscription):
    result = await machine.handle_subscription_deleted({"id": "sub_123"})

    assert subscription.status == SubscriptionStatus.READ_ONLY
    assert subscription.read_only_ends_at == NOW + timedelta(days=30)
    assert result["action"] == "subscription_deleted"


@pytest.mark.asyncio
async def test_payment_failed_marks_past_due(machine, subscription):
    await machine.handle_invoice_payment_failed({"subscription": "sub_123"})

    assert subscription.status == SubscriptionStatus.PAST_DUE


@pytest.mark.asyncio
async def test_payment_failed_with_nested_subscription_reference(machine, subscription):
    invoice = {"parent": {"subscription_details": {"subscription": "sub_123"}}}

    await machine.handle_invoice_payment_failed(invoice)

    assert subscription.status == SubscriptionStatus.PAST_DUE


@pytest.mark.asyncio
async def test_unknown_subscription_is_reported(machine, subscription):
    with pytest.raises(UnknownExternalReference) as exc_info:
        await machine.handle_subscription_updated({"id": "sub_other", "status": "active"})
    assert exc_info.value.reference == "sub_other"

    with pytest.raises(UnknownExternalReference):
        await machine.handle_subscription_deleted({"id": "sub_other"})
    with pytest.raises(UnknownExternalReference):
        await machine.handle_invoice_payment_failed({"subscription": None})

    assert subscription.status == SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_replayed_deletion_converges(machine, subscription):
    await machine.handle_subscription_deleted({"id": "sub_123"})
    await machine.handle_subscription_deleted({"id": "sub_123"})

    assert subscription.status == SubscriptionStatus.READ_ONLY
    assert subscription.read_only_ends_at == NOW + timedelta(days=30)


@pytest.mark.asyncio
async def test_sweep_locks_only_expired_read_only(session, factory, machine):
    expired = await factory.subscription(
        await factory.tenant(), status=SubscriptionStatus.READ_ONLY,
        read_only_ends_at=NOW - timedelta(days=1),
    )
    grace = await factory.subscription(
        await factory.tenant(), status=SubscriptionStatus.READ_ONLY,
        read_only_ends_at=NOW + timedelta(days=1),
    )
    active = await factory.subscription(await factory.tenant())
    await session.commit()

    count = await machine.lock_expired_read_only()

    for subscription in (expired, grace, active):
        await session.refresh(subscription)
    assert count == 1
    assert expired.status == SubscriptionStatus.LOCKED
    assert grace.status == SubscriptionStatus.READ_ONLY
    assert active.status == SubscriptionStatus.ACTIVE

    assert await machine.lock_expired_read_only() == 0
