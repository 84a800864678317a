"""
Shared FastAPI dependencies for billing services.
"""

from functools import lru_cache

from fastapi import Request

from billing.stripe_client import StripeClient
from core.events import EventBus
from workers.dispatch import JobDispatcher


@lru_cache
def get_stripe_client() -> StripeClient:
    """Process-wide Stripe client"""
    return StripeClient()


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.events
