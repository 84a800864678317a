"""
Billing API Endpoints

Stripe webhook intake, checkout start and the tenant usage summary.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, status, Request, Header
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from billing.checkout import CheckoutSessionBuilder
from billing.exceptions import InvalidModuleSelection, WebhookVerificationException, ExternalBillingUnavailable
from billing.seat_tracker import SeatTracker
from billing.stripe_client import StripeClient
from billing.usage_tracker import UsageTracker
from billing.webhook_handler import StripeWebhookHandler
from core.config import get_app_config
from core.events import EventBus
from core.tenancy import TenancyContext
from core.tenant_scope import TenantScopedRepository
from middleware.tenant_resolver import get_tenancy, require_tenant
from models.enums import BillingInterval
from models.subscription import TenantSubscription
from models.tenant import Tenant
from workers.dispatch import JobDispatcher

from .dependencies import get_dispatcher, get_event_bus, get_stripe_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to start a checkout"""
    email: EmailStr = Field(..., description="Buyer email")
    module_slugs: List[str] = Field(..., min_length=1, description="Chosen module slugs")
    billing_interval: BillingInterval = Field(BillingInterval.MONTHLY, description="Billing interval")
    seat_limit: Optional[int] = Field(None, ge=1, description="Seats to purchase")
    usage_quota: Optional[int] = Field(None, ge=0, description="Included usage per period")


class CheckoutResponse(BaseModel):
    """Stripe-hosted checkout URL"""
    url: str


class SeatSummary(BaseModel):
    current: int
    peak: int
    limit: int


class UsageSummary(BaseModel):
    current: int
    remaining: int
    quota: int
    over_quota: bool


class UsageSummaryResponse(BaseModel):
    """Seat and usage consumption of the current tenant"""
    tenant_id: str
    status: Optional[str]
    is_active: bool
    is_read_only: bool
    is_past_due: bool
    seats: SeatSummary
    usage: UsageSummary


@router.post("/webhooks/stripe", response_class=PlainTextResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    events: EventBus = Depends(get_event_bus),
):
    """
    Handle Stripe webhook events.

    Signature failures answer 400; processing failures answer 500 so that
    Stripe retries the delivery.
    """
    body = await request.body()

    if not stripe_signature:
        logger.error("Missing Stripe signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header"
        )

    webhook_handler = StripeWebhookHandler(db, stripe_client, dispatcher=dispatcher, events=events)

    try:
        result = await webhook_handler.handle_webhook(body, stripe_signature)
    except WebhookVerificationException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )

    logger.info(f"Webhook processed: {result}")
    return "ok"


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def start_checkout(
    checkout: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    stripe_client: StripeClient = Depends(get_stripe_client),
):
    """Start a Stripe checkout for a new tenant"""
    if not stripe_client.is_configured:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Billing is not configured")

    app_url = get_app_config().app_url.rstrip("/")
    builder = CheckoutSessionBuilder(db, stripe_client)

    try:
        url = await builder.build(
            email=checkout.email,
            module_slugs=checkout.module_slugs,
            billing_interval=checkout.billing_interval,
            success_url=f"{app_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{app_url}/checkout/cancelled",
            seat_limit=checkout.seat_limit,
            usage_quota=checkout.usage_quota,
        )
    except InvalidModuleSelection as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                            detail={"message": e.message, "slugs": e.slugs})
    except ExternalBillingUnavailable:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Billing provider unavailable")

    return CheckoutResponse(url=url)


@router.get("/usage", response_model=UsageSummaryResponse)
async def get_usage_summary(
    tenant: Tenant = Depends(require_tenant),
    tenancy: TenancyContext = Depends(get_tenancy),
    db: AsyncSession = Depends(get_db),
):
    """Seat and usage consumption for the current billing period"""
    subscription = await TenantScopedRepository(db, tenancy, TenantSubscription).first()

    seats = SeatTracker(db)
    usage = UsageTracker(db)

    return UsageSummaryResponse(
        tenant_id=tenant.id,
        status=subscription.status.value if subscription else None,
        is_active=bool(subscription and subscription.is_active),
        is_read_only=bool(subscription and subscription.is_read_only),
        is_past_due=bool(subscription and subscription.is_past_due),
        seats=SeatSummary(
            current=await seats.current_seat_count(tenant.id),
            peak=await seats.peak_seat_count(tenant.id, subscription),
            limit=subscription.seat_limit if subscription else 0,
        ),
        usage=UsageSummary(
            current=await usage.current_period_usage(tenant.id, subscription),
            remaining=await usage.remaining_quota(tenant.id, subscription),
            quota=subscription.usage_quota if subscription else 0,
            over_quota=await usage.is_over_quota(tenant.id, subscription),
        ),
    )
