"""
Stripe Webhook Handler

Verifies incoming Stripe events and routes the ones the platform acts on
to provisioning and the subscription state machine.
"""

import logging
from typing import Dict, Any
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from core.events import EventBus

from .exceptions import BillingException, UnknownExternalReference, WebhookVerificationException
from .provisioning import TenantProvisioningService
from .stripe_client import StripeClient
from .subscription_lifecycle import SubscriptionStateMachine

logger = logging.getLogger(__name__)


class StripeEventType(str, Enum):
    """Stripe webhook event types we handle"""
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class StripeWebhookHandler:
    """
    Handles Stripe webhook events and updates local billing state.

    Stripe delivers at least once, so every route is idempotent: checkout
    completion consumes its CheckoutSession, and status events converge on
    the same state when replayed.
    """

    def __init__(self, session: AsyncSession, stripe_client: StripeClient,
                 dispatcher=None, events: EventBus = None):
        """Initialize webhook handler"""
        self.stripe_client = stripe_client
        self.provisioning = TenantProvisioningService(session, stripe_client, events)
        self.state_machine = SubscriptionStateMachine(session, dispatcher, config=stripe_client.config)

    async def handle_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Handle incoming Stripe webhook.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header

        Returns:
            Processing result

        Raises:
            WebhookVerificationException: If the signature does not verify
            BillingException: If processing the verified event fails
        """
        event = self.stripe_client.verify_webhook_signature(payload, signature)
        event_id = event.get("id")

        try:
            result = await self.process_event(event)
        except WebhookVerificationException:
            raise
        except Exception as e:
            logger.error(f"Webhook processing failed for {event.get('type')} ({event_id}): {e}")
            raise BillingException(f"Webhook processing failed: {str(e)}")

        return {"status": "processed", "event_id": event_id, "result": result}

    async def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Process a verified Stripe event"""
        event_type = event.get("type")
        event_data = event.get("data", {}).get("object", {})

        logger.info(f"Processing Stripe event: {event_type}")

        try:
            if event_type == StripeEventType.CHECKOUT_SESSION_COMPLETED:
                return await self._handle_checkout_completed(event_data)
            elif event_type == StripeEventType.SUBSCRIPTION_UPDATED:
                return await self.state_machine.handle_subscription_updated(event_data)
            elif event_type == StripeEventType.SUBSCRIPTION_DELETED:
                return await self.state_machine.handle_subscription_deleted(event_data)
            elif event_type == StripeEventType.INVOICE_PAYMENT_FAILED:
                return await self.state_machine.handle_invoice_payment_failed(event_data)
        except UnknownExternalReference as e:
            logger.info(f"Ignoring {event_type}: {e.message}")
            return {"status": "ignored", "reason": f"unknown_{e.kind}"}

        logger.info(f"Unhandled event type: {event_type}")
        return {"status": "ignored", "reason": "unhandled_event_type"}

    async def _handle_checkout_completed(self, checkout: Dict[str, Any]) -> Dict[str, Any]:
        """Handle checkout.session.completed event"""
        provisioned = await self.provisioning.provision(checkout)
        if provisioned is None:
            return {"status": "ignored", "reason": "no_pending_checkout", "session_id": checkout.get("id")}

        return {
            "action": "tenant_provisioned",
            "session_id": checkout.get("id"),
            "tenant_id": provisioned.tenant.id,
            "tenant_slug": provisioned.tenant.slug,
        }
