"""
Stripe API client

The only module that talks to the Stripe SDK. Every SDK error is wrapped in
ExternalBillingUnavailable so callers deal with a single failure type;
"resource missing" lookups return None instead of raising.
"""

import logging
import time
from typing import Dict, List, Optional, Any

import stripe

from .exceptions import ExternalBillingUnavailable, WebhookVerificationException
from .stripe_config import StripeConfig, get_stripe_config


logger = logging.getLogger(__name__)


def _wrap(e: stripe.StripeError, action: str) -> ExternalBillingUnavailable:
    logger.error(f"Stripe call failed while trying to {action}: {e}")
    return ExternalBillingUnavailable(
        message=str(e),
        stripe_error_code=getattr(e, "code", None),
        stripe_error_type=type(e).__name__,
    )


def _is_missing(e: stripe.StripeError) -> bool:
    return isinstance(e, stripe.InvalidRequestError) and getattr(e, "code", None) == "resource_missing"


class StripeClient:
    """
    Thin wrapper around the Stripe SDK for the operations the platform uses:
    customers, products, prices, billing meters, subscription items,
    usage records, checkout sessions and webhook verification.
    """

    def __init__(self, config: StripeConfig = None):
        """
        Initialize Stripe client

        Args:
            config: Stripe configuration (defaults to the process configuration)
        """
        self.config = config or get_stripe_config()
        self.api_key = self.config.secret_key
        self.webhook_secret = self.config.webhook_secret

        stripe.api_key = self.api_key or None
        stripe.api_version = self.config.api_version
        stripe.max_network_retries = self.config.max_retries

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    # Customers

    def create_customer(self, email: str, name: str = None,
                        metadata: Dict[str, str] = None,
                        idempotency_key: Optional[str] = None) -> str:
        """
        Create a new Stripe customer

        Args:
            email: Customer email
            name: Display name
            metadata: Stripe metadata
            idempotency_key: Makes retries return the customer created first

        Returns:
            Stripe customer ID

        Raises:
            ExternalBillingUnavailable: If customer creation fails
        """
        try:
            customer_data = {"email": email, "metadata": metadata or {}}
            if name:
                customer_data["name"] = name
            if idempotency_key:
                customer_data["idempotency_key"] = idempotency_key

            customer = stripe.Customer.create(**customer_data)
            logger.info(f"Created Stripe customer: {customer['id']}")
            return customer["id"]
        except stripe.StripeError as e:
            raise _wrap(e, "create customer")

    # Products

    def retrieve_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Return the product, or None if it does not exist."""
        try:
            return stripe.Product.retrieve(product_id)
        except stripe.StripeError as e:
            if _is_missing(e):
                return None
            raise _wrap(e, f"retrieve product {product_id}")

    def create_product(self, product_id: str, name: str,
                       description: Optional[str] = None) -> Dict[str, Any]:
        """Create a product with a caller-chosen (deterministic) id."""
        try:
            params = {"id": product_id, "name": name}
            if description:
                params["description"] = description
            product = stripe.Product.create(**params)
            logger.info(f"Created Stripe product: {product_id}")
            return product
        except stripe.StripeError as e:
            raise _wrap(e, f"create product {product_id}")

    def update_product(self, product_id: str, **fields) -> Dict[str, Any]:
        try:
            return stripe.Product.modify(product_id, **fields)
        except stripe.StripeError as e:
            raise _wrap(e, f"update product {product_id}")

    # Prices

    def retrieve_price(self, price_id: str) -> Optional[Dict[str, Any]]:
        """Return the price with its tiers expanded, or None if it does not exist."""
        try:
            return stripe.Price.retrieve(price_id, expand=["tiers"])
        except stripe.StripeError as e:
            if _is_missing(e):
                return None
            raise _wrap(e, f"retrieve price {price_id}")

    def create_price(
        self,
        product_id: str,
        interval: str,
        unit_amount: Optional[int] = None,
        tiers: Optional[List[Dict[str, Any]]] = None,
        meter_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a recurring price.

        Args:
            product_id: Stripe product ID
            interval: "month" or "year"
            unit_amount: Flat amount in minor units (licensed price)
            tiers: Graduated tiers; makes the price metered
            meter_id: Billing meter backing a metered price

        Returns:
            The created price
        """
        recurring: Dict[str, Any] = {"interval": interval}
        params: Dict[str, Any] = {
            "product": product_id,
            "currency": self.config.default_currency,
        }

        if tiers is not None:
            recurring["usage_type"] = "metered"
            if meter_id:
                recurring["meter"] = meter_id
            else:
                recurring["aggregate_usage"] = "last_during_period"
            params["billing_scheme"] = "tiered"
            params["tiers_mode"] = "graduated"
            params["tiers"] = tiers
        else:
            params["unit_amount"] = unit_amount

        params["recurring"] = recurring

        try:
            price = stripe.Price.create(**params)
            logger.info(f"Created Stripe price: {price['id']} for product {product_id}")
            return price
        except stripe.StripeError as e:
            raise _wrap(e, f"create price for {product_id}")

    def deactivate_price(self, price_id: str) -> None:
        """Archive a price. Prices are immutable, so changes archive and recreate."""
        try:
            stripe.Price.modify(price_id, active=False)
            logger.info(f"Archived Stripe price: {price_id}")
        except stripe.StripeError as e:
            raise _wrap(e, f"archive price {price_id}")

    # Billing meters

    def retrieve_meter(self, meter_id: str) -> Optional[Dict[str, Any]]:
        try:
            return stripe.billing.Meter.retrieve(meter_id)
        except stripe.StripeError as e:
            if _is_missing(e):
                return None
            raise _wrap(e, f"retrieve meter {meter_id}")

    def find_meter_by_event_name(self, event_name: str) -> Optional[Dict[str, Any]]:
        try:
            meters = stripe.billing.Meter.list(limit=100)
        except stripe.StripeError as e:
            raise _wrap(e, "list meters")

        for meter in meters["data"]:
            if meter["event_name"] == event_name:
                return meter
        return None

    def create_meter(self, display_name: str, event_name: str) -> Dict[str, Any]:
        try:
            meter = stripe.billing.Meter.create(
                display_name=display_name,
                event_name=event_name,
                default_aggregation={"formula": "last"},
                customer_mapping={
                    "type": "by_id",
                    "event_payload_key": "stripe_customer_id",
                },
            )
            logger.info(f"Created Stripe billing meter: {meter['id']}")
            return meter
        except stripe.StripeError as e:
            raise _wrap(e, f"create meter {event_name}")

    def report_meter_usage(self, event_name: str, customer_id: str, quantity: int,
                           identifier: Optional[str] = None,
                           timestamp: Optional[int] = None) -> None:
        """
        Submit the absolute usage total to a billing meter.

        Meters are created with the "last" aggregation, so the latest event
        in the period is the billed quantity and re-sending a total is harmless.
        """
        params: Dict[str, Any] = {
            "event_name": event_name,
            "payload": {"stripe_customer_id": customer_id, "value": str(quantity)},
            "timestamp": timestamp or int(time.time()),
        }
        if identifier:
            params["identifier"] = identifier

        try:
            stripe.billing.MeterEvent.create(**params)
            logger.info(f"Reported meter usage {quantity} for customer {customer_id}")
        except stripe.StripeError as e:
            raise _wrap(e, f"report meter usage for {customer_id}")

    # Subscriptions

    def retrieve_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        """Return the subscription with its items expanded, or None if it does not exist."""
        try:
            return stripe.Subscription.retrieve(subscription_id, expand=["items"])
        except stripe.StripeError as e:
            if _is_missing(e):
                return None
            raise _wrap(e, f"retrieve subscription {subscription_id}")

    def find_subscription_item_id(self, subscription_id: str, price_id: str) -> Optional[str]:
        """Find the subscription line item billed at price_id."""
        subscription = self.retrieve_subscription(subscription_id)
        if subscription is None:
            return None

        for item in subscription["items"]["data"]:
            if item["price"]["id"] == price_id:
                return item["id"]
        return None

    def set_usage(self, subscription_item_id: str, quantity: int,
                  timestamp: Optional[int] = None) -> None:
        """
        Submit the absolute usage quantity for the current period.

        Uses action="set", so re-sending the same total is harmless.
        """
        try:
            stripe.SubscriptionItem.create_usage_record(
                subscription_item_id,
                quantity=quantity,
                action="set",
                timestamp=timestamp or int(time.time()),
            )
            logger.info(f"Reported usage {quantity} for subscription item {subscription_item_id}")
        except stripe.StripeError as e:
            raise _wrap(e, f"report usage for {subscription_item_id}")

    # Checkout

    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        customer_email: str,
        success_url: str,
        cancel_url: str,
        trial_period_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a subscription-mode checkout session."""
        subscription_data: Dict[str, Any] = {"metadata": metadata or {}}
        if trial_period_days:
            subscription_data["trial_period_days"] = trial_period_days

        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                line_items=line_items,
                customer_email=customer_email,
                success_url=success_url,
                cancel_url=cancel_url,
                subscription_data=subscription_data,
                metadata=metadata or {},
            )
            logger.info(f"Created Stripe checkout session: {session['id']}")
            return session
        except stripe.StripeError as e:
            raise _wrap(e, "create checkout session")

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify Stripe webhook signature and parse event

        Args:
            payload: Raw webhook body
            signature: Stripe-Signature header

        Returns:
            Parsed webhook event

        Raises:
            WebhookVerificationException: If verification fails
        """
        if not self.webhook_secret:
            raise WebhookVerificationException("Webhook secret not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            logger.info(f"Verified webhook event: {event['type']}")
            return event
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise WebhookVerificationException("Invalid payload")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise WebhookVerificationException("Invalid signature")
