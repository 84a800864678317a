"""
Platform Billing Module

Stripe integration, subscription lifecycle, seat and usage metering,
tenant provisioning and catalog synchronization.

Features:
- Checkout and tenant provisioning from completed checkouts
- Subscription state machine driven by Stripe webhooks
- Seat and usage ledgers reported as metered overage
- Deterministic product/price sync of the module catalog
"""

from .stripe_client import StripeClient
from .exceptions import (
    BillingException,
    ExternalBillingUnavailable,
    UnknownExternalReference,
    DuplicateProvisioning,
    WebhookVerificationException,
    InvalidModuleSelection
)

__all__ = [
    "StripeClient",
    "BillingException",
    "ExternalBillingUnavailable",
    "UnknownExternalReference",
    "DuplicateProvisioning",
    "WebhookVerificationException",
    "InvalidModuleSelection"
]
