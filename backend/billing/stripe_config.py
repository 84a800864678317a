"""
Stripe Configuration Management

Configuration for the Stripe API credentials, webhook verification and the
platform's billing policy (trial length, seat minimums, overage pricing).
"""

import os
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from enum import Enum

from models.enums import BillingInterval

logger = logging.getLogger(__name__)


class StripeEnvironment(str, Enum):
    """Stripe environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class StripeConfig:
    """Stripe configuration settings"""
    environment: StripeEnvironment
    secret_key: str = ""
    webhook_secret: str = ""

    # API settings
    api_version: str = "2024-06-20"
    max_retries: int = 3

    # Billing policy
    default_currency: str = "usd"
    trial_period_days: int = 14
    min_seats: int = 5
    read_only_days: int = 30

    # Seat and usage overage pricing (minor units)
    seat_monthly_cents: int = 1500
    seat_annual_cents: int = 14400
    included_seats: Optional[int] = None
    usage_overage_cents: int = 10
    included_usage: int = 1000

    # Deterministic product identifiers
    product_id_prefix: str = "platform"

    def __post_init__(self):
        """Validate configuration after initialization"""
        if self.included_seats is None:
            self.included_seats = self.min_seats

        if not self.secret_key:
            logger.info("Stripe secret key not set; billing integration disabled")
            return

        if self.environment == StripeEnvironment.PRODUCTION:
            if not self.secret_key.startswith(("sk_live_", "rk_live_")):
                raise ValueError("Production environment requires live secret key")
        elif not self.secret_key.startswith(("sk_test_", "rk_test_")):
            logger.warning("Non-production environment should use test secret key")

        if self.webhook_secret and not self.webhook_secret.startswith("whsec_"):
            raise ValueError("Invalid webhook secret format")

    @property
    def is_configured(self) -> bool:
        """Whether Stripe credentials are present"""
        return bool(self.secret_key)

    @property
    def is_production(self) -> bool:
        """Check if this is a production configuration"""
        return self.environment == StripeEnvironment.PRODUCTION

    @property
    def usage_meter_event_name(self) -> str:
        """Event name of the billing meter behind the usage overage price"""
        return f"{self.product_id_prefix}_usage_overage"

    def seat_cents_for(self, interval: BillingInterval) -> int:
        if interval == BillingInterval.ANNUAL:
            return self.seat_annual_cents
        return self.seat_monthly_cents


class StripeConfigManager:
    """Loads and caches the Stripe configuration"""

    def __init__(self):
        self._config = None

    def _detect_environment(self) -> StripeEnvironment:
        """Detect current environment"""
        env = os.getenv("APP_ENVIRONMENT", "development").lower()

        if env == "production":
            return StripeEnvironment.PRODUCTION
        elif env == "staging":
            return StripeEnvironment.STAGING
        else:
            return StripeEnvironment.DEVELOPMENT

    def get_config(self) -> StripeConfig:
        """Get Stripe configuration for current environment"""
        if self._config is None:
            self._config = self._load_config()

        return self._config

    def reset(self) -> None:
        self._config = None

    def _load_config(self) -> StripeConfig:
        """Load configuration from environment variables"""
        environment = self._detect_environment()
        included_seats = os.getenv("BILLING_INCLUDED_SEATS")

        config = StripeConfig(
            environment=environment,
            secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),

            # Optional settings
            api_version=os.getenv("STRIPE_API_VERSION", "2024-06-20"),
            max_retries=int(os.getenv("STRIPE_MAX_RETRIES", "3")),

            # Billing policy
            default_currency=os.getenv("STRIPE_DEFAULT_CURRENCY", "usd").lower(),
            trial_period_days=int(os.getenv("BILLING_TRIAL_DAYS", "14")),
            min_seats=int(os.getenv("BILLING_MIN_SEATS", "5")),
            read_only_days=int(os.getenv("BILLING_READ_ONLY_DAYS", "30")),

            seat_monthly_cents=int(os.getenv("BILLING_SEAT_MONTHLY_CENTS", "1500")),
            seat_annual_cents=int(os.getenv("BILLING_SEAT_ANNUAL_CENTS", "14400")),
            included_seats=int(included_seats) if included_seats else None,
            usage_overage_cents=int(os.getenv("BILLING_USAGE_OVERAGE_CENTS", "10")),
            included_usage=int(os.getenv("BILLING_INCLUDED_USAGE", "1000")),

            product_id_prefix=os.getenv("BILLING_PRODUCT_ID_PREFIX", "platform"),
        )

        logger.info(f"Loaded Stripe configuration for {environment.value} environment")
        return config

    def get_webhook_events(self) -> List[str]:
        """Webhook events the platform handles"""
        return [
            "checkout.session.completed",
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "invoice.payment_failed",
        ]


# Global config manager instance
stripe_config_manager = StripeConfigManager()


def get_stripe_config() -> StripeConfig:
    """Get current Stripe configuration"""
    return stripe_config_manager.get_config()


def validate_stripe_setup() -> Dict[str, Any]:
    """Summarize the Stripe setup for the admin CLI"""
    config = get_stripe_config()

    return {
        "environment": config.environment.value,
        "is_production": config.is_production,
        "required_events": stripe_config_manager.get_webhook_events(),
        "configuration_status": {
            "secret_key_configured": bool(config.secret_key),
            "webhook_secret_configured": bool(config.webhook_secret),
        }
    }
