#!/usr/bin/env python3
"""
Billing Admin Script

Administrative triggers for billing maintenance:

    sync-catalog   create or update Stripe products and prices for the catalog
    lock-expired   lock read-only subscriptions whose grace period has ended
"""

import os
import sys
import asyncio
import argparse
import logging

# Add backend to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from billing.exceptions import ExternalBillingUnavailable
from billing.product_sync import StripeProductSync
from billing.stripe_client import StripeClient
from billing.stripe_config import validate_stripe_setup
from billing.subscription_lifecycle import SubscriptionStateMachine
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def sync_catalog(session_factory, stripe_client: StripeClient) -> int:
    """Sync seat, usage and module products to Stripe"""
    if not stripe_client.is_configured:
        print("⚠️ Stripe is not configured (STRIPE_SECRET_KEY unset); nothing to sync.")
        return 0

    status = validate_stripe_setup()
    print(f"Environment: {status['environment']}")

    async with session_factory() as session:
        try:
            result = await StripeProductSync(session, stripe_client).sync_all()
        except ExternalBillingUnavailable as e:
            print(f"❌ Stripe sync failed: {e.message}")
            return 1

    print(f"✅ Synced {result['modules']} module(s) plus seat and usage products")
    return 0


async def lock_expired(session_factory, stripe_client: StripeClient) -> int:
    """Lock read-only subscriptions past their grace period"""
    async with session_factory() as session:
        count = await SubscriptionStateMachine(session, config=stripe_client.config).lock_expired_read_only()

    print(f"Updated {count} subscription(s) from read-only to locked.")
    return 0


COMMANDS = {
    "sync-catalog": sync_catalog,
    "lock-expired": lock_expired,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Billing administration")
    parser.add_argument("command", choices=sorted(COMMANDS), help="Task to run")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    return parser


def main(argv=None, session_factory=None, stripe_client: StripeClient = None) -> int:
    """Main admin script"""
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if session_factory is None:
        from database import SessionLocal
        session_factory = SessionLocal

    try:
        return asyncio.run(COMMANDS[args.command](session_factory, stripe_client or StripeClient()))
    except KeyboardInterrupt:
        print("\n\nCancelled by user.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
