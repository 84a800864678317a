"""
Domain notifications.

A small in-process publisher for events that leave the core, such as
"tenant provisioned" (consumed by the mail sender). Events are published
only after the producing transaction has committed.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Type

import structlog

from models.tenant import Tenant
from models.user import User

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TenantProvisioned:
    """A tenant and its owner were created from a completed checkout."""
    user: User
    tenant: Tenant


Handler = Callable[[object], Awaitable[None]]


class EventBus:
    """Maps event types to async handlers."""

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    async def publish(self, event: object) -> None:
        """
        Deliver event to every subscriber.

        A failing subscriber is logged and does not stop the others.
        """
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler failed", event=type(event).__name__,
                                 handler=getattr(handler, "__name__", repr(handler)))
