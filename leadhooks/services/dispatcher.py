"""
Dispatcher - routes a claimed webhook to the business-logic handler registered
for its (platform, event_type).

Lookup is two-level: platform router first, then event handler. A platform with
no router goes to the generic handler; a known platform with an unmapped event
goes to that platform's fallback. Both defaults only log receipt.

dispatch() never raises. Handler exceptions and timeouts come back as a failed
DispatchResult for the caller to turn into a retry/failed transition.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from leadhooks.models.webhook_record import WebhookRecord, WebhookStatus

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[WebhookRecord, dict], Awaitable[None]]

DEFAULT_HANDLER_TIMEOUT_SECONDS = 30.0


class DispatchResult(BaseModel):
    """Outcome of one handler invocation."""
    outcome: str = Field(..., description="succeeded, failed, skipped")
    handler: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "succeeded"


async def generic_handler(record: WebhookRecord, payload: dict) -> None:
    """Receipt-only handler for platforms with no router."""
    logger.info(
        "Received generic webhook for %s",
        record.platform,
        extra={"webhook_id": str(record.id), "platform": record.platform},
    )


async def unmapped_event_handler(record: WebhookRecord, payload: dict) -> None:
    """Receipt-only handler for events a platform router does not map."""
    logger.warning(
        "Unknown %s webhook event: %s",
        record.platform, record.event_type,
        extra={
            "webhook_id": str(record.id),
            "platform": record.platform,
            "event_type": record.event_type,
        },
    )


class HandlerRegistry:
    """Platform router -> event handler table."""

    def __init__(self, default_handler: WebhookHandler = generic_handler):
        self._routes: dict[str, dict[str, WebhookHandler]] = {}
        self._fallbacks: dict[str, WebhookHandler] = {}
        self.default_handler = default_handler

    def register(self, platform: str, *event_types: str):
        """
        Decorator registering a handler for one or more event types.

            @registry.register("hubspot", "contact_created", "contact_updated")
            async def sync_contact(record, payload): ...
        """
        def decorator(handler: WebhookHandler) -> WebhookHandler:
            router = self._routes.setdefault(platform, {})
            for event_type in event_types:
                router[event_type] = handler
            return handler
        return decorator

    def add_platform(self, platform: str, fallback: WebhookHandler = unmapped_event_handler) -> None:
        """Declare a platform router, with the handler used for unmapped events."""
        self._routes.setdefault(platform, {})
        self._fallbacks[platform] = fallback

    def platforms(self) -> list[str]:
        return sorted(self._routes)

    def resolve(self, platform: str, event_type: str) -> WebhookHandler:
        router = self._routes.get(platform)
        if router is None:
            return self.default_handler
        handler = router.get(event_type)
        if handler is not None:
            return handler
        return self._fallbacks.get(platform, unmapped_event_handler)


def _handler_name(handler: WebhookHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


async def dispatch(
    record: WebhookRecord,
    payload: dict,
    registry: Optional[HandlerRegistry] = None,
    timeout: Optional[float] = DEFAULT_HANDLER_TIMEOUT_SECONDS,
) -> DispatchResult:
    """Invoke exactly one handler for a record held in processing."""
    if record.status != WebhookStatus.PROCESSING:
        logger.warning(
            "Refusing to dispatch webhook %s in status %s",
            str(record.id)[:8], record.status.value,
            extra={"webhook_id": str(record.id)},
        )
        return DispatchResult(outcome="skipped", error=f"status is {record.status.value}")

    if registry is None:
        from leadhooks.services.handlers import default_registry
        registry = default_registry

    handler = registry.resolve(record.platform, record.event_type)
    name = _handler_name(handler)

    try:
        await asyncio.wait_for(handler(record, payload), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Handler %s timed out after %ss for webhook %s",
            name, timeout, str(record.id)[:8],
            extra={"webhook_id": str(record.id), "handler": name},
        )
        return DispatchResult(outcome="failed", handler=name, error=f"Handler timed out after {timeout}s")
    except Exception as e:
        logger.warning(
            "Handler %s failed for webhook %s: %s",
            name, str(record.id)[:8], str(e),
            extra={"webhook_id": str(record.id), "handler": name},
        )
        return DispatchResult(outcome="failed", handler=name, error=str(e) or type(e).__name__)

    return DispatchResult(outcome="succeeded", handler=name)
