"""
Default handler table.

Lead creation, CRM sync and mention tracking live in other subsystems; they
replace these receipt-only handlers by registering on default_registry:

    from leadhooks.services.handlers import default_registry

    @default_registry.register("salesforce", "lead_created", "lead_updated")
    async def upsert_lead(record, payload): ...

Handlers must be idempotent - a record can be dispatched more than once when a
retry follows a failure that happened after side effects were applied.
"""
import logging

from leadhooks.models.webhook_record import WebhookRecord
from leadhooks.services.dispatcher import HandlerRegistry

logger = logging.getLogger(__name__)

default_registry = HandlerRegistry()

# platform -> {event_type: description used in the receipt log line}
PLATFORM_EVENTS: dict[str, dict[str, str]] = {
    "instagram": {
        "mentions": "Instagram mention",
        "comments": "Instagram comment",
        "stories": "Instagram story",
    },
    "tiktok": {
        "mentions": "TikTok mention",
        "comments": "TikTok comment",
        "videos": "TikTok video",
    },
    "salesforce": {
        "lead_created": "Salesforce lead",
        "lead_updated": "Salesforce lead",
    },
    "hubspot": {
        "contact_created": "HubSpot contact",
        "contact_updated": "HubSpot contact",
        "deal_created": "HubSpot deal",
    },
    "pipedrive": {
        "person_added": "Pipedrive person",
        "person_updated": "Pipedrive person",
        "deal_added": "Pipedrive deal",
    },
}


def _receipt_handler(description: str):
    async def handle(record: WebhookRecord, payload: dict) -> None:
        logger.info(
            "Processing %s webhook",
            description,
            extra={
                "webhook_id": str(record.id),
                "platform": record.platform,
                "event_type": record.event_type,
            },
        )
    handle.__qualname__ = f"receipt[{description}]"
    return handle


def register_default_handlers(registry: HandlerRegistry) -> None:
    """Install receipt-only handlers for every known (platform, event) pair."""
    for platform, events in PLATFORM_EVENTS.items():
        registry.add_platform(platform)
        for event_type, description in events.items():
            registry.register(platform, event_type)(_receipt_handler(description))


register_default_handlers(default_registry)
