"""
Database models - import all models here so Alembic can discover them.
"""
from leadhooks.models.integration import Integration
from leadhooks.models.webhook_record import WebhookRecord, WebhookStatus

__all__ = [
    "Integration",
    "WebhookRecord",
    "WebhookStatus",
]
