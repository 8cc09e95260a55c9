"""
API response schemas for the webhook endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class WebhookReceivedResponse(BaseModel):
    status: str  # received, duplicate
    webhook_id: Optional[str] = None


class WebhookSummary(BaseModel):
    id: str
    integration_id: str
    platform: str
    event_type: str
    status: str
    retry_count: int
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    source_ip: Optional[str] = None
    created_at: datetime


class WebhookListResponse(BaseModel):
    webhooks: list[WebhookSummary]
    total: int
    counts: dict[str, int]
