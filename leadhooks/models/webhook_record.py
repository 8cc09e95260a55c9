"""
WebhookRecord model - one row per inbound webhook delivery.

The raw body is stored verbatim and never rewritten, so a failed attempt can be
retried against identical input. Status is a closed enum; the only legal edges are:

    pending -> processing            (claim)
    processing -> processed          (handler succeeded)
    processing -> pending            (handler failed, retry budget left)
    processing -> failed             (handler failed, budget exhausted)
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Enum, String, Integer, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from leadhooks.database import Base

MAX_RETRIES = 3
UNKNOWN_EVENT_TYPE = "unknown"


class WebhookStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[WebhookStatus, frozenset[WebhookStatus]] = {
    WebhookStatus.PENDING: frozenset({WebhookStatus.PROCESSING}),
    WebhookStatus.PROCESSING: frozenset({
        WebhookStatus.PROCESSED,
        WebhookStatus.PENDING,
        WebhookStatus.FAILED,
    }),
    WebhookStatus.PROCESSED: frozenset(),
    WebhookStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({WebhookStatus.PROCESSED, WebhookStatus.FAILED})


class LeadhooksError(Exception):
    """Base class for errors raised by the webhook pipeline."""


class InvalidTransitionError(LeadhooksError):
    """Raised when a status change is not an edge of the webhook state machine."""

    def __init__(self, current: WebhookStatus, target: WebhookStatus):
        self.current = current
        self.target = target
        super().__init__(f"Illegal webhook transition {current.value} -> {target.value}")


def ensure_transition(current: WebhookStatus, target: WebhookStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


class WebhookRecord(Base):
    __tablename__ = "webhook_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    integration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    event_type: Mapped[str] = mapped_column(
        String(100), nullable=False, default=UNKNOWN_EVENT_TYPE
    )

    # Raw body, exactly as received
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    # Provenance (write-once)
    signature: Mapped[Optional[str]] = mapped_column(String(255))
    source_ip: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(512))
    headers: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    delivery_id: Mapped[Optional[str]] = mapped_column(String(128))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    status: Mapped[WebhookStatus] = mapped_column(
        Enum(
            WebhookStatus,
            name="webhook_status",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=WebhookStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_webhook_records_integration_event", "integration_id", "event_type"),
        Index("ix_webhook_records_status_created", "status", "created_at"),
        Index("ix_webhook_records_processed_at", "processed_at"),
        Index("ix_webhook_records_next_retry_at", "next_retry_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<WebhookRecord {self.platform}/{self.event_type} ({self.status.value})>"
