"""
Webhook record store - persistence and state transitions for WebhookRecord.

Every status change is a conditional UPDATE guarded on the expected current
status, so two workers racing on the same record cannot both win: the loser
sees zero affected rows and backs off. Claiming (pending -> processing) is the
mutual-exclusion point for dispatch.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from leadhooks.models.integration import Integration
from leadhooks.models.webhook_record import (
    MAX_RETRIES,
    WebhookRecord,
    WebhookStatus,
    ensure_transition,
)

logger = logging.getLogger(__name__)

# Exponential backoff schedule (minutes), indexed by retry_count before increment
RETRY_DELAYS_MINUTES = [1, 5, 15]
ERROR_MESSAGE_MAX_LENGTH = 2000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retry_delay_minutes(retry_count: int) -> int:
    """Backoff delay for a record that has failed `retry_count` times before."""
    delay_idx = min(max(retry_count, 0), len(RETRY_DELAYS_MINUTES) - 1)
    return RETRY_DELAYS_MINUTES[delay_idx]


def compute_next_retry_at(retry_count: int, now: Optional[datetime] = None) -> datetime:
    return (now or _utcnow()) + timedelta(minutes=retry_delay_minutes(retry_count))


async def find_integration(
    db: AsyncSession,
    integration_id: str | uuid.UUID,
) -> Optional[Integration]:
    """Resolve an active integration by id. Returns None for unknown or malformed ids."""
    if not isinstance(integration_id, uuid.UUID):
        try:
            integration_id = uuid.UUID(str(integration_id))
        except ValueError:
            return None
    integration = await db.get(Integration, integration_id)
    if integration is None or not integration.is_active:
        return None
    return integration


async def create_webhook_record(
    db: AsyncSession,
    *,
    integration: Integration,
    platform: str,
    payload: str,
    signature: Optional[str] = None,
    source_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    headers: Optional[dict] = None,
    delivery_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> WebhookRecord:
    """Persist a verified inbound webhook as a pending record."""
    now = _utcnow()
    record = WebhookRecord(
        integration_id=integration.id,
        platform=platform,
        payload=payload,
        signature=signature,
        source_ip=source_ip,
        user_agent=user_agent[:512] if user_agent else None,
        headers=dict(headers or {}),
        delivery_id=delivery_id,
        correlation_id=correlation_id,
        status=WebhookStatus.PENDING,
        retry_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    await db.flush()
    return record


async def claim_webhook(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> bool:
    """
    Atomically move a record from pending to processing.
    False means the record is not pending (already claimed, or terminal).
    """
    result = await db.execute(
        update(WebhookRecord)
        .where(
            WebhookRecord.id == webhook_id,
            WebhookRecord.status == WebhookStatus.PENDING,
        )
        .values(status=WebhookStatus.PROCESSING, updated_at=now or _utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def schedule_sweep_pickup(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> bool:
    """
    Make a pending record due for the retry sweep right away. Used when the
    hand-off to the executor failed, so the record is not stranded.
    """
    result = await db.execute(
        update(WebhookRecord)
        .where(
            WebhookRecord.id == webhook_id,
            WebhookRecord.status == WebhookStatus.PENDING,
        )
        .values(next_retry_at=now or _utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def set_event_type(db: AsyncSession, record: WebhookRecord, event_type: str) -> None:
    """Store the classification. Only allowed while the record is held for processing."""
    if record.status != WebhookStatus.PROCESSING or record.event_type == event_type:
        return
    record.event_type = event_type
    await db.flush()


async def mark_processed(
    db: AsyncSession,
    record: WebhookRecord,
    now: Optional[datetime] = None,
) -> bool:
    """
    processing -> processed. Returns False if the record was not processing, or
    was failed over and re-claimed (retry_count moved) since `record` was read.
    """
    ensure_transition(record.status, WebhookStatus.PROCESSED)
    now = now or _utcnow()
    result = await db.execute(
        update(WebhookRecord)
        .where(
            WebhookRecord.id == record.id,
            WebhookRecord.status == WebhookStatus.PROCESSING,
            WebhookRecord.retry_count == record.retry_count,
        )
        .values(
            status=WebhookStatus.PROCESSED,
            processed_at=now,
            error_message=None,
            next_retry_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(record)
    if result.rowcount != 1:
        logger.warning(
            "Webhook %s was no longer processing when marked processed",
            str(record.id)[:8],
            extra={"webhook_id": str(record.id), "status": record.status.value},
        )
        return False
    return True


async def mark_attempt_failed(
    db: AsyncSession,
    record: WebhookRecord,
    error_message: str,
    now: Optional[datetime] = None,
) -> WebhookStatus:
    """
    Record a failed dispatch attempt.

    With retry budget left: processing -> pending, retry_count + 1, next_retry_at
    set by the backoff schedule. Budget spent: processing -> failed.
    Returns the status the record ended in.
    """
    now = now or _utcnow()
    message = (error_message or "")[:ERROR_MESSAGE_MAX_LENGTH]
    attempts = record.retry_count

    if attempts >= MAX_RETRIES:
        target = WebhookStatus.FAILED
        values = {
            "status": target,
            "error_message": message,
            "processed_at": now,
            "next_retry_at": None,
            "updated_at": now,
        }
    else:
        target = WebhookStatus.PENDING
        values = {
            "status": target,
            "retry_count": attempts + 1,
            "next_retry_at": compute_next_retry_at(attempts, now),
            "error_message": message,
            "updated_at": now,
        }

    ensure_transition(record.status, target)
    result = await db.execute(
        update(WebhookRecord)
        .where(
            WebhookRecord.id == record.id,
            WebhookRecord.status == WebhookStatus.PROCESSING,
            WebhookRecord.retry_count == attempts,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(record)

    if result.rowcount != 1:
        logger.warning(
            "Webhook %s changed underneath a failure update (now %s)",
            str(record.id)[:8], record.status.value,
            extra={"webhook_id": str(record.id)},
        )
        return record.status

    if target == WebhookStatus.FAILED:
        logger.error(
            "Webhook %s exhausted retries (%d/%d) - marked as failed: %s",
            str(record.id)[:8], attempts, MAX_RETRIES, message[:200],
            extra={"webhook_id": str(record.id), "platform": record.platform},
        )
    else:
        logger.info(
            "Webhook %s retry %d/%d scheduled for %s",
            str(record.id)[:8], record.retry_count, MAX_RETRIES,
            record.next_retry_at.isoformat() if record.next_retry_at else None,
            extra={"webhook_id": str(record.id), "platform": record.platform},
        )
    return target


async def claim_due_retries(
    db: AsyncSession,
    now: Optional[datetime] = None,
    limit: int = 50,
) -> list[uuid.UUID]:
    """
    Select pending records whose backoff has elapsed and claim each one.
    Records claimed by an overlapping sweep are silently skipped.
    """
    now = now or _utcnow()
    result = await db.execute(
        select(WebhookRecord.id)
        .where(
            WebhookRecord.status == WebhookStatus.PENDING,
            WebhookRecord.next_retry_at.is_not(None),
            WebhookRecord.next_retry_at <= now,
            WebhookRecord.retry_count <= MAX_RETRIES,
        )
        .order_by(WebhookRecord.next_retry_at)
        .limit(limit)
    )
    candidates = result.scalars().all()

    claimed: list[uuid.UUID] = []
    for webhook_id in candidates:
        if await claim_webhook(db, webhook_id, now):
            claimed.append(webhook_id)
    return claimed


async def find_stale_processing(
    db: AsyncSession,
    older_than: datetime,
    limit: int = 50,
) -> list[WebhookRecord]:
    """Records held in processing since before `older_than` (their worker died)."""
    result = await db.execute(
        select(WebhookRecord)
        .where(
            WebhookRecord.status == WebhookStatus.PROCESSING,
            WebhookRecord.updated_at <= older_than,
        )
        .order_by(WebhookRecord.updated_at)
        .limit(limit)
    )
    return list(result.scalars().all())


def _scoped_to_user(stmt, user_id: Optional[uuid.UUID]):
    if user_id is None:
        return stmt
    return stmt.join(
        Integration, Integration.id == WebhookRecord.integration_id
    ).where(Integration.user_id == user_id)


async def list_recent_webhooks(
    db: AsyncSession,
    user_id: Optional[uuid.UUID] = None,
    limit: int = 100,
) -> list[WebhookRecord]:
    """Most recent records, newest first. user_id=None lists every integration."""
    stmt = _scoped_to_user(select(WebhookRecord), user_id)
    result = await db.execute(
        stmt.order_by(WebhookRecord.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def count_by_status(
    db: AsyncSession,
    user_id: Optional[uuid.UUID] = None,
) -> dict[str, int]:
    """Aggregate record counts per status, zero-filled for every status."""
    stmt = _scoped_to_user(
        select(WebhookRecord.status, func.count(WebhookRecord.id)), user_id
    ).group_by(WebhookRecord.status)
    result = await db.execute(stmt)

    counts = {status.value: 0 for status in WebhookStatus}
    for status, count in result.all():
        key = status.value if isinstance(status, WebhookStatus) else str(status)
        counts[key] = count
    return counts
