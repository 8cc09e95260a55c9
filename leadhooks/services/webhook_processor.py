"""
Processing entry point - claim, classify, dispatch, record the outcome.

Both executors (inline and Redis queue) and the retry worker funnel into
process_webhook(). It never raises for handler failures; those become a
retry or a terminal failure on the record.

Handlers receive the record detached from the session. Whatever they set on it
is never written back, so every retry sees the payload exactly as received.
"""
import logging
import uuid
from typing import Optional

from pydantic import BaseModel

from leadhooks.database import async_session_factory
from leadhooks.models.webhook_record import WebhookRecord, WebhookStatus
from leadhooks.services.dispatcher import DispatchResult, HandlerRegistry, dispatch
from leadhooks.services.event_classifier import classify_parsed, parse_payload
from leadhooks.services.webhook_store import (
    claim_webhook,
    mark_attempt_failed,
    mark_processed,
    set_event_type,
)
from leadhooks.utils.alerting import AlertType, send_alert
from leadhooks.utils.logging import get_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)


class ProcessResult(BaseModel):
    webhook_id: uuid.UUID
    status: Optional[WebhookStatus] = None
    dispatch: Optional[DispatchResult] = None
    skipped_reason: Optional[str] = None  # not_pending, not_found, terminal, not_processing, superseded

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


async def process_webhook(
    webhook_id: uuid.UUID,
    *,
    claimed: bool = False,
    registry: Optional[HandlerRegistry] = None,
) -> ProcessResult:
    """
    Run one processing attempt for a webhook.

    claimed=False: claim it here (pending -> processing); losing the claim is a
    skip, not an error. claimed=True: the caller already holds it (retry sweep).
    """
    from leadhooks.config import get_settings
    timeout = get_settings().webhook_handler_timeout_seconds

    async with async_session_factory() as db:
        if not claimed:
            won = await claim_webhook(db, webhook_id)
            await db.commit()
            if not won:
                logger.info(
                    "Webhook %s not pending - already claimed or finished",
                    str(webhook_id)[:8],
                    extra={"webhook_id": str(webhook_id)},
                )
                return ProcessResult(webhook_id=webhook_id, skipped_reason="not_pending")

        record = await db.get(WebhookRecord, webhook_id)
        if record is None:
            logger.warning("Webhook %s vanished before processing", str(webhook_id)[:8])
            return ProcessResult(webhook_id=webhook_id, skipped_reason="not_found")
        if record.is_terminal:
            return ProcessResult(webhook_id=webhook_id, status=record.status, skipped_reason="terminal")
        if record.status != WebhookStatus.PROCESSING:
            return ProcessResult(webhook_id=webhook_id, status=record.status, skipped_reason="not_processing")

        if record.correlation_id and not get_correlation_id():
            set_correlation_id(record.correlation_id)

        # Classification is pure, so redoing it on a retry yields the same answer
        payload = parse_payload(record.payload)
        await set_event_type(db, record, classify_parsed(record.platform, payload))
        # Release the transaction while the handler runs
        await db.commit()

        attempt = record.retry_count
        db.expunge(record)

        logger.info(
            "Processing webhook %s for %s",
            str(record.id)[:8], record.platform,
            extra={
                "webhook_id": str(record.id),
                "platform": record.platform,
                "event_type": record.event_type,
            },
        )
        result = await dispatch(record, payload, registry=registry, timeout=timeout)

        current = await db.get(WebhookRecord, webhook_id)
        if (
            current is None
            or current.status != WebhookStatus.PROCESSING
            or current.retry_count != attempt
        ):
            logger.warning(
                "Webhook %s was taken over while its handler ran - dropping %s outcome",
                str(webhook_id)[:8], result.outcome,
                extra={"webhook_id": str(webhook_id), "handler": result.handler},
            )
            return ProcessResult(
                webhook_id=webhook_id,
                status=current.status if current else None,
                dispatch=result,
                skipped_reason="superseded",
            )

        if result.succeeded:
            won = await mark_processed(db, current)
            await db.commit()
            if won:
                logger.info(
                    "Successfully processed webhook %s",
                    str(webhook_id)[:8],
                    extra={"webhook_id": str(webhook_id), "handler": result.handler},
                )
            return ProcessResult(webhook_id=webhook_id, status=current.status, dispatch=result)

        status = await mark_attempt_failed(db, current, result.error or "Handler failed")
        await db.commit()

        if status == WebhookStatus.FAILED:
            await send_alert(
                AlertType.WEBHOOK_RETRIES_EXHAUSTED,
                f"Webhook {current.id} ({current.platform}/{current.event_type}) failed "
                f"after {current.retry_count} retries: {current.error_message}",
                correlation_id=current.correlation_id,
                extra={"integration_id": str(current.integration_id)},
            )
        return ProcessResult(webhook_id=webhook_id, status=status, dispatch=result)
