"""
Retry worker - resubmits webhooks whose backoff has elapsed.

Every RETRY_POLL_INTERVAL_SECONDS a sweep:
1. claims due records (pending, next_retry_at <= now) with a conditional
   UPDATE per record, so overlapping sweeps never dispatch the same one twice
2. hands each claimed id to the executor as its own task and moves on without
   waiting, so a slow batch never blocks the next sweep
3. fails over records stuck in processing past PROCESSING_TIMEOUT_MINUTES
   (their worker died mid-dispatch), treating it like a handler timeout
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leadhooks.database import async_session_factory
from leadhooks.models.webhook_record import WebhookStatus
from leadhooks.services.executors import InlineExecutor, WebhookExecutor, get_executor
from leadhooks.services.webhook_store import (
    claim_due_retries,
    find_stale_processing,
    mark_attempt_failed,
)
from leadhooks.utils.alerting import AlertType, send_alert

logger = logging.getLogger(__name__)

# Tasks spawned by sweeps that have not finished yet
_in_flight: set[asyncio.Task] = set()


class SweepResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    claimed: int = 0
    recovered: int = 0
    failed: int = 0
    tasks: list[asyncio.Task] = Field(default_factory=list)


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from leadhooks.utils.dedup import get_redis
        redis = await get_redis()
        await redis.set(
            "leadhooks:worker_health:retry_worker",
            datetime.now(timezone.utc).isoformat(),
            ex=300,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def _submit_claimed(executor: WebhookExecutor, webhook_id) -> None:
    """Hand a claimed record to the executor, running it inline if the hand-off fails."""
    try:
        await executor.submit(webhook_id, claimed=True)
    except Exception as e:
        logger.warning(
            "Executor %s could not take webhook %s (%s) - processing inline",
            getattr(executor, "name", type(executor).__name__), str(webhook_id)[:8], str(e),
            extra={"webhook_id": str(webhook_id)},
        )
        await InlineExecutor().submit(webhook_id, claimed=True)


def _spawn(executor: WebhookExecutor, webhook_id) -> asyncio.Task:
    task = asyncio.create_task(_submit_claimed(executor, webhook_id))
    _in_flight.add(task)
    task.add_done_callback(_in_flight.discard)
    return task


async def recover_stale_processing(
    db, now: datetime, timeout_minutes: int, limit: int = 50
) -> tuple[int, int]:
    """Fail over records whose worker died mid-dispatch. Returns (recovered, failed)."""
    cutoff = now - timedelta(minutes=timeout_minutes)
    stale = await find_stale_processing(db, cutoff, limit)
    failed = 0
    for record in stale:
        status = await mark_attempt_failed(
            db, record, f"Processing timed out after {timeout_minutes} minutes", now
        )
        if status == WebhookStatus.FAILED:
            failed += 1
    if stale:
        await send_alert(
            AlertType.WEBHOOK_STALE_PROCESSING,
            f"{len(stale)} webhook(s) were stuck in processing past {timeout_minutes} minutes",
            severity="warning",
        )
    return len(stale), failed


async def sweep_once(
    now: Optional[datetime] = None,
    executor: Optional[WebhookExecutor] = None,
) -> SweepResult:
    """One pass of the retry scheduler. Returns counts plus the spawned tasks."""
    from leadhooks.config import get_settings
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    executor = executor or get_executor()
    result = SweepResult()

    async with async_session_factory() as db:
        claimed_ids = await claim_due_retries(db, now, settings.retry_batch_size)
        await db.commit()

        result.recovered, result.failed = await recover_stale_processing(
            db, now, settings.processing_timeout_minutes, settings.retry_batch_size
        )
        await db.commit()

    result.claimed = len(claimed_ids)
    for webhook_id in claimed_ids:
        result.tasks.append(_spawn(executor, webhook_id))

    if result.claimed or result.recovered:
        logger.info(
            "Retry sweep: claimed=%d recovered=%d failed=%d in_flight=%d",
            result.claimed, result.recovered, result.failed, len(_in_flight),
        )
    return result


async def run_retry_worker():
    """Main retry worker loop. Runs until cancelled."""
    from leadhooks.config import get_settings
    interval = get_settings().retry_poll_interval_seconds
    logger.info("Retry worker started (interval=%ds)", interval)

    try:
        while True:
            try:
                await sweep_once()
            except Exception as e:
                logger.error("Retry worker error: %s", str(e), exc_info=True)
                await send_alert(AlertType.RETRY_WORKER_ERROR, f"Retry sweep failed: {e}")

            await _heartbeat()
            await asyncio.sleep(interval)
    finally:
        for task in list(_in_flight):
            task.cancel()
