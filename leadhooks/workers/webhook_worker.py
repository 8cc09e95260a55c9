"""
Webhook worker - drains the Redis queue fed by QueueExecutor.

BRPOPs one message at a time and processes each as its own asyncio task, with
at most WEBHOOK_WORKER_CONCURRENCY attempts in flight. Several worker processes
can drain the same list; the claim in process_webhook() keeps them from
dispatching the same record twice.
"""
import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from leadhooks.services.executors import WEBHOOK_QUEUE_KEY

logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5  # seconds
REDIS_BACKOFF_SECONDS = 5


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from leadhooks.utils.dedup import get_redis
        redis = await get_redis()
        await redis.set(
            "leadhooks:worker_health:webhook_worker",
            datetime.now(timezone.utc).isoformat(),
            ex=120,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


def decode_message(raw: str) -> Optional[tuple[uuid.UUID, bool]]:
    """Parse a queue message into (webhook_id, claimed). None if malformed."""
    try:
        message = json.loads(raw)
        return uuid.UUID(message["webhook_id"]), bool(message.get("claimed", False))
    except (ValueError, KeyError, TypeError) as e:
        logger.error("Dropping malformed queue message %r: %s", str(raw)[:100], str(e))
        return None


async def _run_one(webhook_id: uuid.UUID, claimed: bool, semaphore: asyncio.Semaphore) -> None:
    from leadhooks.services.webhook_processor import process_webhook

    try:
        await process_webhook(webhook_id, claimed=claimed)
    except Exception as e:
        logger.error(
            "Queued processing of webhook %s aborted: %s",
            str(webhook_id)[:8], str(e),
            exc_info=True,
            extra={"webhook_id": str(webhook_id)},
        )
    finally:
        semaphore.release()


async def run_webhook_worker(concurrency: Optional[int] = None):
    """Main loop. Runs until cancelled."""
    from leadhooks.config import get_settings
    from leadhooks.utils.dedup import get_redis

    concurrency = concurrency or get_settings().webhook_worker_concurrency
    semaphore = asyncio.Semaphore(concurrency)
    in_flight: set[asyncio.Task] = set()
    logger.info("Webhook worker started (concurrency=%d)", concurrency)

    try:
        while True:
            await semaphore.acquire()
            try:
                redis = await get_redis()
                item = await redis.brpop(WEBHOOK_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            except Exception as e:
                semaphore.release()
                logger.warning("Webhook queue unavailable, backing off: %s", str(e))
                await asyncio.sleep(REDIS_BACKOFF_SECONDS)
                continue

            if not item:
                semaphore.release()
                await _heartbeat()
                continue

            decoded = decode_message(item[1])
            if decoded is None:
                semaphore.release()
                continue

            webhook_id, claimed = decoded
            task = asyncio.create_task(_run_one(webhook_id, claimed, semaphore))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    finally:
        for task in in_flight:
            task.cancel()
