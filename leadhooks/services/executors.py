"""
Submit-for-processing executors.

WEBHOOK_EXECUTOR picks the implementation:
- inline: process in the caller's task (local runs, tests, small deployments)
- queue:  LPUSH the id onto a Redis list drained by run_webhook_worker()

Callers only ever see WebhookExecutor.submit(); nothing branches on APP_ENV.
"""
import json
import logging
import uuid
from functools import lru_cache

logger = logging.getLogger(__name__)

WEBHOOK_QUEUE_KEY = "leadhooks:webhook_queue"


class WebhookExecutor:
    name = "base"

    async def submit(self, webhook_id: uuid.UUID, claimed: bool = False) -> None:
        raise NotImplementedError


class InlineExecutor(WebhookExecutor):
    """Runs the processing attempt before returning."""

    name = "inline"

    async def submit(self, webhook_id: uuid.UUID, claimed: bool = False) -> None:
        from leadhooks.services.webhook_processor import process_webhook

        try:
            await process_webhook(webhook_id, claimed=claimed)
        except Exception as e:
            # Handler errors never get here; this is the datastore failing mid-attempt.
            # A record left in processing is picked up by stale recovery.
            logger.error(
                "Inline processing of webhook %s aborted: %s",
                str(webhook_id)[:8], str(e),
                exc_info=True,
                extra={"webhook_id": str(webhook_id)},
            )


class QueueExecutor(WebhookExecutor):
    """Fire-and-forget hand-off to the Redis-backed worker pool."""

    name = "queue"

    def __init__(self, queue_key: str = WEBHOOK_QUEUE_KEY):
        self.queue_key = queue_key

    async def submit(self, webhook_id: uuid.UUID, claimed: bool = False) -> None:
        from leadhooks.utils.dedup import get_redis

        message = json.dumps({"webhook_id": str(webhook_id), "claimed": claimed})
        redis = await get_redis()
        await redis.lpush(self.queue_key, message)
        logger.debug(
            "Webhook %s queued (claimed=%s)",
            str(webhook_id)[:8], claimed,
            extra={"webhook_id": str(webhook_id)},
        )


EXECUTORS = {
    InlineExecutor.name: InlineExecutor,
    QueueExecutor.name: QueueExecutor,
}


@lru_cache()
def get_executor() -> WebhookExecutor:
    from leadhooks.config import get_settings
    kind = get_settings().webhook_executor
    executor_cls = EXECUTORS.get(kind)
    if executor_cls is None:
        raise ValueError(
            f"Unknown WEBHOOK_EXECUTOR '{kind}' (expected one of {sorted(EXECUTORS)})"
        )
    return executor_cls()
