"""
Critical alerting - operator-facing signal for webhook pipeline trouble.

Alert channels:
1. Structured log (always) - at ERROR/CRITICAL level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL

Rate limiting: per-type cooldowns stored in Redis (SET NX EX), with an
in-memory fallback when Redis is down so a bad-signature flood cannot turn
into an alert storm.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300

ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "webhook_signature_invalid": 900,
}

# alert_type -> monotonic expiry
_local_cooldowns: dict[str, float] = {}


class AlertType:
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    WEBHOOK_RETRIES_EXHAUSTED = "webhook_retries_exhausted"
    WEBHOOK_STALE_PROCESSING = "webhook_stale_processing"
    RETRY_WORKER_ERROR = "retry_worker_error"


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
) -> None:
    """Send an alert through all configured channels, once per cooldown window."""
    if not await _acquire_cooldown(alert_type):
        return

    from leadhooks.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, cid, extra)


async def _acquire_cooldown(alert_type: str) -> bool:
    """Atomic check-and-set of the per-type cooldown. True means send."""
    cooldown = _get_cooldown_seconds(alert_type)

    try:
        from leadhooks.utils.dedup import get_redis
        redis = await get_redis()
        acquired = await redis.set(
            f"leadhooks:alert_cooldown:{alert_type}", "1", nx=True, ex=cooldown
        )
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(alert_type, 0):
            return False
        _local_cooldowns[alert_type] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Post to the configured Discord/Slack webhook, if any."""
    try:
        from leadhooks.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        content = f"**{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        for key, val in (extra or {}).items():
            content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert delivery must never take down the pipeline
        logger.warning("Failed to send webhook alert: %s", str(e))
