"""
Provider delivery dedup - Redis-based, keyed on (integration, delivery id).

Platforms that stamp a delivery id on each push re-send the same id when they
retry a delivery they think failed. A repeat inside the window is acknowledged
without storing a second record. Only deliveries that carry an id are deduped;
anything else is accepted as-is (handlers are idempotent).
"""
import hashlib
import logging
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DELIVERY_ID_HEADERS = ("X-Delivery-Id", "X-GitHub-Delivery")
DELIVERY_ID_MAX_LENGTH = 128

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from leadhooks.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def extract_delivery_id(headers: Mapping[str, str]) -> Optional[str]:
    for name in DELIVERY_ID_HEADERS:
        value = headers.get(name)
        if value:
            return value.strip()[:DELIVERY_ID_MAX_LENGTH]
    return None


def make_dedup_key(integration_id: str, delivery_id: str) -> str:
    """Fixed-length key regardless of how long the provider's id is."""
    raw = f"{integration_id}:{delivery_id}"
    hash_val = hashlib.sha256(raw.encode()).hexdigest()[:24]
    return f"leadhooks:delivery:{hash_val}"


async def is_duplicate_delivery(
    integration_id: str,
    delivery_id: Optional[str],
    window_seconds: int = 86400,
) -> bool:
    """
    True if this delivery id was already seen for the integration inside the window.
    Marks it as seen otherwise. Redis errors count as "not a duplicate".
    """
    if not delivery_id:
        return False

    key = make_dedup_key(integration_id, delivery_id)
    try:
        redis = await get_redis()
        # SET NX: True when newly set, None when the key already exists
        was_set = await redis.set(key, "1", nx=True, ex=window_seconds)
    except Exception as e:
        logger.warning("Delivery dedup check failed, accepting webhook: %s", str(e))
        return False

    if was_set:
        return False
    logger.info(
        "Duplicate delivery %s for integration %s",
        delivery_id[:32], integration_id[:8],
        extra={"integration_id": integration_id},
    )
    return True


async def forget_delivery(integration_id: str, delivery_id: Optional[str]) -> None:
    """Drop the dedup marker so a delivery that failed to persist can be re-sent."""
    if not delivery_id:
        return
    try:
        redis = await get_redis()
        await redis.delete(make_dedup_key(integration_id, delivery_id))
    except Exception as e:
        logger.warning("Failed to clear delivery marker: %s", str(e))
