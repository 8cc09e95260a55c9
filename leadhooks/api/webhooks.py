"""
Webhook endpoints - receive pushes from integrated platforms.

Order of checks on POST /webhooks/{platform}/{integration_id}:
1. Integration lookup (404)
2. Signature validation against the integration's secret (401, nothing stored)
3. Route platform must match the integration's platform (400, nothing stored)
4. Provider delivery dedup (200 duplicate, nothing stored)
5. Persist the raw record as pending, then submit it for processing
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from leadhooks.api.auth import Operator, get_current_operator
from leadhooks.database import get_db, is_datastore_unavailable
from leadhooks.models.integration import Integration
from leadhooks.models.webhook_record import WebhookRecord
from leadhooks.schemas.api_responses import (
    WebhookListResponse,
    WebhookReceivedResponse,
    WebhookSummary,
)
from leadhooks.services.executors import get_executor
from leadhooks.services.webhook_store import (
    count_by_status,
    create_webhook_record,
    find_integration,
    list_recent_webhooks,
    schedule_sweep_pickup,
)
from leadhooks.utils.alerting import AlertType, send_alert
from leadhooks.utils.dedup import extract_delivery_id, forget_delivery, is_duplicate_delivery
from leadhooks.utils.logging import get_correlation_id
from leadhooks.utils.webhook_signatures import (
    compute_payload_hash,
    extract_signature,
    secure_compare,
    verification_bypassed,
    verify_signature,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# Only these request headers are kept on the record
RELEVANT_HEADERS = (
    "X-Hub-Signature",
    "X-Signature",
    "X-Shopify-Hmac-Sha256",
    "X-GitHub-Event",
    "X-GitHub-Delivery",
    "X-Delivery-Id",
    "User-Agent",
    "Content-Type",
)
MAX_LIST_LIMIT = 500


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def extract_relevant_headers(request: Request) -> dict:
    headers = {}
    for name in RELEVANT_HEADERS:
        value = request.headers.get(name)
        if value:
            headers[name] = value
    return headers


def _setup_failure(e: Exception, platform: str) -> HTTPException:
    if is_datastore_unavailable(e):
        logger.error("Datastore unavailable while receiving %s webhook: %s", platform, str(e))
        return HTTPException(status_code=503, detail="Datastore unavailable")
    logger.error(
        "Webhook processing error for %s: %s", platform, str(e),
        exc_info=True, extra={"platform": platform},
    )
    return HTTPException(status_code=422, detail="Webhook processing failed")


async def _load_integration(db: AsyncSession, integration_id: str, platform: str) -> Integration:
    try:
        integration = await find_integration(db, integration_id)
    except Exception as e:
        raise _setup_failure(e, platform)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


async def _validate_signature(
    platform: str,
    integration: Integration,
    request: Request,
    body: bytes,
) -> Optional[str]:
    """Return the claimed signature, or raise 401."""
    signature = extract_signature(request.headers)

    if verification_bypassed():
        logger.warning(
            "Signature verification bypassed for %s webhook (ALLOW_UNSIGNED_WEBHOOKS)",
            platform, extra={"integration_id": str(integration.id)},
        )
        return signature

    check = verify_signature(platform, body, signature, integration.webhook_secret)
    if not check.valid:
        client_ip = _client_ip(request)
        logger.warning(
            "Invalid webhook signature: platform=%s integration=%s ip=%s reason=%s",
            platform, str(integration.id)[:8], client_ip, check.reason,
            extra={"integration_id": str(integration.id), "platform": platform},
        )
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_INVALID,
            f"Rejected {platform} webhook for integration {integration.id}: {check.reason}",
            severity="warning",
            extra={"source_ip": client_ip},
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    return signature


async def _submit_for_processing(db: AsyncSession, record: WebhookRecord) -> None:
    try:
        await get_executor().submit(record.id)
    except Exception as e:
        logger.error(
            "Could not submit webhook %s, leaving it to the retry sweep: %s",
            str(record.id)[:8], str(e),
            extra={"webhook_id": str(record.id)},
        )
        try:
            await schedule_sweep_pickup(db, record.id)
            await db.commit()
        except Exception as pickup_error:
            logger.error(
                "Could not schedule sweep pickup for webhook %s: %s",
                str(record.id)[:8], str(pickup_error),
                exc_info=True, extra={"webhook_id": str(record.id)},
            )


@router.post("/{platform}/{integration_id}", response_model=WebhookReceivedResponse)
async def receive_webhook(
    platform: str,
    integration_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Verify, persist, and submit one inbound webhook."""
    platform = platform.lower()
    body = await request.body()

    integration = await _load_integration(db, integration_id, platform)
    signature = await _validate_signature(platform, integration, request, body)

    if integration.platform != platform:
        logger.warning(
            "Platform mismatch: route=%s integration=%s (%s)",
            platform, str(integration.id)[:8], integration.platform,
            extra={"integration_id": str(integration.id), "platform": platform},
        )
        raise HTTPException(status_code=400, detail="Platform mismatch")

    from leadhooks.config import get_settings
    delivery_id = extract_delivery_id(request.headers)
    if await is_duplicate_delivery(
        str(integration.id), delivery_id, get_settings().delivery_dedup_window_seconds,
    ):
        return WebhookReceivedResponse(status="duplicate", webhook_id=None)

    try:
        record = await create_webhook_record(
            db,
            integration=integration,
            platform=platform,
            payload=body.decode("utf-8", errors="replace"),
            signature=signature,
            source_ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            headers=extract_relevant_headers(request),
            delivery_id=delivery_id,
            correlation_id=get_correlation_id(),
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        await forget_delivery(str(integration.id), delivery_id)
        raise _setup_failure(e, platform)

    logger.info(
        "Webhook %s received from %s (%d bytes, sha256=%s)",
        str(record.id)[:8], platform, len(body), compute_payload_hash(body)[:12],
        extra={
            "webhook_id": str(record.id),
            "integration_id": str(integration.id),
            "platform": platform,
        },
    )

    await _submit_for_processing(db, record)
    return WebhookReceivedResponse(status="received", webhook_id=str(record.id))


@router.get("/{platform}/{integration_id}/verify", response_class=PlainTextResponse)
async def verify_subscription(
    platform: str,
    integration_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Subscription handshake. Echoes the challenge when the verify token matches
    the integration's webhook secret. Never touches webhook records.
    """
    integration = await _load_integration(db, integration_id, platform.lower())

    params = request.query_params
    challenge = params.get("hub.challenge") or params.get("challenge") or ""
    verify_token = params.get("hub.verify_token") or params.get("verify_token")

    if not integration.webhook_secret or not secure_compare(verify_token, integration.webhook_secret):
        logger.warning(
            "Invalid verify token for integration %s", str(integration.id)[:8],
            extra={"integration_id": str(integration.id)},
        )
        raise HTTPException(status_code=403, detail="Invalid verify token")

    return PlainTextResponse(challenge, status_code=200)


def _summarize(record: WebhookRecord) -> WebhookSummary:
    return WebhookSummary(
        id=str(record.id),
        integration_id=str(record.integration_id),
        platform=record.platform,
        event_type=record.event_type,
        status=record.status.value,
        retry_count=record.retry_count,
        next_retry_at=record.next_retry_at,
        error_message=record.error_message,
        processed_at=record.processed_at,
        source_ip=record.source_ip,
        created_at=record.created_at,
    )


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    limit: Optional[int] = Query(None, ge=1, le=MAX_LIST_LIMIT),
    operator: Operator = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db),
):
    """Most recent webhooks for the operator's integrations, with status counts."""
    from leadhooks.config import get_settings
    limit = limit or get_settings().webhook_list_limit
    scope = None if operator.is_admin else operator.user_id

    records = await list_recent_webhooks(db, scope, limit)
    counts = await count_by_status(db, scope)

    return WebhookListResponse(
        webhooks=[_summarize(r) for r in records],
        total=sum(counts.values()),
        counts=counts,
    )
