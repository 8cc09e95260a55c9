"""
Tests for leadhooks/workers/retry_worker.py - retry sweeps and stale recovery.
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from leadhooks.models.webhook_record import WebhookRecord, WebhookStatus
from leadhooks.services.dispatcher import HandlerRegistry
from leadhooks.services.executors import InlineExecutor, QueueExecutor
from leadhooks.services.webhook_store import (
    claim_webhook,
    create_webhook_record,
    mark_attempt_failed,
)
from leadhooks.workers.retry_worker import run_retry_worker, sweep_once

NOW = datetime.now(timezone.utc)


async def _pending(db, integration, payload=None) -> WebhookRecord:
    record = await create_webhook_record(
        db,
        integration=integration,
        platform=integration.platform,
        payload=payload or json.dumps({"type": "video"}),
    )
    await db.commit()
    return record


async def _failed_once(db, integration, at: datetime) -> WebhookRecord:
    record = await _pending(db, integration)
    await claim_webhook(db, record.id, at)
    await db.commit()
    await db.refresh(record)
    await mark_attempt_failed(db, record, "boom", at)
    await db.commit()
    return record


async def _fresh(session_factory, webhook_id) -> WebhookRecord:
    async with session_factory() as session:
        return await session.get(WebhookRecord, webhook_id)


class TestSweepOnce:
    async def test_claims_due_records_and_submits_them(self, db, worker_sessions, make_integration, mock_redis):
        integration = await make_integration(platform="tiktok")
        due = await _failed_once(db, integration, NOW - timedelta(minutes=5))
        not_due = await _failed_once(db, integration, NOW)
        executor = AsyncMock()

        result = await sweep_once(now=NOW, executor=executor)
        await asyncio.gather(*result.tasks)

        assert result.claimed == 1
        executor.submit.assert_awaited_once_with(due.id, claimed=True)
        assert (await _fresh(worker_sessions, due.id)).status == WebhookStatus.PROCESSING
        assert (await _fresh(worker_sessions, not_due.id)).status == WebhookStatus.PENDING

    async def test_nothing_due(self, worker_sessions, mock_redis):
        executor = AsyncMock()
        result = await sweep_once(now=NOW, executor=executor)
        assert result.claimed == 0
        assert result.tasks == []
        executor.submit.assert_not_awaited()

    async def test_retry_that_succeeds_is_processed(self, db, worker_sessions, make_integration, mock_redis):
        integration = await make_integration(platform="tiktok")
        record = await _failed_once(db, integration, NOW - timedelta(minutes=5))

        result = await sweep_once(now=NOW, executor=InlineExecutor())
        await asyncio.gather(*result.tasks)

        stored = await _fresh(worker_sessions, record.id)
        assert stored.status == WebhookStatus.PROCESSED
        assert stored.retry_count == 1
        assert stored.event_type == "videos"

    async def test_retries_until_failed(self, db, worker_sessions, make_integration, mock_redis):
        """Three retries after the first failure, then the record is terminal."""
        integration = await make_integration(platform="tiktok")
        record = await _failed_once(db, integration, NOW)
        registry = HandlerRegistry()
        registry.register("tiktok", "videos")(AsyncMock(side_effect=RuntimeError("still down")))

        with patch("leadhooks.services.handlers.default_registry", registry):
            for hours in (1, 2, 3):
                result = await sweep_once(now=NOW + timedelta(hours=hours), executor=InlineExecutor())
                await asyncio.gather(*result.tasks)
                assert result.claimed == 1

            result = await sweep_once(now=NOW + timedelta(hours=4), executor=InlineExecutor())

        assert result.claimed == 0
        stored = await _fresh(worker_sessions, record.id)
        assert stored.status == WebhookStatus.FAILED
        assert stored.retry_count == 3
        assert stored.error_message == "still down"
        assert stored.next_retry_at is None

    async def test_queue_outage_falls_back_to_inline(self, db, worker_sessions, make_integration, mock_redis):
        """A claimed retry still runs its handler when Redis refuses the hand-off."""
        integration = await make_integration(platform="tiktok")
        record = await _failed_once(db, integration, NOW - timedelta(minutes=5))
        mock_redis.lpush.side_effect = ConnectionError("redis down")

        result = await sweep_once(now=NOW, executor=QueueExecutor())
        await asyncio.gather(*result.tasks)

        mock_redis.lpush.assert_awaited_once()
        stored = await _fresh(worker_sessions, record.id)
        assert stored.status == WebhookStatus.PROCESSED
        assert stored.retry_count == 1

    async def test_recovers_stale_processing(self, db, worker_sessions, make_integration, mock_redis):
        integration = await make_integration(platform="tiktok")
        record = await _pending(db, integration)
        await claim_webhook(db, record.id, NOW - timedelta(minutes=30))
        await db.commit()

        result = await sweep_once(now=NOW, executor=AsyncMock())

        assert result.recovered == 1
        assert result.failed == 0
        stored = await _fresh(worker_sessions, record.id)
        assert stored.status == WebhookStatus.PENDING
        assert stored.retry_count == 1
        assert stored.error_message == "Processing timed out after 10 minutes"

    async def test_stale_record_without_budget_fails(self, db, worker_sessions, make_integration):
        integration = await make_integration(platform="tiktok")
        record = await _pending(db, integration)
        record.retry_count = 3
        await db.commit()
        await claim_webhook(db, record.id, NOW - timedelta(minutes=30))
        await db.commit()

        with patch("leadhooks.workers.retry_worker.send_alert", new_callable=AsyncMock) as mock_alert:
            result = await sweep_once(now=NOW, executor=AsyncMock())

        assert result.failed == 1
        assert (await _fresh(worker_sessions, record.id)).status == WebhookStatus.FAILED
        assert mock_alert.await_args.args[0] == "webhook_stale_processing"

    async def test_in_flight_record_is_left_alone(self, db, worker_sessions, make_integration, mock_redis):
        integration = await make_integration(platform="tiktok")
        record = await _pending(db, integration)
        await claim_webhook(db, record.id, NOW - timedelta(minutes=2))
        await db.commit()

        result = await sweep_once(now=NOW, executor=AsyncMock())

        assert result.recovered == 0
        assert (await _fresh(worker_sessions, record.id)).status == WebhookStatus.PROCESSING


class TestRunRetryWorker:
    async def test_sweep_error_alerts_and_continues(self, mock_redis):
        sweeps = AsyncMock(side_effect=[RuntimeError("db down"), None])
        sleeps = AsyncMock(side_effect=[None, asyncio.CancelledError()])

        with (
            patch("leadhooks.workers.retry_worker.sweep_once", sweeps),
            patch("leadhooks.workers.retry_worker.asyncio.sleep", sleeps),
            patch("leadhooks.workers.retry_worker.send_alert", new_callable=AsyncMock) as mock_alert,
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_retry_worker()

        assert sweeps.await_count == 2
        mock_alert.assert_awaited_once()
        assert mock_alert.await_args.args[0] == "retry_worker_error"

    async def test_writes_heartbeat(self, mock_redis):
        with (
            patch("leadhooks.workers.retry_worker.sweep_once", AsyncMock()),
            patch("leadhooks.workers.retry_worker.asyncio.sleep", AsyncMock(side_effect=asyncio.CancelledError())),
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_retry_worker()

        keys = [c.args[0] for c in mock_redis.set.await_args_list]
        assert "leadhooks:worker_health:retry_worker" in keys
