"""
Tests for leadhooks/utils/alerting.py - cooldowns and the outbound alert webhook.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from leadhooks.utils.alerting import (
    ALERT_COOLDOWN_SECONDS,
    AlertType,
    _acquire_cooldown,
    _get_cooldown_seconds,
    _send_webhook_alert,
    send_alert,
)


def _mock_http_client():
    mock_client = AsyncMock()
    mock_client.post = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


class TestCooldowns:
    def test_signature_alerts_have_longer_cooldown(self):
        assert _get_cooldown_seconds(AlertType.WEBHOOK_SIGNATURE_INVALID) == 900

    def test_default_cooldown(self):
        assert _get_cooldown_seconds(AlertType.WEBHOOK_RETRIES_EXHAUSTED) == ALERT_COOLDOWN_SECONDS

    async def test_redis_cooldown_uses_set_nx(self, mock_redis):
        assert await _acquire_cooldown(AlertType.RETRY_WORKER_ERROR) is True
        mock_redis.set.assert_awaited_once_with(
            "leadhooks:alert_cooldown:retry_worker_error", "1", nx=True, ex=ALERT_COOLDOWN_SECONDS
        )

    async def test_redis_cooldown_active(self, mock_redis):
        mock_redis.set.return_value = None
        assert await _acquire_cooldown(AlertType.RETRY_WORKER_ERROR) is False

    async def test_in_memory_fallback_when_redis_down(self, mock_redis):
        mock_redis.set.side_effect = ConnectionError("redis down")
        assert await _acquire_cooldown(AlertType.WEBHOOK_STALE_PROCESSING) is True
        assert await _acquire_cooldown(AlertType.WEBHOOK_STALE_PROCESSING) is False
        assert await _acquire_cooldown(AlertType.RETRY_WORKER_ERROR) is True


class TestSendAlert:
    async def test_logs_and_posts(self, mock_redis, caplog):
        with patch("leadhooks.utils.alerting._send_webhook_alert", new_callable=AsyncMock) as mock_post:
            await send_alert(AlertType.WEBHOOK_RETRIES_EXHAUSTED, "webhook abc failed", correlation_id="cid-1")

        assert "ALERT [webhook_retries_exhausted]: webhook abc failed (correlation_id=cid-1)" in caplog.text
        mock_post.assert_awaited_once_with("webhook_retries_exhausted", "webhook abc failed", "cid-1", None)

    async def test_suppressed_during_cooldown(self, mock_redis):
        mock_redis.set.return_value = None
        with patch("leadhooks.utils.alerting._send_webhook_alert", new_callable=AsyncMock) as mock_post:
            await send_alert(AlertType.WEBHOOK_RETRIES_EXHAUSTED, "again")
        mock_post.assert_not_awaited()

    async def test_critical_severity(self, mock_redis, caplog):
        with patch("leadhooks.utils.alerting._send_webhook_alert", new_callable=AsyncMock):
            await send_alert(AlertType.RETRY_WORKER_ERROR, "sweep failed", severity="critical")
        assert any(r.levelname == "CRITICAL" for r in caplog.records)


class TestSendWebhookAlert:
    async def test_posts_content_with_correlation_and_extra(self):
        mock_settings = MagicMock()
        mock_settings.alert_webhook_url = "https://hooks.example.com/test"
        mock_client = _mock_http_client()

        with (
            patch("leadhooks.config.get_settings", return_value=mock_settings),
            patch("httpx.AsyncClient", return_value=mock_client),
        ):
            await _send_webhook_alert(
                "webhook_signature_invalid",
                "Rejected instagram webhook",
                "corr-abc-123",
                {"source_ip": "203.0.113.9"},
            )

        mock_client.post.assert_awaited_once()
        url = mock_client.post.await_args.args[0]
        content = mock_client.post.await_args.kwargs["json"]["content"]
        assert url == "https://hooks.example.com/test"
        assert "**webhook_signature_invalid**" in content
        assert "corr-abc-123" in content
        assert "source_ip: 203.0.113.9" in content

    async def test_no_url_configured(self):
        mock_settings = MagicMock()
        mock_settings.alert_webhook_url = ""
        with (
            patch("leadhooks.config.get_settings", return_value=mock_settings),
            patch("httpx.AsyncClient") as mock_cls,
        ):
            await _send_webhook_alert("t", "m", None, None)
        mock_cls.assert_not_called()

    async def test_post_failure_is_swallowed(self):
        mock_settings = MagicMock()
        mock_settings.alert_webhook_url = "https://hooks.example.com/test"
        mock_client = _mock_http_client()
        mock_client.post.side_effect = ConnectionError("unreachable")

        with (
            patch("leadhooks.config.get_settings", return_value=mock_settings),
            patch("httpx.AsyncClient", return_value=mock_client),
        ):
            await _send_webhook_alert("t", "m", None, None)
