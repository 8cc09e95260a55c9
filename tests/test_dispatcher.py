"""
Tests for leadhooks/services/dispatcher.py and the default handler table.
"""
import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from leadhooks.models.webhook_record import WebhookStatus
from leadhooks.services.dispatcher import (
    HandlerRegistry,
    dispatch,
    generic_handler,
    unmapped_event_handler,
)
from leadhooks.services.handlers import PLATFORM_EVENTS, default_registry


def _make_record(platform="hubspot", event_type="contact_created", status=WebhookStatus.PROCESSING):
    record = MagicMock()
    record.id = uuid.uuid4()
    record.platform = platform
    record.event_type = event_type
    record.status = status
    return record


class TestHandlerRegistry:
    def test_registered_handler_resolves(self):
        registry = HandlerRegistry()
        handler = AsyncMock()
        registry.register("hubspot", "contact_created", "contact_updated")(handler)

        assert registry.resolve("hubspot", "contact_created") is handler
        assert registry.resolve("hubspot", "contact_updated") is handler

    def test_unknown_platform_uses_generic_handler(self):
        registry = HandlerRegistry()
        assert registry.resolve("zapier", "anything") is generic_handler

    def test_unmapped_event_uses_platform_fallback(self):
        registry = HandlerRegistry()
        registry.add_platform("hubspot")
        registry.register("hubspot", "contact_created")(AsyncMock())
        assert registry.resolve("hubspot", "unknown") is unmapped_event_handler

    def test_custom_fallback(self):
        registry = HandlerRegistry()
        fallback = AsyncMock()
        registry.add_platform("tiktok", fallback)
        assert registry.resolve("tiktok", "likes") is fallback

    def test_register_returns_handler(self):
        registry = HandlerRegistry()

        @registry.register("pipedrive", "deal_added")
        async def on_deal(record, payload):
            return None

        assert registry.resolve("pipedrive", "deal_added") is on_deal

    def test_platforms(self):
        registry = HandlerRegistry()
        registry.add_platform("tiktok")
        registry.register("hubspot", "deal_created")(AsyncMock())
        assert registry.platforms() == ["hubspot", "tiktok"]


class TestDefaultRegistry:
    def test_every_known_event_has_a_handler(self):
        for platform, events in PLATFORM_EVENTS.items():
            for event_type in events:
                handler = default_registry.resolve(platform, event_type)
                assert handler.__qualname__.startswith("receipt[")

    def test_unknown_event_on_known_platform(self):
        assert default_registry.resolve("instagram", "unknown") is unmapped_event_handler

    def test_platform_without_router(self):
        assert default_registry.resolve("facebook", "unknown") is generic_handler


class TestDispatch:
    async def test_invokes_exactly_one_handler(self):
        registry = HandlerRegistry()
        created, updated = AsyncMock(), AsyncMock()
        registry.register("hubspot", "contact_created")(created)
        registry.register("hubspot", "contact_updated")(updated)
        record = _make_record()
        payload = [{"subscriptionType": "contact.creation"}]

        result = await dispatch(record, payload, registry=registry)

        assert result.succeeded is True
        assert result.outcome == "succeeded"
        created.assert_awaited_once_with(record, payload)
        updated.assert_not_awaited()

    async def test_handler_exception_is_failed_result(self):
        registry = HandlerRegistry()
        registry.register("hubspot", "contact_created")(AsyncMock(side_effect=RuntimeError("CRM down")))

        result = await dispatch(_make_record(), {}, registry=registry)

        assert result.succeeded is False
        assert result.outcome == "failed"
        assert result.error == "CRM down"

    async def test_exception_without_message_uses_type_name(self):
        registry = HandlerRegistry()
        registry.register("hubspot", "contact_created")(AsyncMock(side_effect=KeyError()))
        result = await dispatch(_make_record(), {}, registry=registry)
        assert result.error == "KeyError"

    async def test_timeout_is_failed_result(self):
        registry = HandlerRegistry()

        @registry.register("hubspot", "contact_created")
        async def slow(record, payload):
            await asyncio.sleep(5)

        result = await dispatch(_make_record(), {}, registry=registry, timeout=0.01)

        assert result.outcome == "failed"
        assert "timed out" in result.error

    @pytest.mark.parametrize(
        "status", [WebhookStatus.PENDING, WebhookStatus.PROCESSED, WebhookStatus.FAILED]
    )
    async def test_skips_record_not_processing(self, status):
        registry = HandlerRegistry()
        handler = AsyncMock()
        registry.register("hubspot", "contact_created")(handler)

        result = await dispatch(_make_record(status=status), {}, registry=registry)

        assert result.outcome == "skipped"
        handler.assert_not_awaited()

    async def test_uses_default_registry(self):
        result = await dispatch(_make_record("tiktok", "videos"), {"type": "video"})
        assert result.succeeded is True
        assert result.handler == "receipt[TikTok video]"

    async def test_unknown_platform_succeeds_via_generic_handler(self):
        result = await dispatch(_make_record("zapier", "unknown"), {})
        assert result.succeeded is True
        assert result.handler == "generic_handler"
