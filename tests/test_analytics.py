"""Tests for the analytics event logger."""

import json
import pytest
from unittest.mock import Mock

from courier.services import Analytics, DeliveryOutcome, TransportMode
from conftest import make_controller, make_pipeline


def make_analytics(store, bus, endpoint="", channel=None, session=None, page_url=""):
    pipeline = make_pipeline(store, endpoint=endpoint, channel=channel, session=session,
                             mode=TransportMode.BEST_EFFORT, key="rw2_analytics_q1")
    return Analytics(pipeline, bus, page_url=page_url)


class TestRecordEvent:
    """Test event recording."""

    @pytest.mark.asyncio
    async def test_event_body_shape(self, store, bus):
        analytics = make_analytics(store, bus)

        outcome = await analytics.record_event("cta", {"key": "start-wizard"})

        assert outcome.status == DeliveryOutcome.LOCAL_QUEUED
        queued = analytics.get_queue()
        assert len(queued) == 1
        assert queued[0]["kind"] == "event"
        body = queued[0]["payload"]
        assert body["type"] == "cta"
        assert body["payload"] == {"key": "start-wizard"}
        assert body["ts"] == queued[0]["ts"]

    @pytest.mark.asyncio
    async def test_beacon_accept(self, store, bus):
        channel = Mock()
        channel.send.return_value = True
        analytics = make_analytics(store, bus, endpoint="https://x/analytics", channel=channel)

        outcome = await analytics.record_event("route", {"hash": "#about"})

        assert outcome.delivered
        url, body = channel.send.call_args[0]
        assert url == "https://x/analytics"
        assert json.loads(body)["type"] == "route"
        assert analytics.get_queue() == []

    @pytest.mark.asyncio
    async def test_beacon_reject_requeues(self, store, bus):
        channel = Mock()
        channel.send.return_value = False
        seen = []
        bus.subscribe("analytics:error", seen.append)
        analytics = make_analytics(store, bus, endpoint="https://x", channel=channel)

        await analytics.record_event("chip", {"key": "fast"})

        assert [entry["mode"] for entry in analytics.get_queue()] == ["retry"]
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_flush_retries_each_event_once(self, store, bus):
        channel = Mock()
        channel.send.return_value = False
        analytics = make_analytics(store, bus, endpoint="https://x", channel=channel)
        await analytics.record_event("a")
        await analytics.record_event("b")
        channel.send.reset_mock()

        await analytics.flush()

        assert channel.send.call_count == 2


class TestHooks:
    """Test lifecycle integration with submissions."""

    @pytest.mark.asyncio
    async def test_init_records_pageview_and_hooks(self, store, bus):
        analytics = make_analytics(store, bus, page_url="https://example.com/landing?addons=x#offer")

        await analytics.init()

        queued = analytics.get_queue()
        assert queued[0]["payload"]["type"] == "pageview"
        assert queued[0]["payload"]["payload"]["path"] == "/landing#offer"

    @pytest.mark.asyncio
    async def test_submission_lifecycle_is_recorded(self, store, bus):
        analytics = make_analytics(store, bus)
        analytics.hook()
        controller = make_controller(store, bus)

        await controller.submit({"a": 1})

        types = [entry["payload"]["type"] for entry in analytics.get_queue()]
        assert types == ["submission_request", "submission_success"]
        success = analytics.get_queue()[1]["payload"]["payload"]
        assert success["payload"]["a"] == 1
        assert success["outcome"] == {"status": "local_queued"}

    @pytest.mark.asyncio
    async def test_hook_is_idempotent(self, store, bus):
        analytics = make_analytics(store, bus)
        analytics.hook()
        analytics.hook()
        controller = make_controller(store, bus)

        await controller.submit()

        assert len(analytics.get_queue()) == 2

    @pytest.mark.asyncio
    async def test_unhook(self, store, bus):
        analytics = make_analytics(store, bus)
        analytics.hook()
        analytics.unhook()

        await make_controller(store, bus).submit()

        assert analytics.get_queue() == []

    @pytest.mark.asyncio
    async def test_init_applies_overrides(self, store, bus, http_session):
        analytics = make_analytics(store, bus, session=http_session)
        await analytics.init(endpoint="https://x", send_mode="confirmable", method="PUT", timeout_ms=1000)

        settings = analytics.pipeline.settings
        assert settings.endpoint_url == "https://x"
        assert settings.mode is TransportMode.CONFIRMABLE
        assert settings.method == "PUT"
        # The pageview went straight out
        assert http_session.request.call_args[0] == ("PUT", "https://x")
        assert analytics.get_queue() == []
