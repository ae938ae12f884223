"""Tests for the submission controller."""

import json
import pytest
from unittest.mock import Mock

from courier.services import DeliveryOutcome, MemoryStore, SubmissionController
from courier.services.submission import CAPTURE_KEY
from conftest import http_response, make_controller


class TestOfflineSubmission:
    """Submissions with no destination configured."""

    @pytest.mark.asyncio
    async def test_submit_without_endpoint_stores_locally(self, store, bus, http_session):
        """No destination: item lands in storage with mode local, no network calls."""
        controller = make_controller(store, bus, session=http_session)

        outcome = await controller.submit({"a": 1})

        assert outcome.status == DeliveryOutcome.LOCAL_QUEUED
        stored = json.loads(store.get_item("rw2_queue_v1"))
        assert len(stored) == 1
        assert stored[0]["mode"] == "local"
        assert stored[0]["kind"] == "submission"
        assert stored[0]["payload"]["a"] == 1
        http_session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_repeated_offline_submits_keep_order(self, store, bus):
        controller = make_controller(store, bus)

        for n in range(3):
            await controller.submit({"n": n})

        assert [entry["payload"]["n"] for entry in controller.get_queue()] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_init_delivers_local_items_once_endpoint_given(self, store, bus, http_session):
        controller = make_controller(store, bus, session=http_session)
        await controller.submit({"a": 1})

        moved = await controller.init(endpoint_url="https://api.example.com/submit")

        assert moved == 1
        assert controller.get_queue() == []
        assert http_session.request.call_count == 1


class TestFailingSubmission:
    """Submissions against a destination that always fails."""

    @pytest.mark.asyncio
    async def test_failed_submit_is_queued_for_retry(self, store, bus, failing_session):
        controller = make_controller(store, bus, endpoint="https://x", session=failing_session)

        outcome = await controller.submit({"a": 1})

        assert outcome.failed
        assert failing_session.request.call_count == 1
        queued = controller.get_queue()
        assert len(queued) == 1
        assert queued[0]["mode"] == "retry"

        await controller.flush()

        assert failing_session.request.call_count == 2
        assert len(controller.get_queue()) == 1

    @pytest.mark.asyncio
    async def test_next_submit_flushes_first(self, store, bus, http_session):
        http_session.request.return_value = http_response(500, "")
        controller = make_controller(store, bus, endpoint="https://x", session=http_session)
        await controller.submit({"n": 1})

        http_session.request.return_value = http_response(200)
        await controller.submit({"n": 2})

        bodies = [json.loads(call[1]["data"])["n"] for call in http_session.request.call_args_list]
        assert bodies == [1, 1, 2]
        assert controller.get_queue() == []


class TestLifecycle:
    """Lifecycle notifications and callbacks."""

    @pytest.mark.asyncio
    async def test_success_notifications(self, store, bus, http_session):
        seen = []
        for name in ("submission:request", "submission:success", "submission:error"):
            bus.subscribe(name, seen.append)
        controller = make_controller(store, bus, endpoint="https://x", session=http_session)

        outcome = await controller.submit({"a": 1})

        assert [n.name for n in seen] == ["submission:request", "submission:success"]
        assert seen[0].payload["a"] == 1
        assert seen[0].outcome is None
        assert seen[1].outcome is outcome

    @pytest.mark.asyncio
    async def test_error_notification_and_callback(self, store, bus, failing_session):
        seen = []
        bus.subscribe("submission:error", seen.append)
        on_success = Mock()
        on_error = Mock()
        controller = make_controller(store, bus, endpoint="https://x", session=failing_session)

        outcome = await controller.submit({"a": 1}, on_success=on_success, on_error=on_error)

        assert len(seen) == 1
        assert seen[0].outcome.reason == "bad_status_500"
        on_error.assert_called_once_with(outcome)
        on_success.assert_not_called()

    @pytest.mark.asyncio
    async def test_local_queue_counts_as_success(self, store, bus):
        on_success = Mock()
        controller = make_controller(store, bus)

        await controller.submit(on_success=on_success)

        assert on_success.call_args[0][0].status == DeliveryOutcome.LOCAL_QUEUED

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self, store, bus):
        controller = make_controller(store, bus)
        outcome = await controller.submit(on_success=Mock(side_effect=RuntimeError("ui gone")))
        assert outcome.status == DeliveryOutcome.LOCAL_QUEUED

    @pytest.mark.asyncio
    async def test_listener_error_is_contained(self, store, bus):
        bus.subscribe("submission:request", Mock(side_effect=ValueError("bad listener")))
        controller = make_controller(store, bus)

        outcome = await controller.submit({"a": 1})

        assert outcome.status == DeliveryOutcome.LOCAL_QUEUED


class TestPayload:
    """Payload building from state, capture and extra fields."""

    def test_payload_merges_sources(self, store, bus):
        state = {"route": "about", "persona_mode": "soft", "recent_inputs": ["c", "b", "a"]}
        controller = make_controller(store, bus, state_provider=lambda: state, capture_depth=2)
        controller.capture("email", "me@example.com")
        controller.capture("route", "pricing")

        payload = controller.build_payload({"route": "checkout", "qty": 2})

        assert payload["route"] == "checkout"
        assert payload["email"] == "me@example.com"
        assert payload["persona_mode"] == "soft"
        assert payload["recent_inputs"] == ["c", "b"]
        assert payload["qty"] == 2
        assert "ts" in payload

    def test_long_text_is_clamped(self, store, bus):
        controller = make_controller(store, bus, max_field_len=10)
        controller.capture("note", "x" * 50)

        payload = controller.build_payload({"comment": "y" * 50})

        assert payload["note"] == "x" * 10
        assert payload["comment"] == "y" * 10

    def test_state_provider_failure_is_ignored(self, store, bus):
        def broken():
            raise RuntimeError("no dom")

        controller = make_controller(store, bus, state_provider=broken)
        payload = controller.build_payload({"a": 1})

        assert payload["a"] == 1

    def test_non_mapping_extra_is_ignored(self, store, bus):
        controller = make_controller(store, bus)
        payload = controller.build_payload(["not", "a", "mapping"])
        assert list(payload) == ["ts"]

    def test_capture_survives_corrupt_state(self, store, bus):
        capture_store = MemoryStore()
        capture_store.set_item(CAPTURE_KEY, "{broken")
        controller = SubmissionController(Mock(), bus, capture_store)

        controller.capture("a", 1)

        assert json.loads(capture_store.get_item(CAPTURE_KEY)) == {"a": 1}


class TestConfiguration:
    """Runtime setters and config construction."""

    def test_from_settings(self, store, bus):
        controller = SubmissionController.from_settings(
            {"endpoint_url": "https://x", "method": "PUT", "timeout_ms": 100,
             "delivery_mode": "best_effort", "queue_key": "subs", "max_field_len": 20},
            store, MemoryStore(), bus,
        )

        assert controller.pipeline.settings.method == "PUT"
        assert controller.pipeline.queue.key == "subs"
        assert controller.max_field_len == 20
        assert controller.pipeline.has_destination
        controller.pipeline.close()

    def test_set_endpoint(self, store, bus):
        controller = make_controller(store, bus)
        controller.set_endpoint("https://x", "PATCH")

        assert controller.pipeline.settings.endpoint_url == "https://x"
        assert controller.pipeline.settings.method == "PATCH"

    @pytest.mark.asyncio
    async def test_init_applies_options(self, store, bus):
        controller = make_controller(store, bus)
        await controller.init(timeout_ms=1000, capture_depth=1, max_field_len=3)

        assert controller.pipeline.settings.timeout_ms == 1000
        assert controller.capture_depth == 1
        assert controller.max_field_len == 3
