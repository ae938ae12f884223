"""Submission controller: packages submission data and hands it to delivery."""

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from courier.services.events import LifecycleBus, REQUEST, SUCCESS, ERROR, topic
from courier.services.payload import PayloadLimits, clamp_text, sanitize_payload
from courier.services.queue import ItemKind, PersistentQueue, QueueItem, now_iso
from courier.services.transport import (
    DeliveryOutcome,
    DeliveryPipeline,
    DeliverySettings,
    TransportMode,
)

logger = logging.getLogger(__name__)

CAPTURE_KEY = "rw2_capture"
SOURCE = "submission"


class SubmissionController:
    """Offline-first submission producer.

    Submissions go to the configured endpoint; without one they are kept in
    the durable queue until a destination is set. Progress is reported through
    the lifecycle bus as submission:request, submission:success and
    submission:error.
    """

    def __init__(self, pipeline: DeliveryPipeline, bus: LifecycleBus, capture_store,
                 state_provider: Optional[Callable[[], Mapping[str, Any]]] = None,
                 max_field_len: int = 500, capture_depth: int = 4):
        """
        Initialize the controller.

        Args:
            pipeline: Delivery pipeline for submission items
            bus: Lifecycle notification channel
            capture_store: Session-scoped store for capture() fields
            state_provider: Returns external state to include in every payload
            max_field_len: Hard cap per text field
            capture_depth: How many recent inputs to keep from the state snapshot
        """
        self.pipeline = pipeline
        self.bus = bus
        self.capture_store = capture_store
        self.state_provider = state_provider
        self.max_field_len = max_field_len
        self.capture_depth = capture_depth

    @classmethod
    def from_settings(cls, section: Dict[str, Any], durable_store, capture_store,
                      bus: LifecycleBus, state_provider=None) -> "SubmissionController":
        """Build a controller from the 'submission' config section."""
        settings = DeliverySettings(
            endpoint_url=section.get("endpoint_url") or "",
            method=section.get("method", "POST"),
            timeout_ms=section.get("timeout_ms", 8000),
            mode=TransportMode.parse(section.get("delivery_mode", "confirmable")),
        )
        queue = PersistentQueue(durable_store, section.get("queue_key", "rw2_queue_v1"))
        return cls(
            DeliveryPipeline(queue, settings),
            bus,
            capture_store,
            state_provider=state_provider,
            max_field_len=section.get("max_field_len", 500),
            capture_depth=section.get("capture_depth", 4),
        )

    @property
    def limits(self) -> PayloadLimits:
        return PayloadLimits(max_field_len=self.max_field_len)

    async def init(self, endpoint_url: str = None, method: str = None, timeout_ms: int = None,
                   delivery_mode: str = None, capture_depth: int = None,
                   max_field_len: int = None) -> int:
        """Apply option overrides, then retry anything left in the queue."""
        self.pipeline.configure(
            endpoint_url=endpoint_url,
            method=method,
            timeout_ms=timeout_ms,
            mode=delivery_mode,
        )
        if isinstance(capture_depth, int):
            self.capture_depth = capture_depth
        if isinstance(max_field_len, int):
            self.max_field_len = max_field_len

        return await self.flush()

    def set_endpoint(self, url: str, method: str = None):
        self.pipeline.set_endpoint(url, method)

    def capture(self, field: str, value: Any):
        """Store a field to merge into every later submission."""
        try:
            captured = self._captured()
            captured[str(field)] = clamp_text(value, self.max_field_len) if isinstance(value, str) else value
            self.capture_store.set_item(CAPTURE_KEY, json.dumps(sanitize_payload(captured, self.limits)))
        except Exception as e:
            logger.warning(f"Could not capture field '{field}': {e}")

    def _captured(self) -> Dict[str, Any]:
        raw = self.capture_store.get_item(CAPTURE_KEY)
        try:
            data = json.loads(raw) if raw else {}
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _snapshot(self) -> Dict[str, Any]:
        if self.state_provider is None:
            return {}
        try:
            state = dict(self.state_provider() or {})
        except Exception as e:
            logger.warning(f"State provider failed, submitting without it: {e}")
            return {}

        recent = state.get("recent_inputs")
        if isinstance(recent, (list, tuple)):
            state["recent_inputs"] = list(recent)[:self.capture_depth]
        return state

    def build_payload(self, extra: Mapping[str, Any] = None) -> Dict[str, Any]:
        """Timestamp + external state, overlaid with captured fields and extra."""
        payload: Dict[str, Any] = {"ts": now_iso()}
        payload.update(self._snapshot())

        fields = dict(self._captured())
        if isinstance(extra, Mapping):
            fields.update(extra)
        for key, value in fields.items():
            payload[key] = clamp_text(value, self.max_field_len) if isinstance(value, str) else value

        return sanitize_payload(payload, self.limits)

    async def submit(self, extra: Mapping[str, Any] = None,
                     on_success: Callable[[DeliveryOutcome], Any] = None,
                     on_error: Callable[[DeliveryOutcome], Any] = None) -> DeliveryOutcome:
        """Build a payload, retry older submissions, then deliver this one."""
        payload = self.build_payload(extra)
        item = QueueItem(kind=ItemKind.SUBMISSION, payload=payload, ts=payload["ts"])

        await self.bus.publish(topic(SOURCE, REQUEST), payload)

        outcome = await self.pipeline.flush_then_send(item)

        if outcome.failed:
            await self.bus.publish(topic(SOURCE, ERROR), payload, outcome)
            callback = on_error
        else:
            await self.bus.publish(topic(SOURCE, SUCCESS), payload, outcome)
            callback = on_success

        if callback is not None:
            try:
                callback(outcome)
            except Exception as e:
                logger.error(f"Submission callback failed: {e}")

        return outcome

    async def flush(self) -> int:
        return await self.pipeline.flush()

    def get_queue(self) -> List[Dict[str, Any]]:
        return [item.to_dict() for item in self.pipeline.queue.peek()]
