"""Privacy-light event logger with an offline queue."""

import logging
from typing import Any, Dict, List, Mapping
from urllib.parse import urlsplit

from courier.services.events import LifecycleBus, Notification, REQUEST, SUCCESS, ERROR, topic
from courier.services.payload import sanitize_payload
from courier.services.queue import ItemKind, PersistentQueue, QueueItem, now_iso
from courier.services.transport import (
    DeliveryOutcome,
    DeliveryPipeline,
    DeliverySettings,
    TransportMode,
)

logger = logging.getLogger(__name__)

SOURCE = "analytics"
USER_AGENT = "courier/0.1"

# Submission lifecycle notification -> recorded event type
SUBMISSION_EVENTS = {
    topic("submission", REQUEST): "submission_request",
    topic("submission", SUCCESS): "submission_success",
    topic("submission", ERROR): "submission_error",
}


class Analytics:
    """Records telemetry events and delivers them best-effort."""

    def __init__(self, pipeline: DeliveryPipeline, bus: LifecycleBus, page_url: str = ""):
        self.pipeline = pipeline
        self.bus = bus
        self.page_url = page_url
        self._unsubscribers = []

    @classmethod
    def from_settings(cls, section: Dict[str, Any], durable_store, bus: LifecycleBus,
                      page_url: str = "") -> "Analytics":
        """Build the logger from the 'analytics' config section."""
        settings = DeliverySettings(
            endpoint_url=section.get("endpoint") or "",
            method=section.get("method", "POST"),
            timeout_ms=section.get("timeout_ms", 5000),
            mode=TransportMode.parse(section.get("send_mode", "best_effort")),
        )
        queue = PersistentQueue(durable_store, section.get("queue_key", "rw2_analytics_q1"))
        return cls(DeliveryPipeline(queue, settings), bus, page_url=page_url)

    async def init(self, endpoint: str = None, method: str = None, timeout_ms: int = None,
                   send_mode: str = None):
        """Apply overrides, retry queued events, hook lifecycle, record a pageview."""
        self.pipeline.configure(
            endpoint_url=endpoint,
            method=method,
            timeout_ms=timeout_ms,
            mode=send_mode,
        )
        await self.flush()
        self.hook()

        parts = urlsplit(self.page_url or "")
        path = parts.path + (f"#{parts.fragment}" if parts.fragment else "")
        await self.record_event("pageview", {"path": path, "ua": USER_AGENT})

    def hook(self):
        """Record submission lifecycle notifications as events. Safe to call twice."""
        if self._unsubscribers:
            return
        for name in SUBMISSION_EVENTS:
            self._unsubscribers.append(self.bus.subscribe(name, self._on_submission))

    def unhook(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    async def _on_submission(self, notification: Notification):
        detail: Dict[str, Any] = {"payload": notification.payload}
        if isinstance(notification.outcome, DeliveryOutcome):
            detail["outcome"] = notification.outcome.to_dict()
        await self.record_event(SUBMISSION_EVENTS[notification.name], detail)

    async def record_event(self, kind: str, payload: Mapping[str, Any] = None) -> DeliveryOutcome:
        """Queue-backed delivery of one event: {ts, type, payload}."""
        body = {
            "ts": now_iso(),
            "type": str(kind),
            "payload": sanitize_payload(payload or {}),
        }
        item = QueueItem(kind=ItemKind.EVENT, payload=body, ts=body["ts"])

        await self.bus.publish(topic(SOURCE, REQUEST), body)

        outcome = await self.pipeline.flush_then_send(item)

        stage = ERROR if outcome.failed else SUCCESS
        await self.bus.publish(topic(SOURCE, stage), body, outcome)
        return outcome

    async def flush(self) -> int:
        return await self.pipeline.flush()

    def set_endpoint(self, url: str, method: str = None):
        self.pipeline.set_endpoint(url, method)

    def get_queue(self) -> List[Dict[str, Any]]:
        return [item.to_dict() for item in self.pipeline.queue.peek()]
