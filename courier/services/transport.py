"""Delivery transports and the queue-backed delivery pipeline."""

import asyncio
import enum
import json
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from courier.errors import TransientDeliveryFailure
from courier.services.queue import DeliveryMode, PersistentQueue, QueueItem

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class TransportMode(enum.Enum):
    BEST_EFFORT = "best_effort"
    CONFIRMABLE = "confirmable"

    @classmethod
    def parse(cls, value) -> "TransportMode":
        """Accept enum members, enum values, and the legacy 'beacon'/'fetch' names."""
        if isinstance(value, cls):
            return value
        aliases = {"beacon": cls.BEST_EFFORT, "fetch": cls.CONFIRMABLE}
        text = str(value).strip().lower().replace("-", "_")
        if text in aliases:
            return aliases[text]
        return cls(text)


@dataclass
class DeliverySettings:
    """Destination and transport selection for one producer."""
    endpoint_url: str = ""
    method: str = "POST"
    timeout_ms: int = 8000
    mode: TransportMode = TransportMode.CONFIRMABLE

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass
class DeliveryOutcome:
    """Result of one delivery attempt. Never persisted."""
    status: str
    reason: Optional[str] = None
    response: Optional[Any] = None

    OK = "ok"
    QUEUED = "queued"
    LOCAL_QUEUED = "local_queued"

    @classmethod
    def ok(cls, response: Any = None) -> "DeliveryOutcome":
        return cls(status=cls.OK, response=response)

    @classmethod
    def queued(cls, reason: str) -> "DeliveryOutcome":
        return cls(status=cls.QUEUED, reason=reason)

    @classmethod
    def local_queued(cls) -> "DeliveryOutcome":
        return cls(status=cls.LOCAL_QUEUED)

    @property
    def delivered(self) -> bool:
        return self.status == self.OK

    @property
    def failed(self) -> bool:
        return self.status == self.QUEUED

    def to_dict(self) -> Dict[str, Any]:
        data = {"status": self.status}
        if self.reason:
            data["reason"] = self.reason
        if self.response is not None:
            data["response"] = self.response
        return data


class BeaconChannel:
    """
    One-way sender that only reports whether it accepted a body.

    Accepted bodies are POSTed from a background thread; their results are
    never reported back. Bodies over MAX_BODY_BYTES, a full backlog, or a
    closed channel are rejected.
    """

    MAX_BODY_BYTES = 64 * 1024

    def __init__(self, max_pending: int = 100, timeout: float = 10.0):
        self.max_pending = max_pending
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="courier-beacon")
        self._pending = 0
        self._lock = threading.Lock()
        self._closed = False

    def send(self, url: str, body: str) -> bool:
        data = body.encode("utf-8")
        if self._closed or len(data) > self.MAX_BODY_BYTES:
            return False

        with self._lock:
            if self._pending >= self.max_pending:
                return False
            self._pending += 1

        try:
            self._executor.submit(self._post, url, data)
        except RuntimeError:
            self._release()
            return False
        return True

    def _post(self, url: str, data: bytes):
        try:
            requests.post(url, data=data, headers=JSON_HEADERS, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug(f"Beacon to {url} failed after hand-off: {e}")
        finally:
            self._release()

    def _release(self):
        with self._lock:
            self._pending -= 1

    def close(self):
        self._closed = True
        self._executor.shutdown(wait=False)


class Transport(ABC):
    """Attempts delivery of one item."""

    def __init__(self, settings: DeliverySettings):
        self.settings = settings

    @abstractmethod
    async def attempt(self, item: QueueItem) -> DeliveryOutcome:
        """Try to deliver the item. Never raises."""


class BestEffortTransport(Transport):
    """Fire-and-forget delivery. 'ok' only means the channel accepted the body."""

    def __init__(self, settings: DeliverySettings, channel: BeaconChannel):
        super().__init__(settings)
        self.channel = channel

    async def attempt(self, item: QueueItem) -> DeliveryOutcome:
        try:
            accepted = self.channel.send(self.settings.endpoint_url, json.dumps(item.payload))
        except Exception as e:
            logger.error(f"Beacon channel error: {e}")
            accepted = False

        if accepted:
            return DeliveryOutcome.ok()
        return DeliveryOutcome.queued("beacon_rejected")


class ConfirmableTransport(Transport):
    """Request/response delivery bounded by a timeout."""

    def __init__(self, settings: DeliverySettings, session: requests.Session = None):
        super().__init__(settings)
        self.session = session or requests.Session()

    def _request(self, body: str):
        return self.session.request(
            self.settings.method or "POST",
            self.settings.endpoint_url,
            data=body,
            headers=JSON_HEADERS,
            timeout=self.settings.timeout,
        )

    async def _deliver(self, item: QueueItem):
        body = json.dumps(item.payload)
        try:
            # The worker thread is not interrupted on timeout; its result is dropped
            response = await asyncio.wait_for(
                asyncio.to_thread(self._request, body),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError:
            raise TransientDeliveryFailure("timeout")
        except requests.RequestException as e:
            raise TransientDeliveryFailure(f"network_error: {e}")

        if not 200 <= response.status_code < 300:
            raise TransientDeliveryFailure(f"bad_status_{response.status_code}")
        return response

    async def attempt(self, item: QueueItem) -> DeliveryOutcome:
        try:
            response = await self._deliver(item)
        except TransientDeliveryFailure as e:
            logger.warning(f"Delivery to {self.settings.endpoint_url} failed: {e.reason}")
            return DeliveryOutcome.queued(e.reason)
        except Exception as e:
            logger.error(f"Unexpected delivery error: {e}")
            return DeliveryOutcome.queued(str(e))

        return DeliveryOutcome.ok(response=_parse_body(response.text))


def _parse_body(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return {"ok": True}


def build_transport(settings: DeliverySettings, channel: BeaconChannel = None,
                    session: requests.Session = None) -> Optional[Transport]:
    """Pick the transport for the configured mode; None when no destination is set."""
    if not settings.endpoint_url:
        return None
    if settings.mode is TransportMode.BEST_EFFORT:
        return BestEffortTransport(settings, channel or BeaconChannel(timeout=settings.timeout))
    return ConfirmableTransport(settings, session)


class DeliveryPipeline:
    """
    Couples one persistent queue with the active transport.

    Retry is passive: queued items are only retried when flush() runs. Sends
    and flushes share one lock, so at most one transport attempt per queue is
    in flight and a drain never overlaps another.
    """

    def __init__(self, queue: PersistentQueue, settings: DeliverySettings,
                 channel: BeaconChannel = None, session: requests.Session = None):
        """
        Initialize the pipeline.

        Args:
            queue: Queue holding undelivered items
            settings: Initial destination and mode
            channel: Beacon channel for best-effort mode (created on demand)
            session: HTTP session for confirmable mode (created on demand)
        """
        self.queue = queue
        self.settings = settings
        self._channel = channel
        self._session = session
        self._lock = asyncio.Lock()
        self.transport = None
        self._rebuild()

    @property
    def has_destination(self) -> bool:
        return self.transport is not None

    def _rebuild(self):
        # Channel and session are created once and reused across reconfiguration
        self.transport = build_transport(self.settings, self._channel, self._session)
        if isinstance(self.transport, BestEffortTransport):
            self._channel = self.transport.channel
        elif isinstance(self.transport, ConfirmableTransport):
            self._session = self.transport.session

    def configure(self, endpoint_url: str = None, method: str = None,
                  timeout_ms: int = None, mode=None):
        """Override settings at runtime. Values of the wrong type are ignored."""
        if isinstance(endpoint_url, str):
            self.settings.endpoint_url = endpoint_url
        if isinstance(method, str):
            self.settings.method = method
        if isinstance(timeout_ms, (int, float)) and not isinstance(timeout_ms, bool):
            self.settings.timeout_ms = timeout_ms
        if mode is not None:
            try:
                self.settings.mode = TransportMode.parse(mode)
            except ValueError:
                logger.warning(f"Ignoring unknown delivery mode: {mode}")

        self._rebuild()

    def set_endpoint(self, url: str, method: str = None):
        self.configure(endpoint_url=url, method=method)

    async def _send(self, item: QueueItem) -> DeliveryOutcome:
        if self.transport is None:
            self.queue.enqueue(item.with_mode(DeliveryMode.LOCAL))
            return DeliveryOutcome.local_queued()

        outcome = await self.transport.attempt(item)
        if outcome.failed:
            self.queue.enqueue(item.with_mode(DeliveryMode.RETRY))
        return outcome

    async def _flush(self) -> int:
        moved = 0
        for item in self.queue.drain():
            moved += 1
            await self._send(item)
        if moved:
            logger.info(f"Flushed {moved} queued item(s) from '{self.queue.key}'")
        return moved

    async def send(self, item: QueueItem) -> DeliveryOutcome:
        """Attempt one item, re-queuing it if it cannot be delivered."""
        async with self._lock:
            return await self._send(item)

    async def flush(self) -> int:
        """Retry every item queued when the flush started, one at a time."""
        async with self._lock:
            return await self._flush()

    async def flush_then_send(self, item: QueueItem) -> DeliveryOutcome:
        """Retry the backlog, then attempt the new item, as one locked step."""
        async with self._lock:
            await self._flush()
            return await self._send(item)

    def close(self):
        if self._channel is not None:
            self._channel.close()
        if self._session is not None:
            self._session.close()
