"""Durable FIFO queue for outbound items."""

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

import pytz

logger = logging.getLogger(__name__)


class ItemKind(enum.Enum):
    EVENT = "event"
    SUBMISSION = "submission"


class DeliveryMode(enum.Enum):
    LOCAL = "local"    # stored because no destination is configured
    RETRY = "retry"    # stored after a failed delivery attempt


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(pytz.UTC).isoformat()


@dataclass
class QueueItem:
    """One unit of outbound data awaiting delivery."""
    kind: ItemKind
    payload: Dict[str, Any]
    ts: str = field(default_factory=now_iso)
    mode: Optional[DeliveryMode] = None

    def with_mode(self, mode: DeliveryMode) -> "QueueItem":
        return QueueItem(kind=self.kind, payload=self.payload, ts=self.ts, mode=mode)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.ts,
            "kind": self.kind.value,
            "mode": self.mode.value if self.mode else None,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        """Rebuild an item from its stored form. Raises on malformed input."""
        payload = data["payload"]
        if not isinstance(payload, dict):
            raise ValueError("payload must be a mapping")
        mode = data.get("mode")
        return cls(
            kind=ItemKind(data["kind"]),
            payload=payload,
            ts=str(data.get("ts") or ""),
            mode=DeliveryMode(mode) if mode else None,
        )


class PersistentQueue:
    """
    Ordered queue persisted as one JSON list under a fixed storage key.

    Every mutation rewrites the whole list. Items leave the queue when they
    are handed to a delivery attempt, not when delivery is confirmed, so a
    crash mid-drain can lose the item in flight.
    """

    def __init__(self, store, key: str):
        """
        Initialize the queue.

        Args:
            store: Storage backend with get_item/set_item/remove_item
            key: Storage key holding this queue
        """
        self.store = store
        self.key = key

    def _read(self) -> List[QueueItem]:
        raw = self.store.get_item(self.key)
        if not raw:
            return []

        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Discarding unreadable queue state under '{self.key}'")
            return []

        if not isinstance(data, list):
            return []

        items = []
        for entry in data:
            try:
                items.append(QueueItem.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed queue entry under '{self.key}': {e}")
        return items

    def _write(self, items: List[QueueItem]):
        self.store.set_item(self.key, json.dumps([item.to_dict() for item in items]))

    def enqueue(self, item: QueueItem):
        """Append an item to the tail and persist."""
        items = self._read()
        items.append(item)
        self._write(items)
        logger.debug(f"Queued {item.kind.value} item under '{self.key}' ({len(items)} pending)")

    def dequeue(self) -> Optional[QueueItem]:
        """Remove and return the head item, or None when empty."""
        items = self._read()
        if not items:
            return None
        item = items.pop(0)
        self._write(items)
        return item

    def drain(self) -> Iterator[QueueItem]:
        """
        Remove and yield the items present when the drain started, head first.

        Storage is rewritten after each removal. Items appended while the
        drain is running (e.g. re-queued failures) are left for the next one.
        """
        remaining = len(self._read())
        while remaining > 0:
            item = self.dequeue()
            if item is None:
                return
            remaining -= 1
            yield item

    def peek(self) -> List[QueueItem]:
        """Snapshot of the queued items. Does not modify storage."""
        return self._read()

    def clear(self):
        self.store.remove_item(self.key)

    def __len__(self) -> int:
        return len(self._read())
