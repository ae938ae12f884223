"""Delivery services: storage, queue, transports and producers."""

from .storage import DatabaseStore, MemoryStore
from .queue import PersistentQueue, QueueItem, ItemKind, DeliveryMode
from .events import LifecycleBus, Notification
from .transport import (
    DeliveryOutcome,
    DeliveryPipeline,
    DeliverySettings,
    TransportMode,
    BeaconChannel,
    BestEffortTransport,
    ConfirmableTransport,
)
from .submission import SubmissionController
from .analytics import Analytics

__all__ = [
    "DatabaseStore", "MemoryStore", "PersistentQueue", "QueueItem", "ItemKind", "DeliveryMode",
    "LifecycleBus", "Notification", "DeliveryOutcome", "DeliveryPipeline", "DeliverySettings",
    "TransportMode", "BeaconChannel", "BestEffortTransport", "ConfirmableTransport",
    "SubmissionController", "Analytics",
]
