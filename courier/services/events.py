"""Lifecycle notifications published by producers."""

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

REQUEST = "request"
SUCCESS = "success"
ERROR = "error"


def topic(source: str, stage: str) -> str:
    """Notification name, e.g. topic('submission', REQUEST) -> 'submission:request'."""
    return f"{source}:{stage}"


@dataclass
class Notification:
    """What listeners receive. Carries data only, never UI instructions."""
    name: str
    payload: Dict[str, Any]
    outcome: Optional[Any] = None


class LifecycleBus:
    """Explicit publish/subscribe channel between producers and listeners."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, name: str, listener: Callable) -> Callable:
        """
        Register a listener for one notification name.

        Returns a callable that removes the subscription.
        """
        self._listeners[name].append(listener)

        def unsubscribe():
            if listener in self._listeners[name]:
                self._listeners[name].remove(listener)

        return unsubscribe

    async def publish(self, name: str, payload: Dict[str, Any], outcome: Any = None):
        """Deliver a notification to every listener; coroutine listeners are awaited."""
        notification = Notification(name=name, payload=payload, outcome=outcome)
        for listener in list(self._listeners.get(name, [])):
            try:
                result = listener(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener for {name} failed: {e}")
