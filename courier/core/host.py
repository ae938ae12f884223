"""The environment add-ons are loaded into."""

import asyncio
import logging
from typing import Any, Coroutine, Dict, Mapping, Optional
from urllib.parse import parse_qs, urlsplit

logger = logging.getLogger(__name__)


class HostEnvironment:
    """
    Shared namespace plus the page context that selects add-ons.

    Args:
        url: Address of the hosting page; its query string may enable add-ons
        root_attributes: Attributes of the root element (e.g. data-addons)
        addons_config: Structured add-on config, a list of names or a mapping
        runtime: Composition root handed to add-on setup hooks
    """

    def __init__(self, url: str = "", root_attributes: Mapping[str, str] = None,
                 addons_config: Any = None, runtime: Any = None):
        self.url = url or ""
        self.root_attributes = dict(root_attributes or {})
        self.addons_config = addons_config
        self.runtime = runtime
        self.globals: Dict[str, Any] = {}
        self.modules: Dict[str, Any] = {}
        self._tasks = set()

    def has_global(self, name: Optional[str]) -> bool:
        return bool(name) and bool(self.globals.get(name))

    def get_global(self, name: str) -> Any:
        return self.globals.get(name)

    def expose(self, name: str, value: Any):
        self.globals[name] = value

    def root_attribute(self, name: str) -> Optional[str]:
        return self.root_attributes.get(name)

    def query_param(self, name: str) -> Optional[str]:
        try:
            values = parse_qs(urlsplit(self.url).query).get(name)
        except ValueError:
            return None
        return values[0] if values else None

    def schedule(self, coro: Coroutine) -> asyncio.Task:
        """Run a coroutine in the background, logging (not raising) its failure."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._finish)
        return task

    def _finish(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")

    async def drain_tasks(self):
        """Wait for background tasks started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
