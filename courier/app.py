"""Composition root: one registry, loader, bus and store set per process."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from courier.config import DEFAULT_CONFIG, merge_config
from courier.core import AddonLoader, HostEnvironment, ModuleRegistry, DEFAULT_MODULES
from courier.services import DatabaseStore, LifecycleBus, MemoryStore
from courier.services.transport import DeliveryPipeline

logger = logging.getLogger(__name__)

ANALYTICS_SPEC = {
    "location": "analytics.py",
    "global_marker": "RW2Analytics",
    "enabled": True,
}


@dataclass
class Runtime:
    """Everything add-ons and producers share within one process."""
    config: Dict[str, Any]
    host: HostEnvironment
    loader: AddonLoader
    bus: LifecycleBus
    durable_store: Any
    capture_store: Any
    state_provider: Optional[Callable[[], Mapping[str, Any]]] = None
    pipelines: List[DeliveryPipeline] = field(default_factory=list)

    @property
    def submission(self):
        """The submission controller, once its add-on has loaded."""
        return self.host.get_global("RW2Submission")

    @property
    def analytics(self):
        """The event logger, once its add-on has loaded."""
        return self.host.get_global("RW2Analytics")

    async def start(self) -> List[Any]:
        """Load enabled add-ons and wait for their own start-up work."""
        results = await self.loader.init()
        await self.host.drain_tasks()
        return results

    def close(self):
        for pipeline in self.pipelines:
            pipeline.close()


def build_runtime(config: Mapping[str, Any] = None, state_provider=None, fetcher=None,
                  durable_store=None, capture_store=None) -> Runtime:
    """
    Build the runtime from configuration.

    Args:
        config: Loaded configuration (defaults fill any missing keys)
        state_provider: External state merged into every submission
        fetcher: Add-on source fetcher override
        durable_store: Queue storage (defaults to the database store)
        capture_store: Session capture storage (defaults to memory)

    Returns:
        Runtime with add-ons registered but not yet loaded
    """
    config = merge_config(DEFAULT_CONFIG, dict(config or {}))
    addons = config["addons"]
    host_config = config["host"]

    host = HostEnvironment(
        url=host_config.get("url") or "",
        root_attributes=host_config.get("root_attributes") or {},
        addons_config=addons.get("enable"),
    )
    registry = ModuleRegistry(DEFAULT_MODULES)
    loader = AddonLoader(
        registry,
        host,
        fetcher=fetcher,
        base_path=addons.get("base_path"),
        fetch_timeout=addons.get("fetch_timeout", 10),
    )

    runtime = Runtime(
        config=config,
        host=host,
        loader=loader,
        bus=LifecycleBus(),
        durable_store=durable_store if durable_store is not None else DatabaseStore(),
        capture_store=capture_store if capture_store is not None else MemoryStore(),
        state_provider=state_provider,
    )
    host.runtime = runtime

    loader.register("analytics", ANALYTICS_SPEC, autoload=False)
    for name, spec in (addons.get("modules") or {}).items():
        if isinstance(spec, Mapping):
            loader.register(name, spec, autoload=False)
        else:
            logger.warning(f"Ignoring add-on registration for {name}: expected a mapping")

    return runtime
