"""Lazy add-on loader: fetches enabled add-ons at most once each."""

import asyncio
import base64
import functools
import hashlib
import hmac
import importlib.abc
import importlib.util
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import quote, urljoin, urlsplit

import requests

from courier.errors import IntegrityError, ModuleLoadError
from courier.core.host import HostEnvironment
from courier.core.module_system import ModuleRegistry, ModuleSpec

logger = logging.getLogger(__name__)

ROOT_ATTRIBUTE = "data-addons"
QUERY_PARAM = "addons"
DEFAULT_BASE_PATH = Path(__file__).resolve().parent.parent / "addons"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_HASHES = {"sha256": hashlib.sha256, "sha384": hashlib.sha384, "sha512": hashlib.sha512}


@dataclass
class LoadResult:
    """A successfully loaded (or already present) add-on."""
    name: str
    location: Optional[str] = None
    cached: bool = False


def parse_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def unique(names: List[str]) -> List[str]:
    seen = set()
    out = []
    for name in names:
        if name not in seen:
            seen.add(name)
            out.append(name)
    return out


def is_absolute_location(location: str) -> bool:
    """Scheme-qualified, protocol-relative and root-relative locations are absolute."""
    return bool(_SCHEME_RE.match(location)) or location.startswith("/")


def apply_version(location: str, version: Optional[str]) -> str:
    """submission.py -> submission.v2.py; other locations get ?v=<version>."""
    if not version:
        return location
    if re.search(r"\.py$", location, re.IGNORECASE):
        return f"{location[:-3]}.v{version}{location[-3:]}"
    return f"{location}?v={quote(version, safe='')}"


def verify_integrity(name: str, location: str, source: bytes, token: str):
    """
    Check source against a subresource-integrity token ("sha384-<base64>").

    Several whitespace-separated tokens may be given; any match passes. A
    token set with no supported algorithm passes, as browsers do.
    """
    candidates = []
    for part in token.split():
        algorithm, _, digest = part.partition("-")
        if algorithm.lower() in _HASHES and digest:
            candidates.append((algorithm.lower(), digest.split("?", 1)[0]))

    if not candidates:
        return

    for algorithm, expected in candidates:
        actual = base64.b64encode(_HASHES[algorithm](source).digest()).decode("ascii")
        if hmac.compare_digest(actual, expected):
            return

    raise IntegrityError(name, location, "integrity mismatch")


def fetch_source(location: str, timeout: float = 10) -> bytes:
    """Fetch add-on source over http(s), or read it from disk."""
    if location.startswith("//"):
        location = "https:" + location

    if location.lower().startswith(("http://", "https://")):
        response = requests.get(location, timeout=timeout)
        response.raise_for_status()
        return response.content

    return Path(urlsplit(location).path).read_bytes()


class AddonSourceLoader(importlib.abc.SourceLoader):
    """Serves already-fetched add-on source to the import machinery."""

    def __init__(self, location: str, source: bytes):
        self.location = location
        self.source = source

    def get_filename(self, fullname: str) -> str:
        return self.location

    def get_data(self, path: str) -> bytes:
        return self.source


class AddonLoader:
    """Resolves which add-ons are enabled and loads each one at most once."""

    def __init__(self, registry: ModuleRegistry, host: HostEnvironment,
                 fetcher: Callable[[str], bytes] = None, base_path: str = None,
                 fetch_timeout: float = 10):
        """
        Initialize the loader.

        Args:
            registry: Add-on specs
            host: Environment add-ons are loaded into
            fetcher: Returns the source for a location (runs in a worker thread)
            base_path: Directory or URL relative locations resolve against
            fetch_timeout: Timeout for the default http fetcher, in seconds
        """
        self.registry = registry
        self.host = host
        self._fetcher = fetcher or functools.partial(fetch_source, timeout=fetch_timeout)
        self.base_path = str(base_path or DEFAULT_BASE_PATH)
        self._futures: Dict[str, asyncio.Future] = {}
        self._init_task: Optional[asyncio.Task] = None

    # -- registry facade --

    def register(self, name: str, spec: Mapping[str, Any], autoload: bool = False) -> "AddonLoader":
        """Register or override an add-on; optionally start loading it."""
        if not name or spec is None:
            return self

        self.registry.merge(name, spec)
        logger.info(f"Registered add-on: {name}")

        # A new registration is the way to retry a failed load
        existing = self._futures.get(name)
        if existing is not None and existing.done() and not existing.cancelled() \
                and existing.exception() is not None:
            del self._futures[name]

        if autoload:
            try:
                self.load(name)
            except RuntimeError:
                logger.warning(f"No running event loop; {name} will load on init()")
        return self

    def is_present(self, name: str) -> bool:
        """True if the add-on's marker is in the host or a load was requested."""
        spec = self.registry.get(name) if name else None
        if spec is None:
            return False
        if spec.global_marker and self.host.has_global(spec.global_marker):
            return True
        return name in self._futures

    # -- resolution --

    def build_location(self, spec: ModuleSpec) -> str:
        location = apply_version(spec.location or "", spec.version)
        if is_absolute_location(location):
            return location
        if _SCHEME_RE.match(self.base_path):
            base = self.base_path if self.base_path.endswith("/") else self.base_path + "/"
            return urljoin(base, location)
        return str(Path(self.base_path) / location)

    def resolve_enabled_set(self) -> List[str]:
        """
        Names of add-ons to activate, first appearance wins the position.

        Sources: root element attribute, query parameter, structured config
        (which may also override registered specs), registry defaults.
        """
        names: List[str] = []
        names += parse_csv(self.host.root_attribute(ROOT_ATTRIBUTE))
        names += parse_csv(self.host.query_param(QUERY_PARAM))

        config = self.host.addons_config
        if isinstance(config, (list, tuple)):
            names += [str(name) for name in config]
        elif isinstance(config, Mapping):
            for name, value in config.items():
                if value is True:
                    names.append(name)
                elif isinstance(value, Mapping):
                    self.registry.apply_override(name, value)

        names += self.registry.enabled_names()
        return unique(names)

    # -- loading --

    def load(self, name: str) -> asyncio.Future:
        """
        Future for one add-on load. Must be called with a running event loop.

        Unregistered names resolve to None. A failed future stays failed until
        the add-on is registered again.
        """
        loop = asyncio.get_running_loop()
        spec = self.registry.get(name) if name else None

        if spec is None:
            future = loop.create_future()
            future.set_result(None)
            return future

        if spec.global_marker and self.host.has_global(spec.global_marker):
            future = loop.create_future()
            future.set_result(LoadResult(name=name, cached=True))
            return future

        existing = self._futures.get(name)
        if existing is not None:
            return existing

        task = loop.create_task(self._load(name, spec))
        task.add_done_callback(functools.partial(self._log_outcome, name))
        self._futures[name] = task
        return task

    async def _load(self, name: str, spec: ModuleSpec) -> LoadResult:
        location = self.build_location(spec)
        try:
            source = await asyncio.to_thread(self._fetcher, location)
        except Exception as e:
            raise ModuleLoadError(name, location, str(e)) from e

        if spec.integrity:
            verify_integrity(name, location, source, spec.integrity)

        try:
            self._execute(name, spec, location, source)
        except Exception as e:
            raise ModuleLoadError(name, location, str(e)) from e

        return LoadResult(name=name, location=location)

    def _execute(self, name: str, spec: ModuleSpec, location: str, source: bytes):
        loader = AddonSourceLoader(location, source)
        module_spec = importlib.util.spec_from_loader(f"courier_addon_{name}", loader)
        module = importlib.util.module_from_spec(module_spec)
        loader.exec_module(module)

        setup = getattr(module, "setup", None)
        if callable(setup):
            setup(self.host)

        marker = spec.global_marker
        if marker and not self.host.has_global(marker) and hasattr(module, marker):
            self.host.expose(marker, getattr(module, marker))

        self.host.modules[name] = module

    def _log_outcome(self, name: str, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(str(error))
        else:
            logger.info(f"Loaded add-on: {name}")

    def init(self) -> asyncio.Task:
        """Load every enabled add-on. Idempotent: later calls return the first task."""
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._init())
        return self._init_task

    async def _init(self) -> List[Any]:
        names = [name for name in self.resolve_enabled_set() if name in self.registry]
        eager = [name for name in names if not self.registry.get(name).deferred]
        deferred = [name for name in names if self.registry.get(name).deferred]

        futures = [self.load(name) for name in eager]
        if deferred:
            # Let eager loads start first
            await asyncio.sleep(0)
            futures += [self.load(name) for name in deferred]

        results = await asyncio.gather(*futures, return_exceptions=True)

        failed = sum(1 for result in results if isinstance(result, BaseException))
        logger.info(f"Add-on loading complete: {len(results) - failed} loaded, {failed} failed")
        return list(results)

    def get_status(self) -> Dict[str, Any]:
        """Get status of all add-ons."""
        status = {}
        for name in self.registry.names():
            future = self._futures.get(name)
            if self.host.has_global(self.registry.get(name).global_marker) and future is None:
                state = "present"
            elif future is None:
                state = "idle"
            elif not future.done():
                state = "loading"
            elif future.cancelled() or future.exception() is not None:
                state = "failed"
            else:
                state = "loaded"
            status[name] = state
        return {
            "total_modules": len(self.registry.names()),
            "enabled_modules": len(self.registry.enabled_names()),
            "modules": status,
        }
