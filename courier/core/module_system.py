"""Add-on registry: logical name -> module spec."""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Short field names accepted in registrations and config
FIELD_ALIASES = {
    "src": "location",
    "global": "global_marker",
    "sri": "integrity",
    "defer": "deferred",
}

# Fields the structured add-on config may override on a registered module
OVERRIDABLE_FIELDS = ("location", "integrity", "version", "enabled")

# Built-in defaults; analytics is registered by the composition root
DEFAULT_MODULES: Dict[str, Dict[str, Any]] = {
    "submission": {
        "location": "submission.py",
        "global_marker": "RW2Submission",
        "enabled": True,
    },
}


@dataclass
class ModuleSpec:
    """Where to fetch an add-on and how to recognise it once loaded."""
    name: str
    location: str = ""
    global_marker: Optional[str] = None
    integrity: Optional[str] = None
    version: Optional[str] = None
    enabled: Optional[bool] = None
    deferred: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_fields(spec: Mapping[str, Any]) -> Dict[str, Any]:
    """Map short aliases (src, global, sri, defer) onto field names."""
    return {FIELD_ALIASES.get(key, key): value for key, value in spec.items()}


class ModuleRegistry:
    """Registry of add-on specs. Entries are merged on write and never removed."""

    def __init__(self, defaults: Mapping[str, Mapping[str, Any]] = None):
        self._specs: Dict[str, ModuleSpec] = {}
        for name, spec in (defaults or {}).items():
            self.merge(name, spec)

    def merge(self, name: str, spec: Mapping[str, Any]) -> ModuleSpec:
        """
        Merge explicit values into the entry for name, creating it if needed.

        Only values of the right type overwrite; everything else keeps its
        current value. An explicit None global_marker clears the marker.

        Args:
            name: Add-on name
            spec: Mapping of spec fields (aliases allowed)

        Returns:
            The merged spec
        """
        fields = normalize_fields(spec)
        current = self._specs.get(name)
        if current is None:
            current = ModuleSpec(name=name)
            self._specs[name] = current
        else:
            logger.debug(f"Add-on {name} already registered, merging")

        if isinstance(fields.get("location"), str):
            current.location = fields["location"]
        if "global_marker" in fields and (fields["global_marker"] is None or isinstance(fields["global_marker"], str)):
            current.global_marker = fields["global_marker"]
        if isinstance(fields.get("integrity"), str):
            current.integrity = fields["integrity"]
        version = fields.get("version")
        if isinstance(version, str):
            current.version = version
        elif isinstance(version, (int, float)) and not isinstance(version, bool):
            current.version = str(version)
        if isinstance(fields.get("enabled"), bool):
            current.enabled = fields["enabled"]
        elif current.enabled is None:
            current.enabled = True
        if isinstance(fields.get("deferred"), bool):
            current.deferred = fields["deferred"]

        return current

    def apply_override(self, name: str, override: Mapping[str, Any]):
        """Apply a config override to a registered module; unknown names are ignored."""
        if name not in self._specs:
            return
        fields = normalize_fields(override)
        self.merge(name, {key: fields[key] for key in OVERRIDABLE_FIELDS if key in fields})

    def get(self, name: str) -> Optional[ModuleSpec]:
        return self._specs.get(name)

    def names(self) -> List[str]:
        return list(self._specs)

    def enabled_names(self) -> List[str]:
        return [name for name, spec in self._specs.items() if spec.enabled]

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def get_module_info(self) -> List[Dict[str, Any]]:
        """Get information about all registered add-ons."""
        return [spec.to_dict() for spec in self._specs.values()]
