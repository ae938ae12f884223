"""Core add-on loading functionality."""

from .module_system import ModuleRegistry, ModuleSpec, DEFAULT_MODULES
from .host import HostEnvironment
from .module_loader import AddonLoader, LoadResult

__all__ = ["ModuleRegistry", "ModuleSpec", "DEFAULT_MODULES", "HostEnvironment", "AddonLoader", "LoadResult"]
