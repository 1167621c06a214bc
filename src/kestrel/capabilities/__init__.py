"""Capability system: registration, dispatch, and the reserved capabilities.

Capabilities are auto-discovered via ``Capability.__init_subclass__``.
Any concrete ``Capability`` subclass defined in a module under
``kestrel.capabilities``, or in a plugin module passed to
``discover_capabilities()``, is collected when that module is imported.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
import threading
from collections.abc import Iterable

import kestrel.capabilities as _pkg
from kestrel.capabilities.registry import Capability as Capability
from kestrel.capabilities.registry import CapabilityContext as CapabilityContext
from kestrel.capabilities.registry import CapabilityRegistry
from kestrel.capabilities.registry import CapabilityResult as CapabilityResult
from kestrel.exceptions import CapabilityError

# Modules that contain utilities, not capabilities.
_SKIP_MODULES = frozenset({"registry"})
logger = logging.getLogger(__name__)
_DISCOVER_LOCK = threading.Lock()
_BUILTINS_IMPORTED = False


def discover_capabilities(plugins: Iterable[str] = ()) -> list[type[Capability]]:
    """Import capability modules and return discovered classes.

    Built-in modules are imported once. Each plugin is an importable
    module path; importing it registers its ``Capability`` subclasses.
    The collected classes are returned sorted by name for deterministic
    ordering.
    """
    global _BUILTINS_IMPORTED
    with _DISCOVER_LOCK:
        if not _BUILTINS_IMPORTED:
            for _finder, module_name, _is_pkg in pkgutil.walk_packages(
                _pkg.__path__, prefix=_pkg.__name__ + "."
            ):
                if module_name.rsplit(".", 1)[-1] in _SKIP_MODULES:
                    continue
                importlib.import_module(module_name)
            _BUILTINS_IMPORTED = True

        for plugin in plugins:
            try:
                importlib.import_module(plugin)
            except ImportError as e:
                raise CapabilityError(
                    f"Cannot import capability plugin {plugin!r}: {e}"
                ) from e

        return sorted(Capability._registered_classes, key=lambda cls: cls.__name__)


def create_default_registry(plugins: Iterable[str] = ()) -> CapabilityRegistry:
    """Create a registry with every discovered capability.

    Classes that need constructor arguments cannot be built here; they
    are skipped with a warning and must be registered by hand.
    """
    registry = CapabilityRegistry()
    for cls in discover_capabilities(plugins):
        try:
            capability = cls()
        except TypeError as e:
            logger.warning("Skipping capability %s: %s", cls.__name__, e)
            continue
        if registry.has(capability.name):
            logger.warning(
                "Duplicate capability id %s from %s ignored",
                capability.name, cls.__name__,
            )
            continue
        registry.register(capability)
    return registry
