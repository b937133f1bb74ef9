"""Populate a registry from importable Python modules."""

from __future__ import annotations

import importlib
import logging
from typing import Iterable

from .registry import ModuleRegistry

logger = logging.getLogger(__name__)

REGISTRATION_HOOK = "register_modules"


def load_registrations(registry: ModuleRegistry, module_names: Iterable[str]) -> int:
    """Import each module and call its ``register_modules(registry)`` hook.

    Returns the number of module paths added to ``registry``.
    """
    before = len(registry)
    for name in module_names:
        module = importlib.import_module(name)
        hook = getattr(module, REGISTRATION_HOOK, None)
        if hook is None or not callable(hook):
            raise ValueError(
                f"Module '{name}' does not define a {REGISTRATION_HOOK}(registry) function"
            )
        hook(registry)
        logger.info(f"Loaded module registrations from {name}")
    return len(registry) - before
