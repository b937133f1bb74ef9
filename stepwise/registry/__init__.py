"""Module registry used by the step executor to invoke step modules."""

from __future__ import annotations

from .loader import load_registrations
from .models import ModuleDescriptor
from .registry import ModuleFunction, ModuleRegistry

__all__ = [
    "ModuleDescriptor",
    "ModuleFunction",
    "ModuleRegistry",
    "load_registrations",
]
