"""Registry of callables addressable by dotted module path."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import ModuleNotRegistered
from .models import ModuleDescriptor

logger = logging.getLogger(__name__)

ModuleFunction = Callable[..., Any]


class ModuleRegistry:
    """Maps ``category.module.function`` paths to callables.

    A registry is constructed explicitly and handed to the executor; there is
    no process-wide instance. Coroutine functions are awaited directly,
    plain functions run in a worker thread so a slow module only suspends
    the run that called it.
    """

    def __init__(self) -> None:
        self._functions: Dict[str, ModuleFunction] = {}
        self._descriptors: Dict[str, ModuleDescriptor] = {}

    def register(
        self,
        path: str,
        func: ModuleFunction,
        description: Optional[str] = None,
    ) -> ModuleDescriptor:
        """Register ``func`` under ``path``, replacing any previous entry."""
        try:
            parameters = list(inspect.signature(func).parameters)
        except (TypeError, ValueError):
            parameters = []
        descriptor = ModuleDescriptor(
            path=path,
            description=description or inspect.getdoc(func),
            is_async=inspect.iscoroutinefunction(func),
            parameters=parameters,
        )
        if path in self._functions:
            logger.debug(f"Replacing registered module {path}")
        self._functions[path] = func
        self._descriptors[path] = descriptor
        return descriptor

    def module(self, path: str, description: Optional[str] = None):
        """Decorator form of :meth:`register`."""

        def decorator(func: ModuleFunction) -> ModuleFunction:
            self.register(path, func, description)
            return func

        return decorator

    def has(self, path: str) -> bool:
        return path in self._functions

    def paths(self) -> List[str]:
        return sorted(self._functions)

    def describe(self, path: str) -> ModuleDescriptor:
        try:
            return self._descriptors[path]
        except KeyError:
            raise ModuleNotRegistered(path) from None

    async def invoke(self, path: str, inputs: Mapping[str, Any]) -> Any:
        """Call the module at ``path`` with ``inputs`` as keyword arguments."""
        func = self._functions.get(path)
        if func is None:
            raise ModuleNotRegistered(path)

        if inspect.iscoroutinefunction(func):
            return await func(**inputs)

        result = await asyncio.to_thread(func, **inputs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __contains__(self, path: object) -> bool:
        return path in self._functions

    def __len__(self) -> int:
        return len(self._functions)
