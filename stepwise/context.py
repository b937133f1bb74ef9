"""Per-run variable context."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterator, Mapping, Optional

from .constants import RESERVED_NAMESPACES, TRIGGER_NAMESPACE, USER_NAMESPACE

logger = logging.getLogger(__name__)


class VariableContext(Mapping[str, Any]):
    """Key/value environment threaded through the steps of one run.

    The context is created once per run and discarded with it. Steps read
    from it through template resolution; the executor writes each step's
    return value under the step's ``outputAs`` key. There is no delete.
    """

    def __init__(self, variables: Optional[Mapping[str, Any]] = None) -> None:
        self._variables: Dict[str, Any] = dict(variables or {})

    @classmethod
    def for_trigger(
        cls,
        user_id: str,
        trigger_type: str,
        trigger_data: Optional[Mapping[str, Any]] = None,
        user: Optional[Mapping[str, Any]] = None,
    ) -> "VariableContext":
        """Build the initial context for a run from its trigger."""
        user_ns: Dict[str, Any] = {"id": user_id}
        if user:
            user_ns.update(user)
        trigger_ns: Dict[str, Any] = {"type": trigger_type}
        if trigger_data:
            trigger_ns.update(trigger_data)
        return cls({USER_NAMESPACE: user_ns, TRIGGER_NAMESPACE: trigger_ns})

    def get(self, key: str, default: Any = None) -> Any:
        return self._variables.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key in RESERVED_NAMESPACES:
            logger.warning(
                f"Step output '{key}' overwrites a reserved context namespace"
            )
        self._variables[key] = value

    def __getitem__(self, key: str) -> Any:
        return self._variables[key]

    def __contains__(self, key: object) -> bool:
        return key in self._variables

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def snapshot(self) -> Dict[str, Any]:
        """Return a deep copy of the current variables."""
        return copy.deepcopy(self._variables)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._variables)

    def __repr__(self) -> str:
        return f"VariableContext(keys={list(self._variables)})"
