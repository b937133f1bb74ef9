"""Resolution of ``{{path.to.value}}`` templates."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"^\{\{([^}]+)\}\}$")

class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Returned by ``lookup_path`` when a segment cannot be traversed.
MISSING: Any = _Missing()


def template_path(value: Any) -> Optional[str]:
    """Return the path inside a single-expression template, else ``None``.

    Only strings consisting of exactly one ``{{...}}`` expression are
    templates. Anything with surrounding text is a literal.
    """
    if not isinstance(value, str):
        return None
    match = TEMPLATE_PATTERN.match(value)
    if match is None:
        return None
    return match.group(1).strip()


def is_template(value: Any) -> bool:
    return template_path(value) is not None


def lookup_path(source: Any, path: str) -> Any:
    """Walk dotted ``path`` through nested mappings of ``source``.

    Returns ``MISSING`` if a segment is absent or an intermediate value is not
    a mapping.
    """
    current = source
    for segment in path.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        else:
            return MISSING
    return current


def resolve_template(template: Any, context: Mapping[str, Any], default: Any = MISSING) -> Any:
    """Resolve ``template`` against ``context``.

    Non-template values are returned unchanged. A path that cannot be
    resolved yields ``default``; when no default is supplied the template
    itself is returned so the value passes through untouched.
    """
    path = template_path(template)
    if path is None:
        return template

    value = lookup_path(context, path)
    if value is MISSING:
        logger.debug(f"Template path '{path}' not found in context")
        return template if default is MISSING else default
    return value


def resolve_inputs(inputs: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve every top-level input value against ``context``.

    Unresolvable templates become ``None``.
    """
    return {
        name: resolve_template(value, context, None) for name, value in inputs.items()
    }
