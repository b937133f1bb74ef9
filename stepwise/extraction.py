"""Derive the user-visible output of a run from its raw terminal context."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from .constants import CREDENTIAL_KEY_PATTERNS, CREDENTIAL_PLATFORMS, RESERVED_NAMESPACES
from .templates import MISSING, lookup_path, template_path

logger = logging.getLogger(__name__)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def is_filtered_key(key: str) -> bool:
    """Return ``True`` for internal or credential-bearing context keys."""
    if key in RESERVED_NAMESPACES:
        return True
    if any(pattern in key for pattern in CREDENTIAL_KEY_PATTERNS):
        return True
    return key in CREDENTIAL_PLATFORMS


def auto_filter(output: Mapping[str, Any]) -> Any:
    """Drop internal and credential keys.

    If nothing would remain, the unfiltered output is returned instead.
    """
    filtered = {key: value for key, value in output.items() if not is_filtered_key(key)}
    if not filtered:
        return output
    logger.debug(f"Auto-filtered output keys: {list(filtered)}")
    return filtered


def extract_output(raw_output: Any, return_value: Optional[str] = None) -> Any:
    """Apply ``return_value`` extraction or the auto-filter to ``raw_output``.

    Precedence:

    1. ``return_value`` set and output is a mapping: resolve the template
       against it, falling back to the whole output on a miss.
    2. ``return_value`` set and output is a sequence: already extracted, pass
       through.
    3. No ``return_value`` and output is a mapping: auto-filter.
    4. Anything else passes through unchanged.

    Runs stored before extraction moved into the executor hold the full
    context, so this has to stay correct when applied a second time.
    """
    if return_value and isinstance(raw_output, Mapping):
        path = template_path(return_value)
        if path is None:
            logger.debug(f"returnValue '{return_value}' is not a template; not applied")
            return raw_output
        value = lookup_path(raw_output, path)
        if value is MISSING:
            logger.warning(
                f"returnValue path '{path}' not found in output, using full output"
            )
            return raw_output
        return value

    if return_value and _is_sequence(raw_output):
        return raw_output

    if not return_value and isinstance(raw_output, Mapping):
        return auto_filter(raw_output)

    return raw_output


class OutputExtractor:
    """Extraction policy bound to one workflow's ``returnValue``."""

    def __init__(self, return_value: Optional[str] = None) -> None:
        self.return_value = return_value

    def __call__(self, raw_output: Any) -> Any:
        return extract_output(raw_output, self.return_value)
