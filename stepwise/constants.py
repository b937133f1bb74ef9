"""Shared constants for stepwise."""

from __future__ import annotations

# Context namespaces populated from the trigger before the first step runs.
USER_NAMESPACE = "user"
TRIGGER_NAMESPACE = "trigger"
RESERVED_NAMESPACES = frozenset({USER_NAMESPACE, TRIGGER_NAMESPACE})

# Auto-filter rules applied to outputs with no explicit return value.
CREDENTIAL_KEY_PATTERNS = ("_apikey", "_api_key")
CREDENTIAL_PLATFORMS = frozenset(
    {"openai", "anthropic", "youtube", "slack", "twitter", "github", "reddit"}
)

WORKFLOW_QUEUE_NAME = "workflows-execution"
DIRECT_EXECUTION_JOB_ID = "direct-execution"

DEFAULT_CONCURRENCY = 10
DEFAULT_MAX_JOBS_PER_MINUTE = 100
DEFAULT_JOB_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAY = 10.0
DEFAULT_JOB_PRIORITY = 5

# (max age in seconds, max count)
COMPLETED_RETENTION = (86_400, 1_000)
FAILED_RETENTION = (604_800, 5_000)
