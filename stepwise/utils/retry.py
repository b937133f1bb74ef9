from __future__ import annotations

import random


def compute_backoff(
    attempt: int, base_delay: float = 10.0, factor: float = 2.0, jitter: float = 0.0
) -> float:
    """Compute exponential backoff for the retry following ``attempt``.

    ``attempt`` is 1-based: the first failure waits ``base_delay``, each
    later one ``factor`` times longer than the previous.
    """
    delay = base_delay * factor ** max(attempt - 1, 0)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay
