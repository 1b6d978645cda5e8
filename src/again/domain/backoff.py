"""Backoff calculation - delay before the next attempt."""

from __future__ import annotations

import math
import random
from typing import List

from again.domain.config.options import RetryOptions

# Largest jitter factor; 1.0 + random.random() can round up to 2.0
JITTER_CEILING = math.nextafter(2.0, 0.0)


def compute_wait(time_remaining: float, retries_consumed: int, options: RetryOptions) -> float:
    """Compute the delay before the next attempt.

    Implements: min(min_wait * linear * growth_factor^retries_consumed * jitter,
    max_wait, time_remaining), floored at 0, where linear is the consumed
    retry count (or 1 when linear growth is off) and jitter is a uniform
    random factor in [1, 2) (or 1 when jitter is off).

    Args:
        time_remaining: Seconds left in the elapsed-time budget (may be inf)
        retries_consumed: Retries already counted against the budget
        options: Resolved retry options

    Returns:
        Delay in seconds
    """
    linear = retries_consumed if options.use_linear_growth else 1
    if options.min_wait == 0 or linear <= 0:
        return 0.0

    try:
        exponential = float(options.growth_factor) ** max(0, retries_consumed)
    except OverflowError:
        exponential = math.inf

    jitter = min(1.0 + random.random(), JITTER_CEILING) if options.use_jitter else 1.0
    candidate = options.min_wait * linear * exponential * jitter
    return max(0.0, min(candidate, options.max_wait, time_remaining))


def backoff_schedule(options: RetryOptions, retries: int) -> List[float]:
    """List the waits for the first ``retries`` consumed retries, ignoring the time budget"""
    return [compute_wait(math.inf, consumed, options) for consumed in range(retries)]
