"""Cancellation bridge - suspension points that observe a CancellationSignal.

Every wait inside the retry loop goes through ``sleep`` so that a fired
signal ends the wait right away instead of at the next attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from again.domain.models.signal import CancellationSignal

logger = logging.getLogger(__name__)


async def sleep(delay: float, signal: Optional[CancellationSignal] = None) -> bool:
    """Sleep for ``delay`` seconds unless the signal fires first

    Args:
        delay: Seconds to wait
        signal: Optional cancellation signal

    Returns:
        True if the full delay elapsed, False if the signal fired
    """
    if signal is None:
        await asyncio.sleep(delay)
        return True
    if signal.cancelled:
        return False

    timer = asyncio.ensure_future(asyncio.sleep(delay))
    listener = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({timer, listener}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # Whatever happens, neither the timer nor the listener outlives this wait
        for task in (timer, listener):
            if not task.done():
                task.cancel()
        await asyncio.gather(timer, listener, return_exceptions=True)

    if signal.cancelled:
        logger.debug(f"Wait of {delay:.3f}s interrupted by cancellation")
        return False
    return True

