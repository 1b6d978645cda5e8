"""CancellationSignal model - external cancellation source handed to the engine"""

from __future__ import annotations

import asyncio
from typing import Any, Optional


class CancellationSignal:
    """One-shot cancellation flag with a carried reason.

    The engine only reads ``cancelled`` and ``reason`` and waits on the signal
    for the duration of a single suspension point. Create one per event loop.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Any = None

    @property
    def cancelled(self) -> bool:
        """Check if the signal has fired"""
        return self._event.is_set()

    @property
    def reason(self) -> Any:
        """Value passed to ``cancel()``, or None while not cancelled"""
        return self._reason

    def cancel(self, reason: Any = None) -> None:
        """Fire the signal. Later calls keep the first reason."""
        if self._event.is_set():
            return
        if reason is None:
            reason = asyncio.CancelledError("Retry cancelled")
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise the cancellation reason if the signal has fired"""
        if not self.cancelled:
            return
        if isinstance(self._reason, BaseException):
            raise self._reason
        raise asyncio.CancelledError(str(self._reason))

    async def wait(self) -> Any:
        """Wait until the signal fires and return its reason"""
        await self._event.wait()
        return self._reason

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"<CancellationSignal {state}>"


def cancelled_signal(reason: Optional[Any] = None) -> CancellationSignal:
    """Create a signal that has already fired"""
    signal = CancellationSignal()
    signal.cancel(reason)
    return signal
