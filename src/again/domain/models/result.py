"""RetryResult model - terminal outcome of one engine invocation"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from again.domain.models.context import RetryContext

T = TypeVar("T")


class RetryState(str, Enum):
    """States of the retry loop. Everything except RUNNING is terminal."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_EXHAUSTED = "failed_exhausted"
    FAILED_STOPPED = "failed_stopped"
    FAILED_GATED = "failed_gated"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Result of running an operation through the engine"""

    ok: bool
    context: RetryContext
    state: RetryState
    value: Optional[T] = None
    error: Optional[BaseException] = None  # Surfaced error when ok is False

    @property
    def cancelled(self) -> bool:
        return self.state is RetryState.CANCELLED

    def unwrap(self) -> Any:
        """Return the value, raising the surfaced error on failure"""
        if self.ok:
            return self.value
        if self.error is not None:
            raise self.error
        raise RuntimeError("Retry failed without a recorded error")
