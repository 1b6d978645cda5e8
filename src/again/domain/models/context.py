"""Execution context models - attempt bookkeeping for one engine invocation"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple


def same_error(a: BaseException, b: BaseException) -> bool:
    """Structural equality used for deduplication: same class and same message"""
    return type(a) is type(b) and str(a) == str(b)


@dataclass(frozen=True)
class RetryContext:
    """Read-only snapshot of an execution context.

    This is what operations, callbacks and results see.
    """

    attempts: int
    retries_consumed: int
    errors: Tuple[BaseException, ...]
    start: float
    end: Optional[float] = None

    @property
    def elapsed(self) -> float:
        """Seconds between start and end (or now, while still running)"""
        end = self.end if self.end is not None else time.monotonic()
        return end - self.start

    @property
    def last_error(self) -> Optional[BaseException]:
        """Most recently recorded error, if any"""
        return self.errors[-1] if self.errors else None


@dataclass
class ExecutionContext:
    """Mutable, single-use record owned by the retry loop"""

    attempts: int = 0
    retries_consumed: int = 0
    errors: List[BaseException] = field(default_factory=list)
    start: float = field(default_factory=time.monotonic)
    end: Optional[float] = None

    def record(self, errors: Iterable[BaseException], allow_duplicates: bool = False) -> None:
        """Append errors to the log, dropping repeats of the last entry

        Args:
            errors: Normalized errors in the order they were observed
            allow_duplicates: Record every error even if it repeats the last one
        """
        for error in errors:
            if not allow_duplicates and self.errors and same_error(self.errors[-1], error):
                continue
            self.errors.append(error)

    def finish(self) -> RetryContext:
        """Stamp the end time and return the final snapshot"""
        self.end = max(time.monotonic(), self.start)
        return self.snapshot()

    def snapshot(self) -> RetryContext:
        return RetryContext(
            attempts=self.attempts,
            retries_consumed=self.retries_consumed,
            errors=tuple(self.errors),
            start=self.start,
            end=self.end,
        )
