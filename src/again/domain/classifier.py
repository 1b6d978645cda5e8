"""Error classification: normalization, stop-signal unwrapping, group expansion."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from again.domain.errors import NotAnErrorError, StopSignal


@dataclass
class Classification:
    """Normalized view of one attempt failure

    Attributes:
        errors: Errors to record, in observation order
        stop_cause: Set when a StopSignal was observed; the loop ends with it
        has_invalid: True when any error is a NotAnErrorError
    """

    errors: List[Exception] = field(default_factory=list)
    stop_cause: Optional[Exception] = None
    has_invalid: bool = False

    @property
    def stopped(self) -> bool:
        return self.stop_cause is not None

    @property
    def last_error(self) -> Optional[Exception]:
        return self.errors[-1] if self.errors else None


def normalize(value: Any) -> Exception:
    """Turn any failure value into an Exception

    Args:
        value: Raised object, stop cause or cancellation reason

    Returns:
        ``value`` itself when it is an Exception, otherwise a NotAnErrorError
    """
    if isinstance(value, Exception):
        return value
    return NotAnErrorError(value)


def classify(failure: Any) -> Classification:
    """Expand and normalize a failure raised by an attempt

    StopSignal is replaced by its normalized cause; exception groups are
    flattened into their leaf exceptions.
    """
    result = Classification()
    _collect(failure, result)
    return result


def _collect(failure: Any, result: Classification) -> None:
    if isinstance(failure, StopSignal):
        cause = normalize(failure.cause)
        result.errors.append(cause)
        if result.stop_cause is None:
            result.stop_cause = cause
        if isinstance(cause, NotAnErrorError):
            result.has_invalid = True
        return

    if isinstance(failure, BaseExceptionGroup):
        for inner in failure.exceptions:
            _collect(inner, result)
        return

    error = normalize(failure)
    if isinstance(error, NotAnErrorError):
        result.has_invalid = True
    result.errors.append(error)
