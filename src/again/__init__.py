"""again - retry asynchronous operations with backoff, gating and cancellation."""

from again.application.conventions import retry, retry_safe, retryify
from again.application.engine import RetryEngine
from again.domain.backoff import compute_wait
from again.domain.config.options import DEFAULT_OPTIONS, RetryOptions, resolve_options
from again.domain.errors import (
    AgainError,
    ConfigurationError,
    ExhaustedError,
    NotAnErrorError,
    StopSignal,
)
from again.domain.models.context import RetryContext
from again.domain.models.result import RetryResult, RetryState
from again.domain.models.signal import CancellationSignal

__all__ = [
    "retry",
    "retry_safe",
    "retryify",
    "RetryEngine",
    "compute_wait",
    "DEFAULT_OPTIONS",
    "RetryOptions",
    "resolve_options",
    "AgainError",
    "ConfigurationError",
    "ExhaustedError",
    "NotAnErrorError",
    "StopSignal",
    "RetryContext",
    "RetryResult",
    "RetryState",
    "CancellationSignal",
]
