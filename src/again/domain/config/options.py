"""Retry options model and resolver."""

from __future__ import annotations

import math
from numbers import Real
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from again.domain.errors import ConfigurationError
from again.domain.models.signal import CancellationSignal

# field -> (minimum, allow infinity, must be integral)
NUMERIC_CONSTRAINTS: Dict[str, Tuple[float, bool, bool]] = {
    "max_attempts": (1, True, True),
    "max_elapsed": (0, True, False),
    "min_wait": (0, False, False),
    "max_wait": (0, True, False),
    "growth_factor": (0, False, False),
    "concurrency_per_attempt": (1, False, True),
}


def _no_op(context: Any) -> None:
    return None


def _always(context: Any) -> bool:
    return True


class RetryOptions(BaseModel):
    """Resolved, immutable configuration for one engine invocation.

    Durations are in seconds.

    Attributes:
        max_attempts: Total consumed attempts permitted (first attempt + retries), or ``math.inf``
        max_elapsed: Wall-clock budget measured from the first attempt
        min_wait: Base delay between attempts
        max_wait: Upper bound on the delay between attempts
        growth_factor: Exponential multiplier base (must be > 0)
        use_linear_growth: Multiply the delay by the number of consumed retries
        use_jitter: Scale the delay by a random factor in [1, 2)
        allow_duplicate_error_logging: Record identical consecutive errors instead of dropping them
        wait_even_if_retry_not_consumed: Still wait when ``should_consume_retry`` declines
        concurrency_per_attempt: Number of invocations raced per attempt
        on_catch: Called with the context after every failure
        should_consume_retry: Returns whether the failed attempt counts against ``max_attempts``
        should_retry: Returns whether retrying should continue at all
        after_wait: Called with the context after every completed wait
        cancellation_signal: Optional external cancellation source
    """

    max_attempts: Union[int, float] = 5
    max_elapsed: float = math.inf
    min_wait: float = 0.1
    max_wait: float = math.inf
    growth_factor: float = 1.0
    use_linear_growth: bool = True
    use_jitter: bool = False
    allow_duplicate_error_logging: bool = False
    wait_even_if_retry_not_consumed: bool = False
    concurrency_per_attempt: int = 1
    on_catch: Callable[..., Any] = _no_op
    should_consume_retry: Callable[..., Any] = _always
    should_retry: Callable[..., Any] = _always
    after_wait: Callable[..., Any] = _no_op
    cancellation_signal: Optional[CancellationSignal] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @field_validator(*NUMERIC_CONSTRAINTS, mode="before")
    @classmethod
    def _check_numeric(cls, value: Any, info: ValidationInfo) -> Any:
        minimum, allow_inf, integral = NUMERIC_CONSTRAINTS[info.field_name]
        if isinstance(value, bool) or not isinstance(value, Real):
            raise ValueError("should be a number")
        if math.isnan(value):
            raise ValueError("should not be NaN")
        if info.field_name == "growth_factor":
            if value <= minimum:
                raise ValueError(f"should be > {minimum}")
        elif value < minimum:
            raise ValueError(f"should be >= {minimum}")
        if math.isinf(value):
            if not allow_inf:
                raise ValueError("should be finite")
            return math.inf
        if integral:
            if value != int(value):
                raise ValueError("should be an integer")
            return int(value)
        return value

    @field_validator("max_wait")
    @classmethod
    def _check_wait_bounds(cls, value: float, info: ValidationInfo) -> float:
        min_wait = info.data.get("min_wait")
        if min_wait is not None and math.isfinite(value) and min_wait > value:
            raise ValueError("'min_wait' cannot be greater than 'max_wait'")
        return value


DEFAULT_OPTIONS = RetryOptions()


def configuration_error(exc: ValidationError, title: str = "Invalid retry options") -> ConfigurationError:
    """Convert a pydantic ValidationError into a ConfigurationError

    Args:
        exc: Validation error raised by a RetryOptions constructor
        title: First line of the message

    Returns:
        ConfigurationError listing each field and violated constraint
    """
    problems = []
    for error in exc.errors():
        field = ".".join(str(x) for x in error["loc"]) or "options"
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        problems.append((field, message))
    lines = [f"  - {field}: {message}" for field, message in problems]
    return ConfigurationError(f"{title}:\n" + "\n".join(lines), problems)


def resolve_options(
    options: Union[RetryOptions, Mapping[str, Any], None] = None,
    **overrides: Any,
) -> RetryOptions:
    """Merge caller options with the defaults and validate them

    Args:
        options: A RetryOptions instance, a mapping of option names, or None
        **overrides: Individual options, taking precedence over ``options``

    Returns:
        Frozen, fully populated RetryOptions

    Raises:
        ConfigurationError: If any option is unknown or invalid
    """
    if isinstance(options, RetryOptions):
        if not overrides:
            return options
        values = dict(options)
    elif options is None:
        if not overrides:
            return DEFAULT_OPTIONS
        values = {}
    elif isinstance(options, Mapping):
        values = dict(options)
    else:
        raise ConfigurationError(
            f"Retry options must be a mapping or RetryOptions, got {type(options).__name__}",
            [("options", "should be a mapping")],
        )

    values.update(overrides)
    try:
        return RetryOptions(**values)
    except ValidationError as e:
        raise configuration_error(e) from e
