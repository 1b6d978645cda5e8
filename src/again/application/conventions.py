"""Calling conventions built on the retry engine.

- ``retry_safe`` always resolves to a RetryResult
- ``retry`` resolves to the value or raises ExhaustedError
- ``retryify`` turns any callable into a pre-configured retrying coroutine function
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Mapping, Optional, Union

from again.application.engine import Operation, RetryEngine
from again.domain.config.options import RetryOptions, resolve_options
from again.domain.errors import ExhaustedError
from again.domain.models.result import RetryResult

OptionsArg = Union[RetryOptions, Mapping[str, Any], None]


async def retry_safe(operation: Operation, options: OptionsArg = None, **overrides: Any) -> RetryResult:
    """Run ``operation`` until it succeeds or retrying ends

    Args:
        operation: Callable receiving the current RetryContext, sync or async
        options: RetryOptions, mapping of option names, or None for defaults
        **overrides: Individual options, taking precedence over ``options``

    Returns:
        RetryResult; never raises for operation failures

    Raises:
        ConfigurationError: If the options are invalid (before any attempt)
    """
    resolved = resolve_options(options, **overrides)
    return await RetryEngine(operation, resolved).run()


async def retry(operation: Operation, options: OptionsArg = None, **overrides: Any) -> Any:
    """Run ``operation`` until it succeeds and return its value

    Raises:
        ConfigurationError: If the options are invalid (before any attempt)
        ExhaustedError: If retrying ended without success; ``context`` holds
            the full error log and the surfaced error is chained as ``__cause__``
    """
    result = await retry_safe(operation, options, **overrides)
    if result.ok:
        return result.value
    raise ExhaustedError(result.context) from result.error


def retryify(
    func: Optional[Callable[..., Any]] = None,
    options: OptionsArg = None,
    *,
    safe: bool = False,
    **overrides: Any,
) -> Any:
    """Wrap ``func`` so every call runs through the retry engine

    The returned coroutine function forwards its arguments to ``func`` on every
    attempt. Bound methods keep their receiver. Without ``func`` this returns a
    decorator::

        @retryify(max_attempts=3, min_wait=0.5)
        async def fetch(url): ...

    Args:
        func: Callable to wrap (sync or async)
        options: RetryOptions, mapping of option names, or None for defaults
        safe: Return RetryResult instead of raising ExhaustedError
        **overrides: Individual options

    Returns:
        Retrying coroutine function, or a decorator when ``func`` is None
    """
    resolved = resolve_options(options, **overrides)

    if func is None:
        return functools.partial(retryify, options=resolved, safe=safe)

    runner = retry_safe if safe else retry

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        return await runner(lambda context: func(*args, **kwargs), resolved)

    return wrapper
