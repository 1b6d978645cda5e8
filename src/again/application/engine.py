"""Retry engine - the attempt loop state machine.

One RetryEngine drives one operation to a terminal RetryResult: it invokes the
operation (racing several invocations when configured), classifies failures,
consults the gating callbacks, waits according to the backoff and observes the
cancellation signal at every suspension point.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from typing import Any, Callable, Iterable, Optional, Set

from again.domain.backoff import compute_wait
from again.domain.classifier import classify, normalize
from again.domain.config.options import RetryOptions
from again.domain.errors import NotAnErrorError
from again.domain.models.context import ExecutionContext, RetryContext
from again.domain.models.outcome import Outcome
from again.domain.models.result import RetryResult, RetryState
from again.infrastructure import cancellation

logger = logging.getLogger(__name__)

Operation = Callable[[RetryContext], Any]

# Raised inside an operation or callback, these are never treated as failures
PROPAGATED_EXCEPTIONS = (KeyboardInterrupt, SystemExit, GeneratorExit, asyncio.CancelledError)

# Invocations that lost a race keep running; hold a reference until they finish
_abandoned: Set["asyncio.Future[Outcome]"] = set()


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class RetryEngine:
    """Runs a single operation under a single set of resolved options.

    Instances are single-use: ``run()`` may only be awaited once, so the
    execution context is never shared between invocations.
    """

    def __init__(self, operation: Operation, options: RetryOptions):
        self.operation = operation
        self.options = options
        self.state = RetryState.RUNNING
        self._context: Optional[ExecutionContext] = None

    async def run(self) -> RetryResult:
        """Invoke the operation until it succeeds or a terminal state is reached

        Returns:
            RetryResult with the value (on success), the surfaced error (on
            failure) and a snapshot of the execution context
        """
        if self._context is not None:
            raise RuntimeError("RetryEngine.run() can only be called once")
        ctx = self._context = ExecutionContext()

        while True:
            ctx.attempts += 1
            if self._cancelled():
                return self._cancel()

            logger.debug(
                f"Attempt {ctx.attempts} "
                f"(retries consumed {ctx.retries_consumed}/{self.options.max_attempts})"
            )
            outcome = await self._attempt()

            if outcome.ok:
                if self._cancelled():
                    return self._cancel()
                return self._succeed(outcome.value)

            result = await self._handle_failure(outcome.error)
            if result is not None:
                return result

    async def _handle_failure(self, failure: BaseException) -> Optional[RetryResult]:
        """Record a failed attempt and decide what happens next

        Returns:
            Terminal RetryResult, or None to start the next attempt
        """
        ctx = self._context
        opts = self.options

        failed = classify(failure)
        self._record(failed.errors)
        error = failed.last_error

        if failed.stopped:
            return self._fail(RetryState.FAILED_STOPPED, failed.stop_cause)

        time_remaining = self._time_remaining()

        if self._cancelled():
            return self._cancel()
        await self._observe(opts.on_catch)

        if self._cancelled():
            return self._cancel()
        consume = await self._gate(opts.should_consume_retry)

        if failed.has_invalid and consume:
            invalid = next(e for e in failed.errors if isinstance(e, NotAnErrorError))
            return self._fail(RetryState.FAILED_STOPPED, invalid)

        retries_left = opts.max_attempts - ctx.retries_consumed - (1 if consume else 0)
        if time_remaining <= 0 or retries_left <= 0:
            if consume:
                ctx.retries_consumed += 1
            return self._fail(RetryState.FAILED_EXHAUSTED, error)

        if self._cancelled():
            return self._cancel()
        if not await self._gate(opts.should_retry):
            return self._fail(RetryState.FAILED_GATED, error)

        if not consume and (failed.has_invalid or not opts.wait_even_if_retry_not_consumed):
            logger.debug(f"Attempt {ctx.attempts} failed without consuming a retry: {error!r}")
            return await self._yield()

        if self._cancelled():
            return self._cancel()
        delay = compute_wait(self._time_remaining(), ctx.retries_consumed, opts)
        logger.warning(f"Attempt {ctx.attempts} failed: {error!r}. Retrying in {delay:.2f}s...")

        if delay > 0:
            if not await cancellation.sleep(delay, opts.cancellation_signal):
                return self._cancel()
            await self._observe(opts.after_wait)
        else:
            cancelled = await self._yield()
            if cancelled is not None:
                return cancelled

        if consume:
            ctx.retries_consumed += 1
        return None

    async def _attempt(self) -> Outcome:
        """Run one attempt: a single invocation or a race of several"""
        view = self._context.snapshot()
        concurrency = self.options.concurrency_per_attempt
        if concurrency == 1:
            return await self._invoke(view)

        tasks = [asyncio.ensure_future(self._invoke(view)) for _ in range(concurrency)]
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in tasks:
                    if task in done and task.result().ok:
                        self._abandon(pending)
                        return task.result()
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        errors = [task.result().error for task in tasks]
        return Outcome.failure(
            BaseExceptionGroup(f"All {concurrency} concurrent invocations failed", errors)
        )

    async def _invoke(self, view: RetryContext) -> Outcome:
        try:
            return Outcome.success(await _call(self.operation, view))
        except PROPAGATED_EXCEPTIONS:
            raise
        except BaseException as e:
            return Outcome.failure(e)

    async def _gate(self, predicate: Callable[..., Any]) -> bool:
        """Evaluate a gating callback; raising counts as False and is recorded"""
        try:
            return bool(await _call(predicate, self._context.snapshot()))
        except PROPAGATED_EXCEPTIONS:
            raise
        except BaseException as e:
            logger.warning(f"Retry predicate {getattr(predicate, '__name__', predicate)!r} raised: {e!r}")
            self._record(classify(e).errors)
            return False

    async def _observe(self, callback: Callable[..., Any]) -> None:
        """Invoke an observer callback; a raised error is recorded, not fatal"""
        try:
            await _call(callback, self._context.snapshot())
        except PROPAGATED_EXCEPTIONS:
            raise
        except BaseException as e:
            logger.warning(f"Retry callback {getattr(callback, '__name__', callback)!r} raised: {e!r}")
            self._record(classify(e).errors)

    def _record(self, errors: Iterable[BaseException]) -> None:
        self._context.record(errors, allow_duplicates=self.options.allow_duplicate_error_logging)

    async def _yield(self) -> Optional[RetryResult]:
        """Let other tasks run before an attempt that follows without a wait

        Returns:
            CANCELLED result if the signal fired meanwhile, otherwise None
        """
        await asyncio.sleep(0)
        if self._cancelled():
            return self._cancel()
        return None

    def _cancelled(self) -> bool:
        signal = self.options.cancellation_signal
        return signal is not None and signal.cancelled

    def _time_remaining(self) -> float:
        max_elapsed = self.options.max_elapsed
        if math.isinf(max_elapsed):
            return max_elapsed
        return max_elapsed - (time.monotonic() - self._context.start)

    @staticmethod
    def _abandon(tasks: Iterable["asyncio.Future[Outcome]"]) -> None:
        for task in tasks:
            _abandoned.add(task)
            task.add_done_callback(_abandoned.discard)

    def _succeed(self, value: Any) -> RetryResult:
        self.state = RetryState.SUCCEEDED
        snapshot = self._context.finish()
        if snapshot.attempts > 1:
            logger.info(f"Operation succeeded after {snapshot.attempts} attempts")
        return RetryResult(ok=True, value=value, context=snapshot, state=self.state)

    def _fail(self, state: RetryState, error: Optional[BaseException]) -> RetryResult:
        self.state = state
        snapshot = self._context.finish()
        logger.error(f"Operation failed after {snapshot.attempts} attempts ({state.value}): {error!r}")
        return RetryResult(ok=False, context=snapshot, state=state, error=error)

    def _cancel(self) -> RetryResult:
        reason = self.options.cancellation_signal.reason
        error = reason if isinstance(reason, BaseException) else normalize(reason)
        self._record([error])
        self.state = RetryState.CANCELLED
        snapshot = self._context.finish()
        logger.info(f"Operation cancelled after {snapshot.attempts} attempts: {error!r}")
        return RetryResult(ok=False, context=snapshot, state=self.state, error=error)
