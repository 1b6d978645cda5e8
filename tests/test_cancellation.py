"""Tests for cancellation signal handling."""

import asyncio
import math

import pytest

from again.application.engine import RetryEngine
from again.domain.config import resolve_options
from again.domain.errors import NotAnErrorError, StopSignal
from again.domain.models.result import RetryState
from again.domain.models.signal import CancellationSignal, cancelled_signal
from again.infrastructure.cancellation import sleep


def engine(operation, **overrides):
    return RetryEngine(operation, resolve_options(**overrides))


class TestCancellationSignal:
    """Tests for CancellationSignal."""

    def test_initial_state(self):
        """Test a new signal is not cancelled"""
        signal = CancellationSignal()
        assert not signal.cancelled
        assert signal.reason is None
        signal.raise_if_cancelled()
        assert "active" in repr(signal)

    def test_default_reason(self):
        """Test cancel() without a reason uses CancelledError"""
        signal = CancellationSignal()
        signal.cancel()
        assert signal.cancelled
        assert isinstance(signal.reason, asyncio.CancelledError)

    def test_first_reason_wins(self):
        """Test later cancel() calls keep the first reason"""
        first = RuntimeError("first")
        signal = cancelled_signal(first)
        signal.cancel(RuntimeError("second"))
        assert signal.reason is first

    def test_raise_if_cancelled(self):
        """Test the reason is raised once the signal fired"""
        signal = cancelled_signal(TimeoutError("deadline"))
        with pytest.raises(TimeoutError, match="deadline"):
            signal.raise_if_cancelled()

    def test_raise_if_cancelled_with_plain_reason(self):
        """Test non-exception reasons raise CancelledError"""
        signal = cancelled_signal("shutting down")
        with pytest.raises(asyncio.CancelledError, match="shutting down"):
            signal.raise_if_cancelled()


class TestSleep:
    """Tests for the cancellable sleep."""

    @pytest.mark.asyncio
    async def test_sleep_without_signal(self):
        """Test sleeping without a signal completes"""
        assert await sleep(0.01) is True

    @pytest.mark.asyncio
    async def test_sleep_completes(self):
        """Test sleeping with an idle signal completes"""
        assert await sleep(0.01, CancellationSignal()) is True

    @pytest.mark.asyncio
    async def test_sleep_already_cancelled(self):
        """Test a fired signal skips the wait"""
        assert await sleep(10, cancelled_signal()) is False

    @pytest.mark.asyncio
    async def test_sleep_interrupted(self):
        """Test firing the signal ends the wait early"""
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.01, signal.cancel)

        assert await asyncio.wait_for(sleep(10, signal), timeout=2) is False

    @pytest.mark.asyncio
    async def test_sleep_leaves_no_tasks(self):
        """Test no helper tasks outlive the wait"""
        signal = CancellationSignal()
        before = asyncio.all_tasks()
        await sleep(0.01, signal)
        assert asyncio.all_tasks() == before


class TestEngineCancellation:
    """Tests for cancellation inside the retry loop."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        """Test a fired signal prevents any invocation"""
        calls = []

        result = await engine(
            lambda context: calls.append(1), cancellation_signal=cancelled_signal()
        ).run()

        assert calls == []
        assert result.state is RetryState.CANCELLED
        assert result.cancelled
        assert isinstance(result.error, asyncio.CancelledError)
        assert result.context.errors == (result.error,)

    @pytest.mark.asyncio
    async def test_cancel_during_wait(self):
        """Test cancelling while waiting ends the loop promptly"""
        signal = CancellationSignal()
        reason = RuntimeError("user abort")
        calls = []

        def operation(context):
            calls.append(context.attempts)
            raise ValueError("boom")

        asyncio.get_running_loop().call_later(0.05, signal.cancel, reason)
        result = await asyncio.wait_for(
            engine(
                operation,
                min_wait=30,
                use_linear_growth=False,
                cancellation_signal=signal,
            ).run(),
            timeout=5,
        )

        assert calls == [1]
        assert result.state is RetryState.CANCELLED
        assert result.error is reason
        assert result.context.errors[-1] is reason

    @pytest.mark.asyncio
    async def test_cancel_racing_success(self):
        """Test a success observed after cancellation is discarded"""
        signal = CancellationSignal()

        def operation(context):
            signal.cancel()
            return "too late"

        result = await engine(operation, cancellation_signal=signal).run()

        assert not result.ok
        assert result.state is RetryState.CANCELLED
        assert result.value is None

    @pytest.mark.asyncio
    async def test_cancel_in_on_catch(self):
        """Test cancelling from a callback ends the loop before the next gate"""
        signal = CancellationSignal()
        gated = []

        def operation(context):
            raise ValueError("boom")

        result = await engine(
            operation,
            min_wait=0,
            cancellation_signal=signal,
            on_catch=lambda context: signal.cancel(),
            should_retry=lambda context: gated.append(1) or True,
        ).run()

        assert result.state is RetryState.CANCELLED
        assert result.context.attempts == 1
        assert gated == []
        assert isinstance(result.context.errors[0], ValueError)

    @pytest.mark.asyncio
    async def test_plain_reason_normalized(self):
        """Test a non-exception reason is recorded as NotAnErrorError"""
        result = await engine(
            lambda context: 1, cancellation_signal=cancelled_signal("stop")
        ).run()

        assert isinstance(result.error, NotAnErrorError)
        assert result.error.value == "stop"


class TestCancellationWithoutWaits:
    """Tests for cancellation when attempts follow each other without a delay."""

    @staticmethod
    def failing(limit):
        def operation(context):
            if context.attempts >= limit:
                raise StopSignal("loop was never interrupted")
            raise ValueError(f"failure {context.attempts}")

        return operation

    @pytest.mark.asyncio
    async def test_cancel_seen_with_zero_wait(self):
        """Test a cancel scheduled from the loop ends a zero-wait retry loop"""
        signal = CancellationSignal()
        asyncio.get_running_loop().call_soon(signal.cancel)

        result = await engine(
            self.failing(1000),
            max_attempts=math.inf,
            min_wait=0,
            cancellation_signal=signal,
        ).run()

        assert result.state is RetryState.CANCELLED
        assert result.context.attempts <= 2

    @pytest.mark.asyncio
    async def test_cancel_seen_between_non_consuming_failures(self):
        """Test a cancel scheduled from the loop ends retries that consume nothing"""
        signal = CancellationSignal()
        asyncio.get_running_loop().call_soon(signal.cancel)

        result = await engine(
            self.failing(1000),
            min_wait=1,
            should_consume_retry=lambda context: False,
            cancellation_signal=signal,
        ).run()

        assert result.state is RetryState.CANCELLED
        assert result.context.attempts <= 2
        assert result.context.retries_consumed == 0

    @pytest.mark.asyncio
    async def test_other_tasks_run_between_attempts(self):
        """Test the retry loop does not starve other tasks"""
        ticks = []

        async def ticker():
            while True:
                ticks.append(1)
                await asyncio.sleep(0)

        task = asyncio.ensure_future(ticker())
        try:
            result = await engine(
                self.failing(20),
                should_consume_retry=lambda context: False,
            ).run()
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert result.state is RetryState.FAILED_STOPPED
        assert len(ticks) > 1
