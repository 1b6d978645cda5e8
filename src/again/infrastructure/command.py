"""Shell command operation for the CLI (asyncio subprocesses)."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Collection, Optional, Sequence

from again.domain.errors import CommandFailedError, StopSignal
from again.domain.models.context import RetryContext

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500


class CommandOperation:
    """Runs a command once per invocation; a non-zero exit is a failure

    Attributes:
        argv: Command and its arguments
        stop_on: Exit codes that stop retrying immediately
        retry_on: Exit codes worth retrying (None = every non-zero code)
        timeout: Per-invocation timeout in seconds (None = no timeout)
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        stop_on: Collection[int] = (),
        retry_on: Optional[Collection[int]] = None,
        timeout: Optional[float] = None,
    ):
        if not argv:
            raise ValueError("Command must not be empty")
        self.argv = list(argv)
        self.stop_on = set(stop_on)
        self.retry_on = set(retry_on) if retry_on else None
        self.timeout = timeout

    async def __call__(self, context: RetryContext) -> int:
        logger.info(f"Running {self.argv[0]} (attempt {context.attempts})")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # The command cannot be started at all; retrying will not help
            raise StopSignal(e) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TimeoutError(f"Command timed out after {self.timeout}s") from None

        text = stderr.decode("utf-8", errors="replace") if stderr else ""
        if text:
            sys.stderr.write(text)
            sys.stderr.flush()

        if process.returncode == 0:
            return 0

        error = CommandFailedError(process.returncode, text.strip()[-STDERR_TAIL_CHARS:])
        if process.returncode in self.stop_on:
            raise StopSignal(error)
        raise error

    def should_retry(self, context: RetryContext) -> bool:
        """Gate retries on the exit code of the last failure"""
        if self.retry_on is None:
            return True
        error = context.last_error
        if isinstance(error, CommandFailedError):
            return error.returncode in self.retry_on
        return True
