"""Exception hierarchy for again.

Hierarchy::

    AgainError
    ├── ConfigurationError   - invalid retry options
    ├── NotAnErrorError      - an operation failed with a non-exception value
    ├── StopSignal           - operation asks to stop retrying immediately
    ├── ExhaustedError       - terminal failure of the throwing convention
    └── CommandFailedError   - CLI command exited with a non-zero status
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Tuple

if TYPE_CHECKING:
    from again.domain.models.context import RetryContext


class AgainError(Exception):
    """Base exception for all again errors."""


class ConfigurationError(AgainError):
    """Retry options validation error.

    Attributes:
        problems: (field, constraint) pairs, one per violation
    """

    def __init__(self, message: str, problems: Optional[List[Tuple[str, str]]] = None):
        super().__init__(message)
        self.problems = problems or []

    @property
    def field(self) -> Optional[str]:
        """Name of the first offending field"""
        return self.problems[0][0] if self.problems else None


class NotAnErrorError(AgainError):
    """Raised in place of a failure value that is not an ``Exception``."""

    def __init__(self, value: Any):
        self.value = value
        self.type_name = type(value).__name__
        super().__init__(f'Expected instance of Exception, got: "{self.type_name}"')


class StopSignal(AgainError):
    """Raise from an operation to stop retrying immediately.

    The wrapped cause is what ends up in the error log and what the caller
    sees as the terminal error. A string cause is turned into a
    ``RuntimeError``.
    """

    def __init__(self, cause: Any):
        if isinstance(cause, str):
            cause = RuntimeError(cause)
        self.cause = cause
        super().__init__(str(cause))


class ExhaustedError(AgainError):
    """Terminal failure of :func:`again.retry`, carrying the final context."""

    def __init__(self, context: "RetryContext"):
        self.context = context
        last = context.errors[-1] if context.errors else None
        super().__init__(f"Retry failed: {last!r}")


class CommandFailedError(AgainError):
    """A command run by the CLI exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command exited with status {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)
