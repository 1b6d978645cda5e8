"""Outcome model - tagged result of a single operation invocation"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Outcome:
    """Either a produced value or the failure it raised, never both"""

    ok: bool
    value: Any = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Outcome":
        return cls(ok=False, error=error)
