"""Configuration models with Pydantic validation."""

from again.domain.config.options import (
    DEFAULT_OPTIONS,
    RetryOptions,
    configuration_error,
    resolve_options,
)

__all__ = [
    "DEFAULT_OPTIONS",
    "RetryOptions",
    "configuration_error",
    "resolve_options",
]
