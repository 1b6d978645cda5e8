"""Configuration manager for loading and validating .again.yml"""

import copy
import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from again.domain.config import RetryOptions, configuration_error, resolve_options
from again.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".again.yml"

# Environment variable -> option name
ENV_OVERRIDES = {
    "AGAIN_MAX_ATTEMPTS": "max_attempts",
    "AGAIN_MAX_ELAPSED": "max_elapsed",
    "AGAIN_MIN_WAIT": "min_wait",
    "AGAIN_MAX_WAIT": "max_wait",
    "AGAIN_GROWTH_FACTOR": "growth_factor",
    "AGAIN_CONCURRENCY": "concurrency_per_attempt",
}

INFINITY_LITERALS = ("inf", "infinity", "+inf", ".inf")

# Options that can be expressed in a file (callbacks and signals cannot)
FILE_OPTIONS = (
    "max_attempts",
    "max_elapsed",
    "min_wait",
    "max_wait",
    "growth_factor",
    "use_linear_growth",
    "use_jitter",
    "allow_duplicate_error_logging",
    "wait_even_if_retry_not_consumed",
    "concurrency_per_attempt",
)


def _parse_number(name: str, raw: str) -> Union[int, float]:
    """Parse a numeric environment value; "inf" and "infinity" are accepted"""
    text = raw.strip().lower()
    if text in INFINITY_LITERALS:
        return math.inf
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r} is not a number",
            [(ENV_OVERRIDES[name], "should be a number")],
        ) from e


class ConfigManager:
    """Manages retry options from .again.yml and environment variables

    Configuration priority:
    1. Default values (defined in RetryOptions)
    2. .again.yml file (searched from current directory upwards)
    3. Environment variables (AGAIN_*)
    4. Explicit overrides passed to get_options() (CLI arguments)
    """

    DEFAULT_CONFIG = {name: RetryOptions.model_fields[name].default for name in FILE_OPTIONS}

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager

        Args:
            config_path: Path to .again.yml (searches from current dir if None)

        Raises:
            ConfigurationError: If configuration validation fails
        """
        if isinstance(config_path, str):
            config_path = Path(config_path)
        self.config_path = config_path or self._find_config_file()
        try:
            self.options: RetryOptions = self._load_config()
        except ValidationError as e:
            raise configuration_error(e, "Configuration validation failed") from e

    def _find_config_file(self) -> Optional[Path]:
        """Find .again.yml starting from current directory

        Returns:
            Path to config file or None if not found
        """
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            config_file = parent / CONFIG_FILENAME
            if config_file.exists():
                logger.info(f"Found config file: {config_file}")
                return config_file
        logger.debug(f"No {CONFIG_FILENAME} found, using defaults")
        return None

    def _load_config(self) -> RetryOptions:
        """Load configuration from file and environment, then validate

        Raises:
            ConfigurationError: If the file cannot be read or is not a mapping
            ValidationError: If an option is invalid
        """
        config_dict = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config from {self.config_path}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigurationError(f"Config file {self.config_path} must contain a mapping")
            # Options may sit at the top level or under a "retry" section
            section = file_config.get("retry", file_config) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"Section 'retry' in {self.config_path} must be a mapping")
            for key, value in section.items():
                if isinstance(value, str) and value.strip().lower() in INFINITY_LITERALS:
                    value = math.inf
                config_dict[key] = value
            logger.info(f"Loaded configuration from {self.config_path}")

        config_dict = self._apply_env_overrides(config_dict)
        return RetryOptions(**config_dict)

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply AGAIN_* environment variable overrides

        Args:
            config: Configuration dictionary

        Returns:
            Configuration with env overrides applied
        """
        for env_name, option in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw:
                config[option] = _parse_number(env_name, raw)
                logger.debug(f"{option} overridden by {env_name}={raw}")
        return config

    def get_options(self, **overrides: Any) -> RetryOptions:
        """Get resolved retry options

        Args:
            **overrides: Options taking precedence over file and environment
                (None values are ignored)

        Returns:
            Frozen RetryOptions

        Raises:
            ConfigurationError: If an override is invalid
        """
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return resolve_options(self.options, **overrides)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a single option value by name

        Args:
            key: Option name (e.g., "max_attempts")
            default: Default value if the option does not exist

        Returns:
            Option value or default
        """
        return getattr(self.options, key, default)
