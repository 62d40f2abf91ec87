"""Central configuration helper for csv_rag_sync."""

import logging
import os

from shared.errors import ConfigurationError


class HelperConfig:
    """Central configuration helper. Reads all settings from environment variables."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (str | None): Fallback value if the variable is not set.

        Returns:
            str: The resolved value.

        Raises:
            ConfigurationError: If the variable is not set and no default is provided.
        """
        key = key.upper()
        val = os.getenv(key) or None  # empty string → None
        if val is None and default is None:
            raise ConfigurationError(f"Environment variable '{key}' is not set.")
        return val.strip() if val is not None else default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a numeric environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (float | int | None): Fallback value if the variable is not set.

        Returns:
            float | int: The resolved numeric value.

        Raises:
            ConfigurationError: If the variable is not set and no default is provided.
            ConfigurationError: If the value cannot be parsed as a number.
        """
        key = key.upper()
        raw = os.getenv(key) or None
        if raw is None:
            if default is None:
                raise ConfigurationError(f"Environment variable '{key}' is not set.")
            return default
        raw = raw.strip()
        try:
            return int(raw) if "." not in raw else float(raw)
        except ValueError:
            raise ConfigurationError(f"Environment variable '{key}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a boolean environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (bool | None): Fallback value if the variable is not set.

        Returns:
            bool: The resolved boolean value.

        Raises:
            ConfigurationError: If the variable is not set and no default is provided.
        """
        key = key.upper()
        raw = os.getenv(key) or None
        if raw is None:
            if default is None:
                raise ConfigurationError(f"Environment variable '{key}' is not set.")
            return default
        return raw.strip().lower() in ("true", "1", "yes")

    def get_positive_int_val(self, key: str, default: int) -> int:
        """Read an integer tunable that must be >= 1 (batch sizes, concurrency).

        Raises:
            ConfigurationError: If the value is not a positive integer.
        """
        val = self.get_number_val(key, default=default)
        if int(val) != val or val < 1:
            raise ConfigurationError(f"Environment variable '{key.upper()}' must be a positive integer, got '{val}'.")
        return int(val)

    def get_delay_seconds(self, key: str, default_ms: int) -> float:
        """Read a millisecond delay and return it in seconds (0 disables it)."""
        val = self.get_number_val(key, default=default_ms)
        if val < 0:
            raise ConfigurationError(f"Environment variable '{key.upper()}' must not be negative, got '{val}'.")
        return val / 1000.0

    def get_logger(self) -> logging.Logger:
        """Return the application logger.

        Returns:
            logging.Logger: The configured logger instance.
        """
        return self._logger
