"""
Configuration for the wrapper's diagnostic logging.

LogConfig is immutable: once the root logger is created its settings do not
change for the lifetime of the wrapper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class LogConfig:
    """
    Immutable configuration for the root logger.

    Attributes:
        level: Numeric level, or False to disable logging entirely
        micros: Append microseconds to timestamps
        colors: Color level markers with ANSI escape sequences
    """

    level: int | bool = logging.INFO
    micros: bool = False
    colors: bool = True

    @staticmethod
    def _resolve_level(level: str | int | bool) -> int | bool:
        """Resolve level parameter to int or False."""
        from .constants import LogConstants
        from .exceptions import InvalidLogLevelError

        if isinstance(level, bool):
            return False if not level else logging.INFO
        elif isinstance(level, str):
            if level.isnumeric():
                return int(level)
            elif level.lower() in LogConstants.LEVEL_NAMES:
                return LogConstants.LEVEL_NAMES[level.lower()]
            else:
                raise InvalidLogLevelError(level)
        return level

    @classmethod
    def from_params(
        cls,
        level: str | int | bool,
        micros: bool = False,
        colors: bool = True,
    ) -> LogConfig:
        """
        Create LogConfig from individual parameters.

        Args:
            level: Log level (string name, numeric value, or False to disable logging)
            micros: Whether to show microsecond precision
            colors: Whether to enable colored output

        Returns:
            LogConfig instance
        """
        return cls(level=cls._resolve_level(level), micros=micros, colors=colors)

    @classmethod
    def from_config(
        cls, config_dict: dict[str, Any], section: str = "logging"
    ) -> LogConfig:
        """
        Create LogConfig from a configuration dictionary.

        Missing keys fall back to defaults, and a missing section yields the
        default config.

        Example:
            cfg = load_config_file("etc/logrelay.yaml")
            log_config = LogConfig.from_config(cfg)
        """
        current = config_dict.get(section) or {}

        level = current.get("level", "info")
        if level == "false":
            level = False
        colors = current.get("colors", True)
        if isinstance(colors, dict):
            colors = colors.get("enabled", True)

        return cls.from_params(
            level=level,
            micros=current.get("microseconds", current.get("micros", False)),
            colors=colors,
        )
