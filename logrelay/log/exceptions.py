"""Exceptions raised while configuring the wrapper's own logging."""

from typing import Any

from ..exceptions import ConfigError


class InvalidLogLevelError(ConfigError):
    """Raised when an invalid log level is specified."""

    def __init__(self, level: Any) -> None:
        self.level = level
        super().__init__(f"Invalid log level: {level}")
