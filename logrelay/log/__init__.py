"""
Diagnostic logging for the wrapper itself.

The child's output is never routed through this module: it is copied to the
log sinks byte for byte. This module is for the wrapper's own messages
(startup, rotations, forwarded signals, faults), written to its stderr.

Log Level Control:
- Standard levels: debug, info, warning, error, critical
- Custom level: trace
- Disable logging completely: False or "false"
"""

import logging

from .config import LogConfig
from .constants import LogConstants
from .exceptions import InvalidLogLevelError
from .factory import LoggerFactory
from .formatters import LogFormatter
from .logger import Logger

logging.addLevelName(LogConstants.CUSTOM_LEVELS["TRACE"], "TRACE")
LogConstants.LEVEL_NAMES["trace"] = LogConstants.CUSTOM_LEVELS["TRACE"]


def create_root_lg(
    level: str | int | bool = "info", micros: bool = False, colors: bool = True
) -> Logger:
    """
    Create the root logger with the specified configuration.

    Example:
        >>> lg = create_root_lg("debug")
    """
    return LoggerFactory.create_root(LogConfig.from_params(level, micros, colors))


__all__ = [
    "InvalidLogLevelError",
    "LogConfig",
    "LogConstants",
    "LogFormatter",
    "Logger",
    "LoggerFactory",
    "create_root_lg",
]
