"""
Log formatter for the wrapper's diagnostics.

Renders records as::

    [12:34:56,789] [I] message          [key:value] [1234] [/relay/stdout]

with the level marker and fields colored per level when colors are enabled.
"""

import logging
import re
from typing import Any

from .config import LogConfig
from .constants import LogConstants

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


def _visual_len(text: str) -> int:
    """Calculate visual width of text, excluding ANSI escape codes."""
    if "\x1b" not in text:
        return len(text)
    return len(_ANSI_PATTERN.sub("", text))


class ColorManager:
    """ANSI color codes per log level."""

    RED = "\x1b[31"
    YELLOW = "\x1b[33"
    MAGENTA = "\x1b[35"
    CYAN = "\x1b[36"
    DEFAULT = "\x1b[38"
    RESET = LogConstants.RESET

    COLORS: dict[int, str] = {
        logging.DEBUG: "\x1b[38;5;32",
        logging.INFO: CYAN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: MAGENTA,
    }

    @staticmethod
    def get_color_for_level(level: int) -> str:
        """Get color escape prefix for a level, gray for TRACE and below."""
        if level in ColorManager.COLORS:
            return ColorManager.COLORS[level]
        if level < logging.DEBUG:
            return ColorManager.create_gray_level(12)
        return ColorManager.DEFAULT

    @staticmethod
    def create_gray_level(level: int) -> str:
        """Create gray color escape prefix, level clamped to 0-23."""
        level = max(0, min(level, LogConstants.GRAY_MAX_LEVELS - 1))
        return f"\x1b[38;5;{LogConstants.GRAY_BASE + level}"


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "__relay__extra", None) or {}


def _format_value(value: Any) -> str:
    if isinstance(value, Exception):
        return value.__class__.__name__ + ": " + str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


class PreFormatter(logging.Formatter):
    """Standard formatter with optional microsecond precision timestamps."""

    def __init__(self, fmt: str, micros: bool) -> None:
        self._micros = micros
        super().__init__(fmt)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        # Only the time of day: the wrapper's diagnostics are short-lived
        s = super().formatTime(record, "%H:%M:%S") + f",{int(record.msecs):03d}"
        if self._micros:
            micros = int((record.created % 1) * 1000000) % 1000
            s += f".{micros:03d}"
        return s


class LogFormatter(logging.Formatter):
    """
    Formatter with padded message column and bracketed extra fields.

    The format string is rebuilt per record because the padding and the set
    of extra fields differ from record to record.
    """

    def __init__(self, config: LogConfig):
        super().__init__()
        self._config = config
        self._pre_formatter = PreFormatter(LogConstants.DEFAULT_FORMAT, config.micros)

    def format(self, record: logging.LogRecord) -> str:
        width = self._calculate_width(record)
        if self._config.colors:
            fmt = self._format_colored(record, width)
        else:
            fmt = self._format_plain(record, width)

        self._pre_formatter._fmt = fmt
        self._pre_formatter._style._fmt = fmt
        return self._pre_formatter.format(record)

    def _calculate_width(self, record: logging.LogRecord) -> int:
        """Display width of "[timestamp] [L] message"."""
        timestamp_len = 16 if self._config.micros else 12
        return 1 + timestamp_len + 4 + 1 + 2 + _visual_len(record.getMessage())

    def _padding(self, width: int) -> str:
        rule = (
            LogConstants.MICRO_RULE_WIDTH
            if self._config.micros
            else LogConstants.DEFAULT_RULE_WIDTH
        )
        return " " * max(1, rule - width)

    def _fields(self, record: logging.LogRecord) -> list[str]:
        # Escape % so field values never act as format directives
        return [
            f"[{key}:{_format_value(value)}]".replace("%", "%%")
            for key, value in sorted(_extra_fields(record).items())
        ]

    def _format_plain(self, record: logging.LogRecord, width: int) -> str:
        fmt = LogConstants.DEFAULT_FORMAT + self._padding(width)
        fields = self._fields(record)
        if fields:
            fmt += " ".join(fields) + " "
        fmt += "[%(process)d] [%(name)s]"
        return fmt

    def _format_colored(self, record: logging.LogRecord, width: int) -> str:
        col = ColorManager.get_color_for_level(record.levelno) + "m"
        bold = ColorManager.get_color_for_level(record.levelno) + ";1m"
        gray = ColorManager.create_gray_level(9) + "m"
        reset = ColorManager.RESET

        fmt = col + "[%(asctime)s] [" + bold + "%(levelname).1s" + reset + col + "] "
        fmt += bold + "%(message)s" + reset + self._padding(width)
        fields = self._fields(record)
        if fields:
            fmt += col + " ".join(fields) + reset + " "
        fmt += gray + "[%(process)d] [%(name)s]" + reset
        return fmt
