"""
Factory for creating and configuring loggers.

The wrapper has a single root logger writing to its own stderr, and
derived "view" loggers per component that reuse the root's handler.
"""

import logging
import sys
from typing import IO, Any

from .config import LogConfig
from .formatters import LogFormatter
from .logger import Logger


class LoggerFactory:
    """Factory for creating and configuring loggers."""

    @staticmethod
    def create_root(config: LogConfig, stream: IO[str] | None = None) -> Logger:
        """
        Create the root logger.

        Args:
            config: Logger configuration
            stream: Output stream, the wrapper's stderr by default. Stdout
                is never used: it may be a pipe some other process reads.

        Example:
            >>> lg = LoggerFactory.create_root(LogConfig.from_params("debug"))
            >>> lg.info("child started", extra={"pid": 4242})
            [12:34:56,789] [I] child started     [pid:4242] [1234] [/]
        """
        return LoggerFactory.create("/", config, stream)

    @staticmethod
    def create(
        name: str,
        config: LogConfig,
        stream: IO[str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Logger:
        """
        Create a logger with its own stream handler.

        An existing logger with the same name is replaced, so repeated
        entry point invocations (as in tests) do not stack handlers.
        """
        lg = Logger(name, config, extra)
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        if config.level is not False:
            handler.setLevel(config.level)
        handler.setFormatter(LogFormatter(config))
        lg.addHandler(handler)
        lg.propagate = False
        lg.parent = logging.root

        logging.root.manager.loggerDict[name] = lg
        return lg

    @staticmethod
    def derive(parent: Logger, tags: str | list[str]) -> Logger:
        """
        Derive a "view" logger that delegates to the root's handlers.

        Examples:
            >>> LoggerFactory.derive(root, "relay").name
            '/relay'
            >>> LoggerFactory.derive(root, ["relay", "stdout"]).name
            '/relay/stdout'

        Args:
            parent: Parent logger instance
            tags: Single tag string or list of tags to form the hierarchy

        Returns:
            Derived logger sharing the parent's level and handlers
        """
        if isinstance(tags, str):
            tags = [tags]

        prefix = parent.name if parent.name == "/" else parent.name + "/"
        name = prefix + "/".join(tags)

        existing = logging.root.manager.loggerDict.get(name)
        if isinstance(existing, Logger) and existing.parent is parent:
            return existing

        lg = Logger(name, parent.config)
        lg.setLevel(logging.NOTSET)
        lg._root_logger = parent._root_logger or parent
        lg.parent = parent
        lg.propagate = False

        logging.root.manager.loggerDict[name] = lg
        return lg
