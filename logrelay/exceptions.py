"""
Unified exception hierarchy for logrelay.

Every error the wrapper raises derives from RelayError, so the entry point
can catch framework errors with a single except clause and map them to an
exit code. Exit codes are kept apart from the child's own exit codes by
using the same convention shells and ``docker run`` use:

- 125: the wrapper itself failed
- 126: the command was found but could not be executed
- 127: the command was not found
"""

from typing import Any

EXIT_WRAPPER_FAILURE = 125
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


class RelayError(Exception):
    """
    Base exception for all logrelay errors.

    Example:
        try:
            outcome = asyncio.run(supervisor.run())
        except RelayError as e:
            lg.critical(str(e))
            sys.exit(e.exit_code)
    """

    exit_code: int = EXIT_WRAPPER_FAILURE

    def __init__(self, message: str, **context: Any) -> None:
        """
        Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error message
            **context: Additional context information (stored in self.context)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """String representation with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ConfigError(RelayError):
    """
    Configuration-related errors.

    Examples:
        - No command given
        - Missing stdout or stderr log path
        - Unreadable or malformed config file
        - Invalid rotate signal name
    """

    pass


class StartupError(RelayError):
    """
    Errors that prevent the event loop from starting.

    Raised when the child cannot be spawned or the pidfile cannot be
    written. The exit code distinguishes a missing command from one that
    exists but cannot be executed.
    """

    def __init__(
        self, message: str, exit_code: int = EXIT_WRAPPER_FAILURE, **context: Any
    ) -> None:
        super().__init__(message, **context)
        self.exit_code = exit_code


class SinkError(RelayError):
    """
    Log sink errors.

    Raised when a log file cannot be opened, or when a write still fails
    after the sink has been reopened once.
    """

    pass


class StreamError(RelayError):
    """Raised when reading from one of the child's output pipes fails."""

    pass


class ExitStatusError(RelayError):
    """
    Raised when the child terminated without an exit code.

    A child killed by a signal has no exit code. The wrapper cannot represent
    that as a code of its own, so it fails instead of guessing one.
    """

    pass
