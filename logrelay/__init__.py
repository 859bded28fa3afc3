"""
logrelay: run a command and append its output to rotatable log files.

The child's stdout and stderr are copied byte for byte into two log files.
Sending the rotate signal (SIGHUP by default) reopens both files; a log
file renamed or removed behind the wrapper's back is reopened on the next
write. SIGTERM, SIGQUIT and SIGINT are relayed to the child, and the
wrapper exits with the child's exit code.
"""

from .config import TERMINAL_SIGNALS, RelayConfig, RotateSignal, load_config_file
from .exceptions import (
    ConfigError,
    ExitStatusError,
    RelayError,
    SinkError,
    StartupError,
    StreamError,
)
from .router import StreamRouter
from .signals import SignalCoordinator, SignalSubscription
from .sink import LogSink
from .supervisor import ExitOutcome, ProcessSupervisor, SupervisorState
from .version import get_version

__version__ = get_version()

__all__ = [
    "__version__",
    # Configuration
    "RelayConfig",
    "RotateSignal",
    "TERMINAL_SIGNALS",
    "load_config_file",
    # Core
    "LogSink",
    "StreamRouter",
    "SignalCoordinator",
    "SignalSubscription",
    "ProcessSupervisor",
    "SupervisorState",
    "ExitOutcome",
    # Exceptions
    "RelayError",
    "ConfigError",
    "StartupError",
    "SinkError",
    "StreamError",
    "ExitStatusError",
]
