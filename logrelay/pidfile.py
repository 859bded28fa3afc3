"""Pidfile handling: the wrapper's pid as plain decimal text."""

import os
from pathlib import Path

from .exceptions import StartupError
from .log import Logger


def write_pid_file(path: Path, lg: Logger, pid: int | None = None) -> None:
    """
    Write the pid (the current process by default) to path and fsync it.

    Raises:
        StartupError: If the file cannot be written
    """
    pid = os.getpid() if pid is None else pid
    try:
        with open(path, "w") as f:
            f.write(str(pid))
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise StartupError(f"cannot write pidfile: {e}", path=path) from e
    lg.debug("wrote pidfile", extra={"path": path, "pid": pid})


def remove_pid_file(path: Path, lg: Logger) -> bool:
    """
    Remove the pidfile.

    Returns:
        True if the file was removed. A missing file or a failed removal is
        logged and reported as False; it never changes the exit outcome.
    """
    try:
        os.unlink(path)
    except FileNotFoundError:
        lg.warning("pidfile already removed", extra={"path": path})
        return False
    except OSError as e:
        lg.error("failed to remove pidfile", extra={"path": path, "error": e})
        return False
    lg.debug("removed pidfile", extra={"path": path})
    return True
