"""
Append-only log file sink with rotation support.

A LogSink owns one destination path and the handle currently open on it.
Two things can make the handle point at the wrong file:

- an operator rotated the logs and sent the rotate signal, or
- something (logrotate, a person) renamed or unlinked the file without
  telling the wrapper.

Both cases end in reopen(), which syncs the old handle and opens the path
fresh, so at most one write can ever land in a rotated-away file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO

from .exceptions import SinkError
from .log import Logger


def _open_append(path: Path) -> BinaryIO:
    """Open path for unbuffered appending, creating it if needed."""
    try:
        return open(path, "ab", buffering=0)
    except OSError as e:
        raise SinkError(f"cannot open log file: {e}", path=path) from e


class LogSink:
    """
    One log file, opened in append mode.

    Not thread-safe: the supervisor's event loop is the only caller, and it
    handles one event at a time.
    """

    def __init__(self, path: Path, handle: BinaryIO, lg: Logger) -> None:
        self._path = path
        self._handle: BinaryIO | None = handle
        self._lg = lg
        self.reopen_count = 0

    @classmethod
    def open(cls, path: str | Path, lg: Logger) -> LogSink:
        """
        Open a sink on path.

        Raises:
            SinkError: If the file cannot be opened
        """
        path = Path(path)
        sink = cls(path, _open_append(path), lg)
        lg.debug("opened log file", extra={"path": path})
        return sink

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._handle is None

    def _require_handle(self) -> BinaryIO:
        if self._handle is None:
            raise SinkError("log sink is closed", path=self._path)
        return self._handle

    def write(self, data: bytes) -> None:
        """
        Append data to the log file.

        The handle is unbuffered, so every byte the file accepted is already
        in it. A failed write reopens the path once and only the bytes not
        yet accepted are written to the new handle.

        Raises:
            SinkError: If the write fails again after the reopen
        """
        pending = memoryview(data)
        reopened = False
        while pending:
            try:
                written = self._require_handle().write(pending)
            except OSError as e:
                if reopened:
                    raise SinkError(
                        f"write failed after reopen: {e}", path=self._path
                    ) from e
                self._lg.warning(
                    "write failed, reopening log file",
                    extra={"path": self._path, "pending": len(pending), "error": e},
                )
                self.reopen()
                reopened = True
                continue
            pending = pending[written:]

    def is_stale(self) -> bool:
        """
        Check whether the open handle no longer backs the path.

        True when the open file has been unlinked (link count zero), or when
        the path now names a different file or nothing at all, as after a
        logrotate-style rename.
        """
        handle = self._require_handle()
        try:
            st = os.fstat(handle.fileno())
        except OSError as e:
            self._lg.warning(
                "cannot stat open log file", extra={"path": self._path, "error": e}
            )
            return True

        if st.st_nlink == 0:
            return True

        try:
            current = os.stat(self._path)
        except FileNotFoundError:
            return True
        except OSError as e:
            self._lg.warning(
                "cannot stat log path", extra={"path": self._path, "error": e}
            )
            return False

        return (st.st_dev, st.st_ino) != (current.st_dev, current.st_ino)

    def sync(self) -> None:
        """Fsync the open handle. Failures are logged only."""
        if self._handle is None:
            return
        try:
            os.fsync(self._handle.fileno())
        except OSError as e:
            self._lg.warning(
                "failed to sync log file", extra={"path": self._path, "error": e}
            )

    def reopen(self) -> None:
        """
        Replace the open handle with a fresh one on the same path.

        Raises:
            SinkError: If the path cannot be opened
        """
        self._release()
        self._handle = _open_append(self._path)
        self.reopen_count += 1
        self._lg.debug(
            "reopened log file",
            extra={"path": self._path, "reopens": self.reopen_count},
        )

    def close(self) -> None:
        """Sync and close the handle. Safe to call more than once."""
        self._release()

    def _release(self) -> None:
        if self._handle is None:
            return
        self.sync()
        handle, self._handle = self._handle, None
        try:
            handle.close()
        except OSError as e:
            self._lg.warning(
                "failed to close log file", extra={"path": self._path, "error": e}
            )

    def __enter__(self) -> LogSink:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
