"""
Copies one of the child's output pipes into a LogSink.

The router owns the read end of the pipe. The supervisor calls read() to
wait for the next chunk and handle() to write it out, one event per loop
iteration. An empty chunk means end of stream: the router turns idle and
is never offered as an event source again.

In discard mode the router keeps reading but throws the bytes away, so a
child whose log can no longer be written still has a reader on its pipes.
"""

from __future__ import annotations

import asyncio
import os

from .exceptions import StreamError
from .log import Logger
from .sink import LogSink


class StreamRouter:
    """Pump bytes from one pipe into one sink, in read order."""

    def __init__(
        self,
        name: str,
        read_fd: int,
        sink: LogSink,
        lg: Logger,
        buffer_size: int = 8 * 1024,
    ) -> None:
        """
        Args:
            name: Stream name for diagnostics ("stdout" or "stderr")
            read_fd: Read end of the pipe; the router takes ownership
            sink: Where the stream's bytes are appended
            lg: Logger for this stream
            buffer_size: Maximum bytes per read
        """
        self.name = name
        self.sink = sink
        self.idle = False
        self.discard = False
        self.bytes_written = 0
        self.bytes_discarded = 0
        self._read_fd: int | None = read_fd
        self._buffer_size = buffer_size
        self._lg = lg
        self._reader: asyncio.StreamReader | None = None
        self._transport: asyncio.ReadTransport | None = None

    async def connect(self) -> None:
        """Attach the pipe to the running event loop."""
        if self._read_fd is None:
            raise StreamError("pipe already closed", stream=self.name)
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=self._buffer_size)
        pipe = os.fdopen(self._read_fd, "rb", buffering=0)
        self._read_fd = None
        try:
            transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), pipe
            )
        except OSError as e:
            pipe.close()
            raise StreamError(f"cannot attach pipe: {e}", stream=self.name) from e
        self._reader = reader
        self._transport = transport

    async def read(self) -> bytes:
        """
        Wait for the next chunk of output.

        Returns:
            Up to buffer_size bytes, or b"" at end of stream

        Raises:
            StreamError: If reading from the pipe fails
        """
        if self._reader is None:
            raise StreamError("stream not connected", stream=self.name)
        try:
            return await self._reader.read(self._buffer_size)
        except OSError as e:
            raise StreamError(f"read failed: {e}", stream=self.name) from e

    def handle(self, data: bytes) -> None:
        """
        Append a chunk to the sink, reopening it first if it went stale.

        In discard mode the chunk is counted and dropped.

        Raises:
            SinkError: If the sink cannot be written even after a reopen
        """
        if not data:
            self.idle = True
            self._lg.debug(
                "end of stream",
                extra={"bytes": self.bytes_written, "discarded": self.bytes_discarded},
            )
            return

        if self.discard:
            self.bytes_discarded += len(data)
            self._lg.trace("discarded chunk", extra={"bytes": len(data)})
            return

        if self.sink.is_stale():
            self._lg.info(
                "log file was moved or removed, reopening",
                extra={"path": self.sink.path},
            )
            self.sink.reopen()

        self.sink.write(data)
        self.bytes_written += len(data)
        self._lg.trace("relayed chunk", extra={"bytes": len(data)})

    def close_pipe(self) -> None:
        """Close the read end of the pipe. The sink stays open."""
        self.idle = True
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if self._read_fd is not None:
            os.close(self._read_fd)
            self._read_fd = None

    def close(self) -> None:
        """Close both the pipe and the sink."""
        self.close_pipe()
        self.sink.close()
