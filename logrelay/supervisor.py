"""
Process supervisor: runs the child and relays its output.

The supervisor owns the child process, both stream routers and the signal
subscriptions, and drives a single-threaded event loop over them:

    RUNNING ──(child exited)──> DRAINING ──> TERMINATED
       │                            ^
       └──(pipe or sink fault)──────┘

While RUNNING each iteration waits for the first ready source among

- stdout readable, stderr readable,
- the rotate signal, each terminal signal,
- child exit,

and handles exactly one of them. Handlers never interleave, so sinks can be
swapped during rotation without locks. Ready sources that were not picked
stay ready and are picked on a later iteration; the pick among several
ready sources is random so none is starved.

The child's exit status always decides the outcome. A fault on a pipe or a
sink stops the copying, but the supervisor still waits for the child and
reports its real exit code.
"""

from __future__ import annotations

import asyncio
import enum
import os
import random
import signal
from dataclasses import dataclass
from typing import Any

from .config import RelayConfig
from .exceptions import (
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    ExitStatusError,
    RelayError,
    SinkError,
    StartupError,
    StreamError,
)
from .log import Logger, LoggerFactory
from .pidfile import remove_pid_file, write_pid_file
from .router import StreamRouter
from .signals import SignalCoordinator
from .sink import LogSink

# Event source names besides the router names
_EXIT = "exit"
_ROTATE = "rotate"


class SupervisorState(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


@dataclass(frozen=True)
class ExitOutcome:
    """The wrapper's exit code, copied from the child's."""

    code: int

    @classmethod
    def from_returncode(cls, returncode: int | None) -> ExitOutcome:
        """
        Build an outcome from an asyncio return code.

        Raises:
            ExitStatusError: If the child has no exit code, as when it was
                killed by a signal (negative return code)
        """
        if returncode is None:
            raise ExitStatusError("child exit status is not available")
        if returncode < 0:
            raise ExitStatusError(
                "child was terminated by a signal and has no exit code",
                signal=_signal_name(-returncode),
            )
        if returncode > 255:
            raise ExitStatusError("child exit code out of range", code=returncode)
        return cls(code=returncode)


class ProcessSupervisor:
    """
    Spawns the child and relays its output until it exits.

    Example:
        supervisor = ProcessSupervisor(config, lg)
        outcome = asyncio.run(supervisor.run())
        sys.exit(outcome.code)
    """

    def __init__(
        self, config: RelayConfig, lg: Logger, rng: random.Random | None = None
    ) -> None:
        """
        Args:
            config: Validated relay configuration
            lg: Root logger; the supervisor derives its own loggers from it
            rng: Source of randomness for picking among ready events
        """
        self.config = config
        self.state: SupervisorState | None = None
        self._lg = LoggerFactory.derive(lg, "relay")
        self._rng = rng or random.Random()
        self._process: asyncio.subprocess.Process | None = None
        self._routers: dict[str, StreamRouter] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._pid_written = False

    @property
    def pid(self) -> int | None:
        """Child's process id, once spawned."""
        return self._process.pid if self._process is not None else None

    @property
    def routers(self) -> tuple[StreamRouter, ...]:
        return tuple(self._routers.values())

    def _set_state(self, state: SupervisorState) -> None:
        self._lg.debug("state change", extra={"state": state.value})
        self.state = state

    async def run(self) -> ExitOutcome:
        """
        Run the child to completion.

        Returns:
            The child's exit outcome

        Raises:
            ConfigError, SinkError, StartupError, StreamError: Startup faults,
                raised before the event loop starts
            ExitStatusError: If the child exited without an exit code
        """
        with SignalCoordinator(self._lg, self.config.rotate_signal) as signals:
            try:
                await self._start()
                fault = await self._event_loop(signals)
                self._set_state(SupervisorState.DRAINING)
                if fault is None:
                    await self._drain()
                else:
                    await self._await_exit(signals)
                return self._outcome()
            finally:
                await self._shutdown()

    # Startup

    def _open_sinks(self) -> tuple[LogSink, LogSink]:
        out = LogSink.open(
            self.config.stdout_path, LoggerFactory.derive(self._lg, "stdout")
        )
        try:
            err = LogSink.open(
                self.config.stderr_path, LoggerFactory.derive(self._lg, "stderr")
            )
        except SinkError:
            out.close()
            raise
        return out, err

    def _open_pipe(self, name: str, sink: LogSink) -> int:
        """Create the router for one stream and return the pipe's write end."""
        try:
            read_fd, write_fd = os.pipe()
        except OSError as e:
            sink.close()
            raise StartupError(f"cannot create {name} pipe: {e}") from e
        self._routers[name] = StreamRouter(
            name,
            read_fd,
            sink,
            LoggerFactory.derive(self._lg, name),
            buffer_size=self.config.buffer_size,
        )
        return write_fd

    async def _start(self) -> None:
        out_sink, err_sink = self._open_sinks()
        try:
            out_w = self._open_pipe("stdout", out_sink)
        except StartupError:
            err_sink.close()
            raise
        try:
            err_w = self._open_pipe("stderr", err_sink)
        except StartupError:
            os.close(out_w)
            raise

        try:
            if self.config.pid_file is not None:
                write_pid_file(self.config.pid_file, self._lg)
                self._pid_written = True
            self._process = await self._spawn(out_w, err_w)
        finally:
            # The child holds its own copies; ours would keep the pipes open
            os.close(out_w)
            os.close(err_w)

        for router in self.routers:
            await router.connect()

    async def _spawn(self, out_fd: int, err_fd: int) -> asyncio.subprocess.Process:
        program = self.config.program
        try:
            process = await asyncio.create_subprocess_exec(
                program, *self.config.args, stdout=out_fd, stderr=err_fd
            )
        except FileNotFoundError as e:
            raise StartupError(
                f"command not found: {program}", exit_code=EXIT_NOT_FOUND
            ) from e
        except PermissionError as e:
            raise StartupError(
                f"command not executable: {program}", exit_code=EXIT_NOT_EXECUTABLE
            ) from e
        except OSError as e:
            raise StartupError(f"cannot start {program}: {e}") from e

        self._lg.info(
            "started child", extra={"pid": process.pid, "cmd": self.config.program}
        )
        return process

    # Event loop

    def _arm(self, signals: SignalCoordinator, rotate: bool = True) -> None:
        """Start a waiter for every source that has none in flight."""
        tasks = self._tasks
        for name, router in self._routers.items():
            if not router.idle and name not in tasks:
                tasks[name] = asyncio.ensure_future(router.read())
        if rotate and _ROTATE not in tasks:
            tasks[_ROTATE] = asyncio.ensure_future(signals.rotate.recv())
        for sub in signals.terminal:
            if sub.name not in tasks:
                tasks[sub.name] = asyncio.ensure_future(sub.recv())
        if _EXIT not in tasks:
            assert self._process is not None
            tasks[_EXIT] = asyncio.ensure_future(self._process.wait())

    async def _next_event(
        self, signals: SignalCoordinator, rotate: bool = True
    ) -> tuple[str, asyncio.Task[Any]]:
        """Wait until at least one source is ready and pick one of them."""
        self._arm(signals, rotate)
        await asyncio.wait(self._tasks.values(), return_when=asyncio.FIRST_COMPLETED)
        ready = [name for name, task in self._tasks.items() if task.done()]
        name = self._rng.choice(ready)
        return name, self._tasks.pop(name)

    async def _event_loop(self, signals: SignalCoordinator) -> RelayError | None:
        """
        Handle events until the child exits.

        Returns:
            None when the child exited, or the fault that stopped the relay
        """
        self._set_state(SupervisorState.RUNNING)
        while True:
            name, task = await self._next_event(signals)
            if name == _EXIT:
                self._lg.info("child exited", extra={"code": task.result()})
                return None
            try:
                if name in self._routers:
                    self._routers[name].handle(task.result())
                elif name == _ROTATE:
                    self.rotate()
                else:
                    self.forward(task.result())
            except (StreamError, SinkError) as e:
                self._lg.error(
                    "cannot relay output, waiting for child to exit",
                    extra={"error": e},
                )
                return e

    def rotate(self) -> None:
        """
        Reopen both sinks at their paths.

        Raises:
            SinkError: If a log path cannot be reopened
        """
        self._lg.info("rotating log files")
        for router in self.routers:
            router.sink.reopen()

    def forward(self, signum: int) -> bool:
        """
        Send signum to the child, if it is still running.

        Failures are logged, never raised.

        Returns:
            True if the signal was delivered to the child
        """
        name = _signal_name(signum)
        process = self._process
        if process is None or process.returncode is not None:
            self._lg.warning(
                "child not running, signal not forwarded", extra={"signal": name}
            )
            return False
        try:
            os.kill(process.pid, signum)
        except OSError as e:
            self._lg.warning(
                "failed to forward signal to child",
                extra={"signal": name, "pid": process.pid, "error": e},
            )
            return False
        self._lg.info("forwarded signal", extra={"signal": name, "pid": process.pid})
        return True

    # Draining

    async def _drain_router(self, router: StreamRouter, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        while not router.idle:
            task = self._tasks.pop(router.name, None) or asyncio.ensure_future(
                router.read()
            )
            timeout = max(0.0, deadline - loop.time())
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                self._lg.warning(
                    "pipe still open after child exit, output may be truncated",
                    extra={"stream": router.name, "timeout": self.config.drain_timeout},
                )
                return
            try:
                router.handle(task.result())
            except (StreamError, SinkError) as e:
                self._lg.error(
                    "cannot drain remaining output",
                    extra={"stream": router.name, "error": e},
                )
                return

    async def _drain(self) -> None:
        """Copy output still buffered in the pipes, bounded by drain_timeout."""
        deadline = asyncio.get_running_loop().time() + self.config.drain_timeout
        await asyncio.gather(
            *(self._drain_router(router, deadline) for router in self.routers)
        )

    async def _await_exit(self, signals: SignalCoordinator) -> None:
        """
        Keep the pipes read but discard their output until the child exits.

        Both routers keep reading so the child never writes into a closed
        pipe. Terminal signals are still forwarded; the rotate waiter is
        dropped.
        """
        task = self._tasks.pop(_ROTATE, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        for router in self.routers:
            router.discard = True

        while True:
            name, task = await self._next_event(signals, rotate=False)
            if name == _EXIT:
                self._lg.info("child exited", extra={"code": task.result()})
                return
            if name not in self._routers:
                self.forward(task.result())
                continue
            router = self._routers[name]
            try:
                router.handle(task.result())
            except StreamError as e:
                # Pipe stays open until shutdown; it is just no longer read
                router.idle = True
                self._lg.warning(
                    "cannot read pipe, ignoring it until exit",
                    extra={"stream": name, "error": e},
                )

    def _outcome(self) -> ExitOutcome:
        assert self._process is not None
        return ExitOutcome.from_returncode(self._process.returncode)

    async def _shutdown(self) -> None:
        """Release everything; runs on every exit path."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        process = self._process
        if process is not None and process.returncode is None:
            self._lg.warning("stopping child", extra={"pid": process.pid})
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        # Pipes close only once the child is gone
        for router in self.routers:
            router.close()

        if self._pid_written and self.config.pid_file is not None:
            remove_pid_file(self.config.pid_file, self._lg)
            self._pid_written = False

        self._set_state(SupervisorState.TERMINATED)
