"""
Tests for supervisor.py.

Runs real child processes (small Python programs) under the supervisor and
checks what ends up in the log files, the exit outcome, and the wrapper's
diagnostics. Children that need to be stepped wait for trigger files the
test creates.
"""

import asyncio
import dataclasses
import os
import signal

import pytest

from logrelay.config import RotateSignal
from logrelay.exceptions import ExitStatusError, SinkError, StartupError, StreamError
from logrelay.router import StreamRouter
from logrelay.sink import LogSink
from logrelay.supervisor import ExitOutcome, ProcessSupervisor, SupervisorState
from tests.fixtures.relay import py_child, read_text, wait_until

# Prints "one", "two", "three" to stdout, waiting for argv[1] before "two"
# and argv[2] before "three".
STEPPED_CHILD = """
    import os, sys, time

    def wait_for(path):
        while not os.path.exists(path):
            time.sleep(0.01)

    print("one", flush=True)
    wait_for(sys.argv[1])
    print("two", flush=True)
    wait_for(sys.argv[2])
    print("three", flush=True)
"""


def _stdout_router(supervisor):
    return next(r for r in supervisor.routers if r.name == "stdout")


def _pending_tasks():
    current = asyncio.current_task()
    return [t for t in asyncio.all_tasks() if t is not current]


@pytest.mark.unit
class TestExitOutcome:
    @pytest.mark.parametrize("code", [0, 1, 3, 255])
    def test_exit_codes_copied(self, code):
        assert ExitOutcome.from_returncode(code).code == code

    def test_killed_by_signal(self):
        with pytest.raises(ExitStatusError, match="SIGKILL"):
            ExitOutcome.from_returncode(-signal.SIGKILL)

    def test_not_available(self):
        with pytest.raises(ExitStatusError, match="not available"):
            ExitOutcome.from_returncode(None)

    def test_out_of_range(self):
        with pytest.raises(ExitStatusError, match="out of range"):
            ExitOutcome.from_returncode(256)


@pytest.mark.integration
class TestSupervisorRun:
    """Test the full run of a child under the supervisor."""

    @pytest.mark.asyncio
    async def test_stdout_relayed(self, make_config, relay_paths, lg):
        supervisor = ProcessSupervisor(
            make_config(py_child("import sys; sys.stdout.write('hello\\n')")), lg
        )

        outcome = await supervisor.run()

        assert outcome == ExitOutcome(0)
        assert read_text(relay_paths.out) == "hello\n"
        assert read_text(relay_paths.err) == ""
        assert supervisor.state is SupervisorState.TERMINATED

    @pytest.mark.asyncio
    async def test_stderr_relayed_and_exit_code(self, make_config, relay_paths, lg):
        child = py_child(
            """
            import sys
            sys.stderr.write("boom\\n")
            sys.exit(3)
            """
        )

        outcome = await ProcessSupervisor(make_config(child), lg).run()

        assert outcome.code == 3
        assert read_text(relay_paths.out) == ""
        assert read_text(relay_paths.err) == "boom\n"

    @pytest.mark.asyncio
    async def test_appends_to_existing_logs(self, make_config, relay_paths, lg):
        relay_paths.out.write_text("previous run\n")

        await ProcessSupervisor(make_config(py_child("print('this run')")), lg).run()

        assert read_text(relay_paths.out) == "previous run\nthis run\n"

    @pytest.mark.asyncio
    async def test_large_output_fully_drained(self, make_config, relay_paths, lg):
        child = py_child("import sys; sys.stdout.write('x' * 300000)")

        outcome = await ProcessSupervisor(make_config(child), lg).run()

        assert outcome.code == 0
        assert relay_paths.out.stat().st_size == 300000

    @pytest.mark.asyncio
    async def test_interleaved_streams_keep_per_stream_order(
        self, make_config, relay_paths, lg
    ):
        child = py_child(
            """
            import sys
            for i in range(200):
                sys.stdout.write(f"out {i}\\n")
                sys.stdout.flush()
                sys.stderr.write(f"err {i}\\n")
                sys.stderr.flush()
            """
        )

        await ProcessSupervisor(make_config(child), lg).run()

        assert read_text(relay_paths.out) == "".join(f"out {i}\n" for i in range(200))
        assert read_text(relay_paths.err) == "".join(f"err {i}\n" for i in range(200))

    @pytest.mark.asyncio
    async def test_killed_child_has_no_exit_code(self, make_config, relay_paths, lg):
        child = py_child("import os, signal; os.kill(os.getpid(), signal.SIGKILL)")
        config = make_config(child, pid_file=relay_paths.pid)

        with pytest.raises(ExitStatusError, match="SIGKILL"):
            await ProcessSupervisor(config, lg).run()

        assert not relay_paths.pid.exists()


@pytest.mark.integration
class TestSupervisorStartup:
    """Test startup failures."""

    @pytest.mark.asyncio
    async def test_command_not_found(self, make_config, relay_paths, lg):
        config = make_config(
            ("/nonexistent/logrelay-test-command",), pid_file=relay_paths.pid
        )

        with pytest.raises(StartupError, match="command not found") as exc_info:
            await ProcessSupervisor(config, lg).run()

        assert exc_info.value.exit_code == 127
        assert not relay_paths.pid.exists()

    @pytest.mark.asyncio
    async def test_command_not_executable(self, make_config, relay_paths, lg):
        script = relay_paths.dir / "not-executable.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)

        with pytest.raises(StartupError, match="not executable") as exc_info:
            await ProcessSupervisor(make_config((str(script),)), lg).run()

        assert exc_info.value.exit_code == 126

    @pytest.mark.asyncio
    async def test_unopenable_log_path(self, make_config, relay_paths, lg):
        config = dataclasses.replace(
            make_config(py_child("print('never')")),
            stderr_path=relay_paths.dir / "missing" / "err.log",
        )

        with pytest.raises(SinkError, match="cannot open log file"):
            await ProcessSupervisor(config, lg).run()

    @pytest.mark.asyncio
    async def test_unwritable_pidfile_spawns_nothing(
        self, make_config, relay_paths, lg
    ):
        marker = relay_paths.dir / "spawned"
        config = make_config(
            py_child(f"open({str(marker)!r}, 'w').close()"),
            pid_file=relay_paths.dir / "missing" / "relay.pid",
        )

        supervisor = ProcessSupervisor(config, lg)
        with pytest.raises(StartupError, match="cannot write pidfile"):
            await supervisor.run()

        assert supervisor.pid is None
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_pidfile_lifecycle(self, make_config, relay_paths, lg):
        trigger = relay_paths.dir / "go"
        child = py_child(
            f"""
            import os, time
            while not os.path.exists({str(trigger)!r}):
                time.sleep(0.01)
            """
        )
        supervisor = ProcessSupervisor(make_config(child, pid_file=relay_paths.pid), lg)
        run = asyncio.ensure_future(supervisor.run())

        await wait_until(lambda: supervisor.pid is not None)
        assert relay_paths.pid.read_text() == str(os.getpid())
        trigger.touch()
        await asyncio.wait_for(run, timeout=10)

        assert not relay_paths.pid.exists()

    def test_forward_without_child(self, make_config, lg, log_stream):
        supervisor = ProcessSupervisor(make_config(("true",)), lg)
        assert supervisor.forward(signal.SIGTERM) is False
        assert "signal not forwarded" in log_stream.getvalue()


@pytest.mark.integration
class TestSupervisorRotation:
    """Test rotation by signal and by stale detection."""

    @pytest.mark.asyncio
    async def test_rotate_signal_reopens_logs(self, make_config, relay_paths, lg):
        go1, go2 = relay_paths.dir / "go1", relay_paths.dir / "go2"
        config = make_config(
            (*py_child(STEPPED_CHILD), str(go1), str(go2)),
            rotate_signal=RotateSignal.SIGUSR1,
        )
        supervisor = ProcessSupervisor(config, lg)
        run = asyncio.ensure_future(supervisor.run())

        await wait_until(lambda: read_text(relay_paths.out) == "one\n")
        os.rename(relay_paths.out, relay_paths.dir / "out.log.1")
        os.kill(os.getpid(), signal.SIGUSR1)
        await wait_until(lambda: _stdout_router(supervisor).sink.reopen_count == 1)
        assert relay_paths.out.exists()
        go1.touch()

        await wait_until(lambda: read_text(relay_paths.out) == "two\n")
        os.rename(relay_paths.out, relay_paths.dir / "out.log.2")
        os.kill(os.getpid(), signal.SIGUSR1)
        await wait_until(lambda: _stdout_router(supervisor).sink.reopen_count == 2)
        go2.touch()

        outcome = await asyncio.wait_for(run, timeout=10)

        assert outcome.code == 0
        assert read_text(relay_paths.dir / "out.log.1") == "one\n"
        assert read_text(relay_paths.dir / "out.log.2") == "two\n"
        assert read_text(relay_paths.out) == "three\n"

    @pytest.mark.asyncio
    async def test_rotation_without_rename_is_harmless(
        self, make_config, relay_paths, lg
    ):
        go1, go2 = relay_paths.dir / "go1", relay_paths.dir / "go2"
        config = make_config(
            (*py_child(STEPPED_CHILD), str(go1), str(go2)),
            rotate_signal=RotateSignal.SIGUSR2,
        )
        supervisor = ProcessSupervisor(config, lg)
        run = asyncio.ensure_future(supervisor.run())

        await wait_until(lambda: read_text(relay_paths.out) == "one\n")
        os.kill(os.getpid(), signal.SIGUSR2)
        await wait_until(lambda: _stdout_router(supervisor).sink.reopen_count == 1)
        os.kill(os.getpid(), signal.SIGUSR2)
        await wait_until(lambda: _stdout_router(supervisor).sink.reopen_count == 2)
        go1.touch()
        go2.touch()
        await asyncio.wait_for(run, timeout=10)

        assert read_text(relay_paths.out) == "one\ntwo\nthree\n"

    @pytest.mark.asyncio
    async def test_renamed_log_reopened_without_signal(
        self, make_config, relay_paths, lg, log_stream
    ):
        go1, go2 = relay_paths.dir / "go1", relay_paths.dir / "go2"
        go2.touch()
        supervisor = ProcessSupervisor(
            make_config((*py_child(STEPPED_CHILD), str(go1), str(go2))), lg
        )
        run = asyncio.ensure_future(supervisor.run())

        await wait_until(lambda: read_text(relay_paths.out) == "one\n")
        os.rename(relay_paths.out, relay_paths.dir / "out.log.old")
        go1.touch()
        await asyncio.wait_for(run, timeout=10)

        assert read_text(relay_paths.dir / "out.log.old") == "one\n"
        assert read_text(relay_paths.out) == "two\nthree\n"
        assert "log file was moved or removed" in log_stream.getvalue()


@pytest.mark.integration
class TestSupervisorSignals:
    """Test forwarding of terminal signals."""

    @pytest.mark.asyncio
    async def test_terminal_signal_forwarded_after_streams_closed(
        self, make_config, lg, log_stream
    ):
        child = py_child(
            """
            import os, signal, time
            signal.signal(signal.SIGTERM, lambda *args: os._exit(7))
            os.close(1)
            os.close(2)
            while True:
                time.sleep(0.05)
            """
        )
        supervisor = ProcessSupervisor(make_config(child), lg)
        run = asyncio.ensure_future(supervisor.run())

        await wait_until(
            lambda: len(supervisor.routers) == 2
            and all(r.idle for r in supervisor.routers)
        )
        os.kill(os.getpid(), signal.SIGTERM)
        outcome = await asyncio.wait_for(run, timeout=10)

        assert outcome.code == 7
        assert "forwarded signal" in log_stream.getvalue()

    @pytest.mark.asyncio
    async def test_rotate_signal_is_not_forwarded(self, make_config, relay_paths, lg):
        go1, go2 = relay_paths.dir / "go1", relay_paths.dir / "go2"
        config = make_config(
            (*py_child(STEPPED_CHILD), str(go1), str(go2)),
            rotate_signal=RotateSignal.SIGUSR1,
        )
        supervisor = ProcessSupervisor(config, lg)
        run = asyncio.ensure_future(supervisor.run())

        await wait_until(lambda: read_text(relay_paths.out) == "one\n")
        # SIGUSR1 would kill the child if it were forwarded
        os.kill(os.getpid(), signal.SIGUSR1)
        await wait_until(lambda: _stdout_router(supervisor).sink.reopen_count == 1)
        go1.touch()
        go2.touch()

        assert (await asyncio.wait_for(run, timeout=10)).code == 0


@pytest.mark.integration
class TestSupervisorFaults:
    """Test faults after startup and lingering pipes."""

    @pytest.mark.asyncio
    async def test_sink_fault_keeps_child_exit_code(
        self, make_config, lg, log_stream, monkeypatch
    ):
        def broken_write(self, data):
            raise SinkError("write failed after reopen", path=self.path)

        monkeypatch.setattr(LogSink, "write", broken_write)
        child = py_child(
            """
            import sys, time
            print("lost", flush=True)
            time.sleep(0.2)
            sys.exit(4)
            """
        )

        outcome = await ProcessSupervisor(make_config(child), lg).run()

        assert outcome.code == 4
        assert "cannot relay output, waiting for child to exit" in log_stream.getvalue()
        assert _pending_tasks() == []

    @pytest.mark.asyncio
    async def test_drain_bounded_when_grandchild_holds_pipe(
        self, make_config, relay_paths, lg, log_stream
    ):
        pid_path = relay_paths.dir / "grandchild.pid"
        child = py_child(
            f"""
            import subprocess, sys
            grandchild = subprocess.Popen(
                [sys.executable, "-c", "import time; time.sleep(30)"]
            )
            with open({str(pid_path)!r}, "w") as f:
                f.write(str(grandchild.pid))
            print("parent done", flush=True)
            """
        )
        config = make_config(child, drain_timeout=0.2)

        try:
            outcome = await asyncio.wait_for(
                ProcessSupervisor(config, lg).run(), timeout=10
            )
        finally:
            if pid_path.exists():
                os.kill(int(pid_path.read_text()), signal.SIGKILL)

        assert outcome.code == 0
        assert read_text(relay_paths.out) == "parent done\n"
        assert "pipe still open after child exit" in log_stream.getvalue()
        assert _pending_tasks() == []

    @pytest.mark.asyncio
    async def test_child_keeps_writing_after_sink_fault(
        self, make_config, relay_paths, lg, log_stream, monkeypatch
    ):
        def broken_write(self, data):
            raise SinkError("write failed after reopen", path=self.path)

        monkeypatch.setattr(LogSink, "write", broken_write)
        # More than a pipe buffer after the fault: blocks unless still read
        child = py_child(
            """
            import sys, time
            print("first", flush=True)
            time.sleep(0.3)
            sys.stdout.write("second\\n" * 20000)
            sys.stdout.flush()
            sys.stderr.write("late\\n")
            sys.exit(4)
            """
        )
        supervisor = ProcessSupervisor(make_config(child), lg)

        outcome = await asyncio.wait_for(supervisor.run(), timeout=10)

        assert outcome.code == 4
        assert read_text(relay_paths.out) == ""
        assert _stdout_router(supervisor).bytes_discarded > 0
        assert "cannot relay output, waiting for child to exit" in log_stream.getvalue()
        assert supervisor.state is SupervisorState.TERMINATED

    @pytest.mark.asyncio
    async def test_read_fault_keeps_child_exit_code(
        self, make_config, relay_paths, lg, log_stream, monkeypatch
    ):
        real_read = StreamRouter.read
        failed = []

        async def failing_read(self):
            if self.name == "stdout" and not failed:
                failed.append(self.name)
                raise StreamError("read failed: Input/output error", stream=self.name)
            return await real_read(self)

        monkeypatch.setattr(StreamRouter, "read", failing_read)
        child = py_child(
            """
            import sys, time
            time.sleep(0.2)
            print("after fault", flush=True)
            sys.exit(3)
            """
        )

        outcome = await asyncio.wait_for(
            ProcessSupervisor(make_config(child), lg).run(), timeout=10
        )

        assert outcome.code == 3
        assert failed == ["stdout"]
        assert read_text(relay_paths.out) == ""
        assert "cannot relay output, waiting for child to exit" in log_stream.getvalue()
        assert _pending_tasks() == []
