"""
Configuration for the relay.

RelayConfig is the validated, immutable configuration the supervisor runs
with. It is assembled from three layers, later layers winning:

1. an optional YAML config file,
2. ``LOGRELAY_*`` environment variable overrides of that file,
3. command-line arguments.

Config file example::

    stdout: /var/log/myapp/out.log
    stderr: /var/log/myapp/err.log
    pid_file: /run/myapp.pid
    signal: SIGUSR1
    drain_timeout: 2.5
    logging:
      level: debug

Environment override format: ``LOGRELAY_<SECTION>_<KEY>=value``, e.g.
``LOGRELAY_LOGGING_LEVEL=debug`` or ``LOGRELAY_SIGNAL=SIGUSR2``.
"""

from __future__ import annotations

import enum
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from .exceptions import ConfigError

# Maximum config file size (1MB), far above any sensible relay config
MAX_CONFIG_SIZE_BYTES = 1024 * 1024

ENV_PREFIX = "LOGRELAY_"

DEFAULT_BUFFER_SIZE = 8 * 1024
DEFAULT_DRAIN_TIMEOUT = 5.0

# Keys that contain an underscore themselves; env var names are split on "_"
_COMPOUND_KEYS = ("pid_file", "drain_timeout", "buffer_size")


class RotateSignal(enum.Enum):
    """Signals an operator can choose to request log rotation."""

    SIGHUP = "SIGHUP"
    SIGUSR1 = "SIGUSR1"
    SIGUSR2 = "SIGUSR2"

    @property
    def signum(self) -> signal.Signals:
        """Platform signal number for this selector."""
        return _ROTATE_SIGNUMS[self]

    @classmethod
    def parse(cls, name: str) -> RotateSignal:
        """Parse a signal name, accepting ``hup`` / ``SIGHUP`` forms."""
        key = name.strip().upper()
        if not key.startswith("SIG"):
            key = "SIG" + key
        try:
            return cls[key]
        except KeyError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigError(
                f"invalid rotate signal '{name}'", choices=choices
            ) from None


_ROTATE_SIGNUMS: dict[RotateSignal, signal.Signals] = {
    RotateSignal.SIGHUP: signal.SIGHUP,
    RotateSignal.SIGUSR1: signal.SIGUSR1,
    RotateSignal.SIGUSR2: signal.SIGUSR2,
}

# Operator-initiated termination signals relayed to the child
TERMINAL_SIGNALS: tuple[signal.Signals, ...] = (
    signal.SIGTERM,
    signal.SIGQUIT,
    signal.SIGINT,
)


@dataclass(frozen=True)
class RelayConfig:
    """
    Immutable relay configuration.

    Attributes:
        stdout_path: Log file receiving the child's stdout
        stderr_path: Log file receiving the child's stderr
        command: Program and arguments to run, never empty
        pid_file: Where to write the wrapper's pid, if anywhere
        rotate_signal: Signal that requests reopening both log files
        drain_timeout: Seconds to keep draining pipes after the child exits
        buffer_size: Maximum bytes read from a pipe per event
    """

    stdout_path: Path
    stderr_path: Path
    command: tuple[str, ...]
    pid_file: Path | None = None
    rotate_signal: RotateSignal = RotateSignal.SIGHUP
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    buffer_size: int = DEFAULT_BUFFER_SIZE

    def __post_init__(self) -> None:
        if not self.command:
            raise ConfigError("no command specified")
        if self.drain_timeout < 0:
            raise ConfigError(
                "drain_timeout must not be negative", drain_timeout=self.drain_timeout
            )
        if self.buffer_size <= 0:
            raise ConfigError(
                "buffer_size must be positive", buffer_size=self.buffer_size
            )

    @property
    def program(self) -> str:
        return self.command[0]

    @property
    def args(self) -> tuple[str, ...]:
        return self.command[1:]

    @classmethod
    def from_sources(
        cls, file_config: dict[str, Any], overrides: dict[str, Any]
    ) -> RelayConfig:
        """
        Build a RelayConfig from config-file values and explicit overrides.

        Overrides whose value is None are ignored, so argparse namespaces can
        be passed through without filtering.

        Raises:
            ConfigError: If a required value is missing or invalid
        """
        merged = {k: v for k, v in file_config.items() if v is not None}
        merged.update({k: v for k, v in overrides.items() if v is not None})

        for key in ("stdout", "stderr"):
            if not merged.get(key):
                raise ConfigError(f"no {key} log path specified")

        command = merged.get("command") or ()
        if isinstance(command, str):
            command = (command,)

        rotate = merged.get("signal", RotateSignal.SIGHUP)
        if not isinstance(rotate, RotateSignal):
            rotate = RotateSignal.parse(str(rotate))

        pid_file = merged.get("pid_file")

        try:
            drain_timeout = float(merged.get("drain_timeout", DEFAULT_DRAIN_TIMEOUT))
            buffer_size = int(merged.get("buffer_size", DEFAULT_BUFFER_SIZE))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid numeric setting: {e}") from e

        return cls(
            stdout_path=_as_path("stdout", merged["stdout"]),
            stderr_path=_as_path("stderr", merged["stderr"]),
            command=tuple(str(c) for c in command),
            pid_file=_as_path("pid_file", pid_file) if pid_file else None,
            rotate_signal=rotate,
            drain_timeout=drain_timeout,
            buffer_size=buffer_size,
        )


def _as_path(key: str, value: Any) -> Path:
    """
    Turn a configured path into a Path.

    YAML and environment overrides may yield numbers (`stdout: 123`); those
    name a file just like a string does. Anything else is rejected.
    """
    if isinstance(value, (str, os.PathLike)):
        return Path(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Path(str(value))
    raise ConfigError(f"invalid {key} path", value=value)


# Helper functions for load_config_file()


def _check_file_size(path: Path) -> None:
    """Refuse config files over the size limit."""
    file_size = path.stat().st_size
    if file_size > MAX_CONFIG_SIZE_BYTES:
        raise ConfigError(
            "config file too large",
            path=path,
            size=file_size,
            limit=MAX_CONFIG_SIZE_BYTES,
        )


def _env_key_to_path(env_key: str) -> list[str]:
    """
    Convert environment variable key to a config path.

    LOGRELAY_LOGGING_LEVEL -> ['logging', 'level']
    LOGRELAY_PID_FILE -> ['pid_file']
    """
    key = env_key[len(ENV_PREFIX) :].lower()
    if key in _COMPOUND_KEYS:
        return [key]
    return key.split("_")


def _convert_env_value(value: str) -> bool | int | float | str | None:
    """Convert environment variable string to an appropriate type."""
    if value.lower() in ("null", "none", ""):
        return None

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    return value


def _set_nested_value(data: dict[str, Any], path: list[str], value: Any) -> None:
    current = data
    for part in path[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[path[-1]] = value


def apply_env_overrides(
    config_data: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """
    Apply ``LOGRELAY_*`` environment variable overrides to config data.

    Args:
        config_data: Configuration dictionary, modified in place
        environ: Environment to read, ``os.environ`` by default

    Returns:
        The same dictionary, for chaining
    """
    env = os.environ if environ is None else environ
    for key, raw in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        _set_nested_value(config_data, _env_key_to_path(key), _convert_env_value(raw))
    return config_data


def load_config_file(
    fname: str | Path | None, environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """
    Load a YAML config file and apply environment overrides.

    Args:
        fname: Path to the YAML file, or None for environment overrides only
        environ: Environment to read overrides from, ``os.environ`` by default

    Returns:
        Plain configuration dictionary

    Raises:
        ConfigError: If the file is missing, too large, malformed, or not a mapping
    """
    data: Any = {}
    if fname is not None:
        path = Path(fname)
        try:
            _check_file_size(path)
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"cannot read config file: {e}", path=path) from e
        except yaml.YAMLError as e:
            raise ConfigError(f"malformed config file: {e}", path=path) from e

        if not isinstance(data, dict):
            raise ConfigError("config file must contain a mapping", path=path)

    return apply_env_overrides(data, environ)
