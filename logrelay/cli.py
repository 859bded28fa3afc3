#!/usr/bin/env python3
"""
logrelay command line.

Usage:
    logrelay -o out.log -e err.log -- myserver --port 8080
    logrelay -o out.log -e err.log -p /run/myserver.pid --sig SIGUSR1 -- myserver
    logrelay -c /etc/logrelay.yaml -- myserver

Exit status is the child's exit status. When the wrapper itself fails it
exits with 125, or with 126/127 when the command cannot be executed or is
not found.
"""

import argparse
import asyncio
import sys
from typing import Any, NoReturn

from .config import RelayConfig, RotateSignal, load_config_file
from .exceptions import EXIT_WRAPPER_FAILURE, ConfigError, RelayError
from .log import LogConfig, Logger, LoggerFactory, create_root_lg
from .supervisor import ProcessSupervisor
from .version import version_string


class DefaultsHelpFormatter(argparse.HelpFormatter):
    """Help formatter that appends default values to help text."""

    def _get_help_string(self, action: argparse.Action) -> str:
        help_text = action.help or ""
        if action.default is not argparse.SUPPRESS and action.default is not None:
            return help_text + f" (default: {action.default})"
        return help_text


class RelayArgumentParser(argparse.ArgumentParser):
    """Argument parser whose usage errors use the wrapper's failure exit code."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(EXIT_WRAPPER_FAILURE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = RelayArgumentParser(
        prog="logrelay",
        description=(
            "Run a command, appending its stdout and stderr to log files that "
            "can be rotated while it runs."
        ),
        formatter_class=DefaultsHelpFormatter,
    )
    parser.add_argument(
        "-o", "--out-path", metavar="PATH", help="file to append stdout to"
    )
    parser.add_argument(
        "-e", "--err-path", metavar="PATH", help="file to append stderr to"
    )
    parser.add_argument(
        "-p", "--pid-file", metavar="PATH", help="file to write the wrapper's pid to"
    )
    parser.add_argument(
        "--sig",
        choices=[s.value for s in RotateSignal],
        default=None,
        help="signal announcing that the log files were rotated (default: SIGHUP)",
    )
    parser.add_argument(
        "--drain-timeout",
        type=float,
        default=None,
        metavar="SECS",
        help="how long to keep copying output after the command exits (default: 5.0)",
    )
    parser.add_argument(
        "-c", "--config", metavar="FILE", help="YAML config file"
    )
    parser.add_argument(
        "-l",
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="diagnostic log level (default: from config or 'info')",
    )
    parser.add_argument("--version", action="version", version=version_string())
    parser.add_argument(
        "command", nargs="*", help="command to run, after '--'"
    )
    return parser


def _create_logger(file_config: dict[str, Any], level: str | None) -> Logger:
    log_config = LogConfig.from_config(file_config)
    if level is not None:
        log_config = LogConfig.from_params(level, log_config.micros, log_config.colors)
    return LoggerFactory.create_root(log_config)


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map parsed arguments onto config-file keys."""
    return {
        "stdout": args.out_path,
        "stderr": args.err_path,
        "pid_file": args.pid_file,
        "signal": args.sig,
        "drain_timeout": args.drain_timeout,
        "command": args.command or None,
    }


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        file_config = load_config_file(args.config)
        lg = _create_logger(file_config, args.log_level)
    except ConfigError as e:
        lg = create_root_lg()
        lg.critical(str(e))
        return e.exit_code

    try:
        config = RelayConfig.from_sources(file_config, _overrides(args))
        outcome = asyncio.run(ProcessSupervisor(config, lg).run())
    except RelayError as e:
        lg.critical(str(e), extra={"exit": e.exit_code})
        return e.exit_code

    lg.debug("exiting", extra={"code": outcome.code})
    return outcome.code


if __name__ == "__main__":
    sys.exit(main())
