"""
Version reporting for ``logrelay --version``.

The package version comes from the installed distribution's metadata. When
the package was built from a git checkout, setup.py also generated a
``_build_info.py`` module with the commit it was built from.
"""

from __future__ import annotations

import importlib
import importlib.util
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version

DIST_NAME = "logrelay"


@dataclass(frozen=True)
class BuildInfo:
    """Commit information captured at build time."""

    commit_short: str
    build_time: str
    modified: bool = False

    @classmethod
    def load(cls, module_name: str = "logrelay._build_info") -> BuildInfo | None:
        """Import the generated module, or return None if there is none."""
        if importlib.util.find_spec(module_name) is None:
            return None
        module = importlib.import_module(module_name)
        commit = getattr(module, "COMMIT_SHORT", "")
        if not commit:
            return None
        return cls(
            commit_short=commit,
            build_time=getattr(module, "BUILD_TIME", ""),
            modified=bool(getattr(module, "MODIFIED", False)),
        )


def get_version() -> str:
    try:
        return version(DIST_NAME)
    except PackageNotFoundError:
        # Not installed, running from a source checkout
        return "0.1.0-dev"


def version_string(build_info: BuildInfo | None = None) -> str:
    """
    Render the ``--version`` line.

    Examples:
        logrelay 0.1.0
        logrelay 0.1.0 (3f2c1ab-modified, built 2026-10-19T08:00:00Z)
    """
    s = f"{DIST_NAME} {get_version()}"
    if build_info is None:
        build_info = BuildInfo.load()
    if build_info is not None:
        commit = build_info.commit_short + ("-modified" if build_info.modified else "")
        s += f" ({commit}, built {build_info.build_time})"
    return s
