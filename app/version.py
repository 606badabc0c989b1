"""
Version information for the Order Sync Gateway.

Single source of truth: pyproject.toml
Runtime access via importlib.metadata with fallback.
"""

from __future__ import annotations

import os
import subprocess
import sys
from datetime import UTC, datetime
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version
from typing import Any

PACKAGE_NAME = "order-sync-gateway"

# Fallback version if package metadata unavailable (dev mode)
_FALLBACK_VERSION = "1.0.0"


def get_version() -> str:
    """Get the package version from metadata or fallback."""
    try:
        return version(PACKAGE_NAME)
    except PackageNotFoundError:
        return _FALLBACK_VERSION


VERSION = get_version()


@lru_cache(maxsize=1)
def get_git_info() -> dict[str, str | None]:
    """
    Get git commit info (cached for performance).

    Returns:
        dict with commit hash, branch name, and source
    """
    # Docker build args take priority
    commit = os.environ.get("GIT_COMMIT")
    branch = os.environ.get("GIT_BRANCH")

    if commit:
        return {
            "commit": commit[:8] if len(commit) > 8 else commit,
            "branch": branch,
            "source": "env",
        }

    try:
        commit = subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=5,
        ).strip()
        branch = subprocess.check_output(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=5,
        ).strip()
        return {"commit": commit, "branch": branch, "source": "git"}
    except (OSError, subprocess.SubprocessError):
        return {"commit": None, "branch": None, "source": None}


def version_info() -> dict[str, Any]:
    """
    Get version, interpreter, git and build information.
    """
    git = get_git_info()

    return {
        "version": VERSION,
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "git_commit": git.get("commit"),
        "git_branch": git.get("branch"),
        "build_date": os.environ.get("BUILD_DATE") or datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "build_number": os.environ.get("BUILD_NUMBER"),
    }


__all__ = ["VERSION", "get_version", "get_git_info", "version_info"]
