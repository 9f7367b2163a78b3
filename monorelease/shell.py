"""Subprocess wrappers for git, gh and uv, plus terminal output helpers."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path


def _capture(program: str, args: tuple[str, ...], check: bool, cwd: Path | None) -> str:
    result = subprocess.run(
        [program, *args], capture_output=True, text=True, check=check, cwd=cwd
    )
    return result.stdout.strip()


def git(*args: str, check: bool = True, cwd: Path | None = None) -> str:
    """Run ``git *args`` in ``cwd`` and return its stripped stdout.

    Raises:
        subprocess.CalledProcessError: On a non-zero exit when ``check`` is set.
            ``stderr`` holds git's message.
    """
    return _capture("git", args, check, cwd)


def git_ok(*args: str, cwd: Path | None = None) -> bool:
    """Exit status of a predicate-style git command (``merge-base --is-ancestor``)."""
    result = subprocess.run(["git", *args], capture_output=True, text=True, cwd=cwd)
    return result.returncode == 0


def gh(*args: str, check: bool = True, cwd: Path | None = None) -> str:
    return _capture("gh", args, check, cwd)


def run(
    *args: str, check: bool = True, cwd: Path | None = None
) -> subprocess.CompletedProcess[bytes]:
    """Run a command with output going straight to the terminal.

    Used for ``uv build`` and ``uv publish``, whose progress the user
    should see as it happens.
    """
    return subprocess.run(args, check=check, cwd=cwd)


def step(msg: str) -> None:
    """Print a ruled header for a phase of plan or apply."""
    rule = "─" * 60
    print(f"\n{rule}\n{msg}\n{rule}")


def fatal(msg: str) -> None:
    """Report an unrecoverable error on stderr and exit 1."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)
