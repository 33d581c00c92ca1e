"""Helpers for the rustc version string and external command output."""

from __future__ import annotations

import re
import subprocess

from cratesfyi.errors import CratesfyiError

_VERSION_RE = re.compile(r" ([\w.-]+) \((\w+) (\d+)-(\d+)-(\d+)\)")


def parse_rustc_version(version: str) -> str:
    """Turn ``rustc X (hash YYYY-MM-DD)`` into ``YYYYMMDD-X-hash``."""
    match = _VERSION_RE.search(version)
    if match is None:
        raise CratesfyiError("Failed to parse rustc version")
    release, commit, year, month, day = match.groups()
    return f"{year}{month}{day}-{release}-{commit}"


def _run_version() -> str:
    return command_result(subprocess.run(["rustc", "--version"], capture_output=True))


def get_current_versions() -> tuple[str, str]:
    """Return the output of ``rustc --version`` for rustc and for the builder."""
    rustc_version = _run_version()
    cratesfyi_version = _run_version()
    return rustc_version, cratesfyi_version


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def command_result(completed: subprocess.CompletedProcess) -> str:
    """Return stdout followed by stderr; raise if the command failed."""
    output = _decode(completed.stdout) + _decode(completed.stderr)
    if completed.returncode != 0:
        raise CratesfyiError(output)
    return output