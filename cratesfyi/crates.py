"""Reading crate names and versions from a crates.io index checkout."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

from cratesfyi.errors import CratesfyiError


def crates_from_file(path) -> list[tuple[str, str]]:
    """Return the non-yanked (name, version) pairs of one index file, newest first."""
    name = ""
    versions: list[str] = []
    with open(path, "rb") as handle:
        for raw in handle:
            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError:
                continue
            try:
                data = json.loads(line)
            except ValueError:
                continue
            if not isinstance(data, dict):
                raise CratesfyiError("Not a JSON object")
            crate_name = data.get("name")
            if not isinstance(crate_name, str):
                raise CratesfyiError("`name` not found in JSON object")
            vers = data.get("vers")
            if not isinstance(vers, str):
                raise CratesfyiError("`vers` not found in JSON object")
            if data.get("yanked") is True:
                continue
            name = crate_name
            versions.append(vers)

    if not name:
        return []
    return [(name, version) for version in reversed(versions)]


def crates_from_path(path) -> Iterator[tuple[str, str]]:
    """Yield (name, version) pairs for every crate found below ``path``."""
    path = Path(path)
    if not path.is_dir():
        raise CratesfyiError("Not a directory")
    for entry in sorted(path.iterdir()):
        if ".git" in str(entry) or entry.name == "config.json":
            continue
        if entry.is_dir():
            yield from crates_from_path(entry)
        else:
            yield from crates_from_file(entry)