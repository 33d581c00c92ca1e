"""Version string of the builder: package version, git commit and build date."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

PACKAGE_VERSION = "0.6.0"
UNKNOWN_HASH = "???????"

_HASH_RE = re.compile(r"[0-9a-f]{40}(?:[0-9a-f]{24})?")
_MAX_REF_DEPTH = 10


def _git_dir(directory: Path) -> Path | None:
    dot_git = directory / ".git"
    if dot_git.is_dir():
        return dot_git
    if dot_git.is_file():
        content = dot_git.read_text(encoding="utf-8").strip()
        if content.startswith("gitdir:"):
            target = Path(content[len("gitdir:"):].strip())
            return target if target.is_absolute() else directory / target
        return None
    if (directory / "HEAD").is_file() and (directory / "objects").is_dir():
        return directory
    return None


def _common_dir(git_dir: Path) -> Path:
    commondir = git_dir / "commondir"
    if commondir.is_file():
        target = Path(commondir.read_text(encoding="utf-8").strip())
        return target if target.is_absolute() else git_dir / target
    return git_dir


def _packed_ref(common: Path, ref: str) -> str | None:
    packed = common / "packed-refs"
    if not packed.is_file():
        return None
    for line in packed.read_text(encoding="utf-8").splitlines():
        if not line or line.startswith(("#", "^")):
            continue
        value, _, name = line.partition(" ")
        if name.strip() == ref:
            return value.strip()
    return None


def _resolve(git_dir: Path, value: str, depth: int = 0) -> str | None:
    value = value.strip()
    if not value.startswith("ref:"):
        return value if _HASH_RE.fullmatch(value) else None
    if depth >= _MAX_REF_DEPTH:
        return None
    ref = value[len("ref:"):].strip()
    common = _common_dir(git_dir)
    for base in (git_dir, common):
        loose = base / ref
        if loose.is_file():
            return _resolve(git_dir, loose.read_text(encoding="utf-8"), depth + 1)
    packed = _packed_ref(common, ref)
    return None if packed is None else _resolve(git_dir, packed, depth + 1)


def git_hash(directory) -> str | None:
    """The abbreviated commit hash of HEAD in the repository at ``directory``."""
    try:
        git_dir = _git_dir(Path(directory))
        if git_dir is None:
            return None
        head = git_dir / "HEAD"
        if not head.is_file():
            return None
        target = _resolve(git_dir, head.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return None
    return None if target is None else target[:7]


def build_version() -> str:
    """``<version> (<commit> <date>)`` for the current working directory."""
    commit = git_hash(Path.cwd()) or UNKNOWN_HASH
    date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return f"{PACKAGE_VERSION} ({commit} {date})"