"""The documentation builder's cache, lock file and build queue."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Callable, NamedTuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cratesfyi.db import connect_db
from cratesfyi.errors import CratesfyiError
from cratesfyi.options import DocBuilderOptions

log = logging.getLogger(__name__)

INDEX_URL = "https://github.com/rust-lang/crates.io-index"
LAST_SEEN_REF = "refs/heads/crates-index-diff_last-seen"
_EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
MAX_ATTEMPTS = 5


class IndexChange(NamedTuple):
    """A crate version that appeared in the index."""

    name: str
    version: str
    yanked: bool = False


def _git(directory, *args: str) -> str:
    command = ["git"]
    if directory is not None:
        command += ["-C", str(directory)]
    command += list(args)
    try:
        completed = subprocess.run(command, capture_output=True, text=True)
    except OSError as exc:
        raise CratesfyiError(f"failed to run git: {exc}") from exc
    if completed.returncode != 0:
        raise CratesfyiError(completed.stderr.strip() or f"git {' '.join(args)} failed")
    return completed.stdout


def _parse_added_lines(diff: str):
    for line in diff.splitlines():
        if not line.startswith("+") or line.startswith("+++"):
            continue
        try:
            data = json.loads(line[1:])
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        name, version = data.get("name"), data.get("vers")
        if isinstance(name, str) and isinstance(version, str):
            yield IndexChange(name, version, data.get("yanked") is True)


def fetch_index_changes(index_path) -> list[IndexChange]:
    """Update the index checkout and return the versions added since the last call."""
    path = Path(index_path)
    if not (path / ".git").exists():
        _git(None, "clone", INDEX_URL, str(path))
    _git(path, "fetch", "origin")
    new_head = _git(path, "rev-parse", "origin/master").strip()
    try:
        last_seen = _git(path, "rev-parse", "--verify", "--quiet", LAST_SEEN_REF).strip()
    except CratesfyiError:
        last_seen = _EMPTY_TREE
    diff = _git(path, "diff", "--unified=0", "--no-color", last_seen, new_head)
    changes = list(_parse_added_lines(diff))
    _git(path, "update-ref", LAST_SEEN_REF, new_head)
    return changes


def add_crate_to_queue(conn, name: str, version: str, priority: int) -> None:
    """Put a crate version into the build queue."""
    try:
        conn.execute(
            text(
                "INSERT INTO queue (name, version, priority) "
                "VALUES (:name, :version, :priority)"
            ),
            {"name": name, "version": version, "priority": priority},
        )
        conn.commit()
    except SQLAlchemyError as exc:
        conn.rollback()
        raise CratesfyiError(f"could not add {name}-{version} to the queue: {exc}") from exc


class DocBuilder:
    """Keeps track of what has been built and works through the build queue."""

    def __init__(
        self,
        options: DocBuilderOptions,
        connect: Callable | None = None,
        fetch_changes: Callable | None = None,
    ):
        self.options = options
        self.cache: set[str] = set()
        self.db_cache: set[str] = set()
        self._connect = connect or connect_db
        self._fetch_changes = fetch_changes or fetch_index_changes

    @property
    def _cache_path(self) -> Path:
        return Path(self.options.prefix) / "cache"

    @property
    def _lock_path(self) -> Path:
        return Path(self.options.prefix) / "cratesfyi.lock"

    def load_cache(self) -> None:
        """Load the local build cache and the list of releases in the database."""
        log.debug("Loading cache")
        try:
            content = self._cache_path.read_text(encoding="utf-8")
        except OSError:
            return
        self.cache.update(content.splitlines())
        self._load_database_cache()

    def _load_database_cache(self) -> None:
        log.debug("Loading database cache")
        with self._connect() as conn:
            rows = conn.execute(
                text(
                    "SELECT name, version FROM crates, releases "
                    "WHERE crates.id = releases.crate_id"
                )
            )
            self.db_cache.update(f"{name}-{version}" for name, version in rows)

    def save_cache(self) -> None:
        """Write the local build cache, one entry per line."""
        log.debug("Saving cache")
        with open(self._cache_path, "w", encoding="utf-8") as handle:
            handle.writelines(f"{entry}\n" for entry in sorted(self.cache))

    def lock(self) -> None:
        """Create the lock file that stops the daemon from building."""
        self._lock_path.touch(exist_ok=True)

    def unlock(self) -> None:
        """Remove the lock file."""
        self._lock_path.unlink(missing_ok=True)

    def is_locked(self) -> bool:
        """Whether the lock file exists."""
        return self._lock_path.exists()

    def add_to_cache(self, name: str, version: str) -> None:
        """Remember that a crate version was built."""
        self.cache.add(f"{name}-{version}")

    def should_build(self, name: str, version: str) -> bool:
        """Whether a crate version still needs building under the skip options."""
        key = f"{name}-{version}"
        local = self.options.skip_if_log_exists and key in self.cache
        in_db = self.options.skip_if_exists and key in self.db_cache
        return not (local or in_db)

    def get_new_crates(self) -> int:
        """Queue the crate versions new in the index; return how many were seen."""
        changes = list(self._fetch_changes(self.options.crates_io_index_path))
        changes.reverse()
        added = 0
        with self._connect() as conn:
            for change in changes:
                if change.yanked:
                    continue
                try:
                    add_crate_to_queue(conn, change.name, change.version, 0)
                except CratesfyiError as exc:
                    log.debug("%s", exc)
                log.debug("%s-%s added into build queue", change.name, change.version)
                added += 1
        return added

    def get_queue_count(self) -> int:
        """Number of queued crates that have attempts left."""
        with self._connect() as conn:
            return int(
                conn.execute(
                    text("SELECT COUNT(*) FROM queue WHERE attempt < :max"),
                    {"max": MAX_ATTEMPTS},
                ).scalar()
            )

    def build_next_queue_package(self, builder) -> bool:
        """Build the first crate of the queue; return ``False`` if the queue was empty."""
        with self._connect() as conn:
            row = conn.execute(
                text(
                    "SELECT id, name, version FROM queue WHERE attempt < :max "
                    "ORDER BY priority ASC, attempt ASC, id ASC LIMIT 1"
                ),
                {"max": MAX_ATTEMPTS},
            ).first()
            conn.commit()
            if row is None:
                return False
            queue_id, name, version = row

            try:
                builder.build_package(self, name, version)
            except Exception as exc:
                conn.execute(
                    text("UPDATE queue SET attempt = attempt + 1 WHERE id = :id"),
                    {"id": queue_id},
                )
                log.error("Failed to build package %s-%s from queue: %s", name, version, exc)
            else:
                conn.execute(text("DELETE FROM queue WHERE id = :id"), {"id": queue_id})
            conn.commit()
        return True