"""Storing generated files in the database and reading them back."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from sqlalchemy import text

from cratesfyi.errors import CratesfyiError

log = logging.getLogger(__name__)


def get_file_list(path) -> list[Path]:
    """List the files under ``path`` relative to it; a file lists its own name."""
    path = Path(path)
    if not path.exists():
        raise CratesfyiError("File not found")
    if path.is_file():
        return [Path(path.name)]
    if path.is_dir():
        return sorted(p.relative_to(path) for p in path.rglob("*") if p.is_file())
    return []


@dataclass
class Blob:
    """A stored file."""

    path: str
    mime: str
    date_updated: object
    content: bytes


def get_path(conn, path: str) -> Blob | None:
    """Fetch the stored file at ``path``, or ``None`` if there is none."""
    row = conn.execute(
        text("SELECT path, mime, date_updated, content FROM files WHERE path = :path"),
        {"path": path},
    ).first()
    if row is None:
        return None
    return Blob(path=row[0], mime=row[1], date_updated=row[2], content=bytes(row[3] or b""))


def _looks_like_text(content: bytes) -> bool:
    if b"\x00" in content:
        return False
    try:
        content.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def guess_mime(file_path, content: bytes) -> str:
    """Pick the MIME type stored for a file from its name and content."""
    suffix = Path(file_path).suffix
    if suffix == ".css":
        return "text/css"
    if suffix == ".js":
        return "application/javascript"
    guessed, _ = mimetypes.guess_type(Path(file_path).name)
    if guessed:
        return guessed
    if not content:
        return "application/x-empty"
    return "text/plain" if _looks_like_text(content) else "application/octet-stream"


def add_path_into_database(conn, prefix: str, path) -> list[list[str]]:
    """Store every file under ``path`` below ``prefix``; return ``[mime, path]`` pairs."""
    root = Path(path)
    stored: list[list[str]] = []
    try:
        for file_path in get_file_list(root):
            try:
                content = (root / file_path).read_bytes()
            except OSError:
                # Files we may not read (such as cargo's lock files) are skipped.
                continue
            storage_path = str(PurePosixPath(prefix, *file_path.parts))
            mime = guess_mime(file_path, content)
            stored.append([mime, file_path.as_posix()])

            exists = conn.execute(
                text("SELECT COUNT(*) FROM files WHERE path = :path"), {"path": storage_path}
            ).scalar()
            params = {"path": storage_path, "mime": mime, "content": content}
            if exists:
                conn.execute(
                    text(
                        "UPDATE files SET mime = :mime, content = :content, "
                        "date_updated = CURRENT_TIMESTAMP WHERE path = :path"
                    ),
                    params,
                )
            else:
                conn.execute(
                    text("INSERT INTO files (path, mime, content) VALUES (:path, :mime, :content)"),
                    params,
                )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return stored