"""Copying documentation directories."""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path

_DUPLICATE_RE = re.compile(
    r"(\.lock|\.txt|\.woff|\.svg|\.css|main-.*\.css|main-.*\.js|normalize-.*\.js"
    r"|rustdoc-.*\.css|storage-.*\.js|theme-.*\.js)$"
)


def copy_dir(source, destination) -> None:
    """Copy everything below ``source`` into ``destination``."""
    _copy_files(Path(source), Path(destination), handle_html=False)


def copy_doc_dir(target, destination, rustc_version: str) -> None:
    """Copy ``target/doc`` into ``destination``, leaving out shared rustdoc files."""
    _copy_files(Path(target) / "doc", Path(destination), handle_html=True)


def _copy_files(source: Path, destination: Path, handle_html: bool) -> None:
    destination.mkdir(parents=True, exist_ok=True)
    with os.scandir(source) as entries:
        for entry in entries:
            dest_path = destination / entry.name
            if entry.is_dir():
                dest_path.mkdir(parents=True, exist_ok=True)
                _copy_files(Path(entry.path), dest_path, handle_html)
            elif handle_html and _DUPLICATE_RE.search(entry.name):
                continue
            else:
                shutil.copy(entry.path, dest_path)