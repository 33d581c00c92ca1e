"""Options of the documentation builder."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cratesfyi.errors import CratesfyiError


def _generate_paths(prefix: Path) -> tuple[Path, Path, Path]:
    return prefix, prefix / "documentations", prefix / "crates.io-index"


@dataclass(repr=False)
class DocBuilderOptions:
    """Paths and switches that control how documentation is built."""

    prefix: Path
    destination: Path
    crates_io_index_path: Path
    keep_build_directory: bool = False
    skip_if_exists: bool = False
    skip_if_log_exists: bool = False
    skip_oldest_versions: bool = False
    build_only_latest_version: bool = False
    debug: bool = False

    @classmethod
    def default(cls) -> DocBuilderOptions:
        """Options rooted at the current working directory."""
        return cls.from_prefix(Path.cwd())

    @classmethod
    def from_prefix(cls, prefix) -> DocBuilderOptions:
        """Options whose paths all live below ``prefix``."""
        return cls(*_generate_paths(Path(prefix)))

    def check_paths(self) -> None:
        """Raise if the destination or the index directory is missing."""
        if not self.destination.exists():
            raise CratesfyiError(f"destination path '{self.destination}' does not exist")
        if not self.crates_io_index_path.exists():
            raise CratesfyiError(
                f"crates.io-index path '{self.crates_io_index_path}' does not exist"
            )

    def __repr__(self) -> str:
        def flag(value: bool) -> str:
            return str(value).lower()

        return (
            f'DocBuilderOptions {{ destination: "{self.destination}", '
            f'crates_io_index_path: "{self.crates_io_index_path}", '
            f"keep_build_directory: {flag(self.keep_build_directory)}, "
            f"skip_if_exists: {flag(self.skip_if_exists)}, "
            f"skip_if_log_exists: {flag(self.skip_if_log_exists)}, "
            f"debug: {flag(self.debug)} }}"
        )