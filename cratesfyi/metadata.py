"""Build metadata read from the ``[package.metadata.docs.rs]`` manifest table."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

from cratesfyi.errors import CratesfyiError

_MANIFEST_NAMES = ("Cargo.toml.orig", "Cargo.toml")


def _string_list(value) -> list[str] | None:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return list(value)


def _table(value, key):
    if isinstance(value, dict):
        nested = value.get(key)
        if isinstance(nested, dict):
            return nested
    return None


@dataclass
class Metadata:
    """Customisations a crate declares for its documentation build."""

    features: list[str] | None = None
    all_features: bool = False
    no_default_features: bool = False
    default_target: str | None = None
    rustc_args: list[str] | None = None
    rustdoc_args: list[str] | None = None
    dependencies: list[str] | None = None

    @classmethod
    def from_source_dir(cls, source_dir) -> Metadata:
        """Read the manifest of a crate's source directory."""
        source_dir = Path(source_dir)
        for name in _MANIFEST_NAMES:
            manifest_path = source_dir / name
            if manifest_path.exists():
                return cls.from_manifest(manifest_path)
        raise CratesfyiError("Manifest not found")

    @classmethod
    def from_manifest(cls, path) -> Metadata:
        """Read a manifest file; unreadable files give the defaults."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return cls()
        return cls.from_str(text)

    @classmethod
    def from_str(cls, manifest: str) -> Metadata:
        """Parse manifest text; invalid TOML gives the defaults."""
        metadata = cls()
        try:
            parsed = tomllib.loads(manifest)
        except tomllib.TOMLDecodeError:
            return metadata

        table = parsed
        for key in ("package", "metadata", "docs", "rs"):
            table = _table(table, key)
            if table is None:
                return metadata

        metadata.features = _string_list(table.get("features"))
        no_default = table.get("no-default-features")
        if isinstance(no_default, bool):
            metadata.no_default_features = no_default
        all_features = table.get("all-features")
        if isinstance(all_features, bool):
            metadata.all_features = all_features
        default_target = table.get("default-target")
        metadata.default_target = default_target if isinstance(default_target, str) else None
        metadata.rustc_args = _string_list(table.get("rustc-args"))
        metadata.rustdoc_args = _string_list(table.get("rustdoc-args"))
        metadata.dependencies = _string_list(table.get("dependencies"))
        return metadata