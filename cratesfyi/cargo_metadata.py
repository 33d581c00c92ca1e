"""Package metadata reported by ``cargo metadata``."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field

from cratesfyi.errors import CratesfyiError


def _required(obj: dict, key: str, kind: type):
    value = obj.get(key)
    if not isinstance(value, kind) or isinstance(value, bool) and kind is not bool:
        raise CratesfyiError(f"missing or invalid field `{key}` in cargo metadata")
    return value


def _optional_str(obj: dict, key: str) -> str | None:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise CratesfyiError(f"invalid field `{key}` in cargo metadata")
    return value


def _string_list(obj: dict, key: str) -> list[str]:
    values = _required(obj, key, list)
    if not all(isinstance(v, str) for v in values):
        raise CratesfyiError(f"invalid field `{key}` in cargo metadata")
    return list(values)


def _objects(obj: dict, key: str) -> list[dict]:
    values = _required(obj, key, list)
    if not all(isinstance(v, dict) for v in values):
        raise CratesfyiError(f"invalid field `{key}` in cargo metadata")
    return values


@dataclass
class Target:
    """A build target of a package."""

    name: str
    kind: list[str]
    src_path: str | None = None

    @classmethod
    def _from_json(cls, obj: dict) -> Target:
        return cls(
            name=_required(obj, "name", str),
            kind=_string_list(obj, "kind"),
            src_path=_optional_str(obj, "src_path"),
        )


@dataclass
class Dependency:
    """A dependency declared by a package."""

    name: str
    req: str
    kind: str | None = None

    @classmethod
    def _from_json(cls, obj: dict) -> Dependency:
        return cls(
            name=_required(obj, "name", str),
            req=_required(obj, "req", str),
            kind=_optional_str(obj, "kind"),
        )


@dataclass
class Package:
    """One package of the dependency graph."""

    id: str
    name: str
    version: str
    license: str | None = None
    repository: str | None = None
    homepage: str | None = None
    description: str | None = None
    documentation: str | None = None
    dependencies: list[Dependency] = field(default_factory=list)
    targets: list[Target] = field(default_factory=list)
    readme: str | None = None
    keywords: list[str] = field(default_factory=list)
    authors: list[str] = field(default_factory=list)

    @classmethod
    def _from_json(cls, obj: dict) -> Package:
        return cls(
            id=_required(obj, "id", str),
            name=_required(obj, "name", str),
            version=_required(obj, "version", str),
            license=_optional_str(obj, "license"),
            repository=_optional_str(obj, "repository"),
            homepage=_optional_str(obj, "homepage"),
            description=_optional_str(obj, "description"),
            documentation=_optional_str(obj, "documentation"),
            dependencies=[Dependency._from_json(d) for d in _objects(obj, "dependencies")],
            targets=[Target._from_json(t) for t in _objects(obj, "targets")],
            readme=_optional_str(obj, "readme"),
            keywords=_string_list(obj, "keywords"),
            authors=_string_list(obj, "authors"),
        )


@dataclass
class CargoMetadata:
    """Packages of a crate's build and the resolved dependency graph."""

    packages: dict[str, Package]
    deps_graph: dict[str, frozenset[str]]
    root_id: str

    @classmethod
    def from_json(cls, serialized: str) -> CargoMetadata:
        """Decode the JSON printed by ``cargo metadata --format-version 1``."""
        try:
            data = json.loads(serialized)
        except ValueError as exc:
            raise CratesfyiError(f"invalid cargo metadata: {exc}") from exc
        if not isinstance(data, dict):
            raise CratesfyiError("cargo metadata is not a JSON object")

        packages = [Package._from_json(p) for p in _objects(data, "packages")]
        resolve = _required(data, "resolve", dict)
        deps_graph = {
            _required(node, "id", str): frozenset(
                _required(dep, "pkg", str) for dep in _objects(node, "deps")
            )
            for node in _objects(resolve, "nodes")
        }
        return cls(
            packages={package.id: package for package in packages},
            deps_graph=deps_graph,
            root_id=_required(resolve, "root", str),
        )

    @classmethod
    def load(cls, source_dir, cargo="cargo") -> CargoMetadata:
        """Run ``cargo metadata`` in ``source_dir`` and decode its output."""
        try:
            completed = subprocess.run(
                [str(cargo), "metadata", "--format-version", "1"],
                cwd=source_dir,
                capture_output=True,
            )
        except OSError as exc:
            raise CratesfyiError(f"failed to run `cargo metadata`: {exc}") from exc
        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace")
            raise CratesfyiError(f"`cargo metadata` failed: {stderr}")
        lines = completed.stdout.decode("utf-8", errors="replace").splitlines()
        if len(lines) != 1:
            raise CratesfyiError("invalid output returned by `cargo metadata`")
        return cls.from_json(lines[0])

    def root_dependencies(self) -> list[Package]:
        """The packages the root package depends on directly."""
        try:
            ids = self.deps_graph[self.root_id]
        except KeyError:
            raise CratesfyiError(f"root package `{self.root_id}` is not resolved") from None
        return [package for package_id, package in self.packages.items() if package_id in ids]

    def root(self) -> Package:
        """The package whose documentation is built."""
        try:
            return self.packages[self.root_id]
        except KeyError:
            raise CratesfyiError(f"root package `{self.root_id}` not found") from None