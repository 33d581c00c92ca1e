"""Building crate documentation with a Rust toolchain."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable

import requests
from sqlalchemy import text

from cratesfyi.add_package import (
    BuildResult,
    add_build_into_database,
    add_package_into_database,
)
from cratesfyi.cargo_metadata import CargoMetadata
from cratesfyi.copy import copy_doc_dir
from cratesfyi.crates import crates_from_path
from cratesfyi.db import connect_db
from cratesfyi.errors import CratesfyiError
from cratesfyi.files import add_path_into_database
from cratesfyi.limits import Limits
from cratesfyi.metadata import Metadata
from cratesfyi.rustc_version import parse_rustc_version
from cratesfyi.version import build_version

log = logging.getLogger(__name__)

USER_AGENT = "docs.rs builder"
DEFAULT_RUSTWIDE_WORKSPACE = ".rustwide"
DEFAULT_TOOLCHAIN = "nightly"
CRATE_DOWNLOAD_URL = "https://crates.io/api/v1/crates/{name}/{version}/download"

TARGETS = (
    "i686-apple-darwin",
    "i686-pc-windows-msvc",
    "i686-unknown-linux-gnu",
    "x86_64-apple-darwin",
    "x86_64-pc-windows-msvc",
    "x86_64-unknown-linux-gnu",
)
DEFAULT_TARGET = "x86_64-unknown-linux-gnu"

ESSENTIAL_FILES_VERSIONED = (
    "brush.svg",
    "wheel.svg",
    "down-arrow.svg",
    "dark.css",
    "light.css",
    "main.js",
    "normalize.css",
    "rustdoc.css",
    "settings.css",
    "settings.js",
    "storage.js",
    "theme.js",
    "source-script.js",
    "noscript.css",
    "rust-logo.png",
)
ESSENTIAL_FILES_UNVERSIONED = (
    "FiraSans-Medium.woff",
    "FiraSans-Regular.woff",
    "SourceCodePro-Regular.woff",
    "SourceCodePro-Semibold.woff",
    "SourceSerifPro-Bold.ttf.woff",
    "SourceSerifPro-Regular.ttf.woff",
    "SourceSerifPro-It.ttf.woff",
)

DUMMY_CRATE_NAME = "acme-client"
DUMMY_CRATE_VERSION = "0.0.0"


def essential_file_names(rustc_version: str) -> list[str]:
    """Names of the shared rustdoc files, the versioned ones suffixed with ``rustc_version``."""
    versioned = [
        f"{stem}-{rustc_version}.{extension}"
        for stem, _, extension in (name.rpartition(".") for name in ESSENTIAL_FILES_VERSIONED)
    ]
    return versioned + list(ESSENTIAL_FILES_UNVERSIONED)


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _limit_log(output: str, max_size: int) -> str:
    encoded = output.encode("utf-8")
    if len(encoded) <= max_size:
        return output
    kept = encoded[:max_size].decode("utf-8", errors="ignore")
    return f"{kept}\n[output truncated: the log exceeded {max_size} bytes]\n"


def _purge(directory: Path) -> None:
    shutil.rmtree(directory, ignore_errors=True)


def _extract_crate(archive: Path, dest: Path) -> None:
    """Unpack a ``.crate`` archive, dropping its top-level directory."""
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, "r:gz") as tar:
            for member in tar:
                parts = PurePosixPath(member.name).parts
                if len(parts) < 2 or member.name.startswith("/") or ".." in parts:
                    continue
                path = dest.joinpath(*parts[1:])
                if member.isdir():
                    path.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    path.parent.mkdir(parents=True, exist_ok=True)
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    with source, open(path, "wb") as out:
                        shutil.copyfileobj(source, out)
    except (tarfile.TarError, OSError) as exc:
        raise CratesfyiError(f"failed to unpack {archive}: {exc}") from exc


@dataclass
class RustwideBuilder:
    """Fetches crates and builds their documentation in a workspace directory."""

    workspace: Path
    toolchain: str = DEFAULT_TOOLCHAIN
    rustc_version: str = ""
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run
    connect: Callable = connect_db

    def __post_init__(self) -> None:
        self.workspace = Path(self.workspace)

    @classmethod
    def init(cls) -> RustwideBuilder:
        """A builder configured from the environment, with stale build directories removed."""
        workspace = Path(
            os.environ.get("CRATESFYI_RUSTWIDE_WORKSPACE", DEFAULT_RUSTWIDE_WORKSPACE)
        )
        builder = cls(workspace, os.environ.get("CRATESFYI_TOOLCHAIN", DEFAULT_TOOLCHAIN))
        builder._purge_all_build_dirs()
        builder._cache_dir.mkdir(parents=True, exist_ok=True)
        return builder

    @property
    def _builds_dir(self) -> Path:
        return self.workspace / "builds"

    @property
    def _cache_dir(self) -> Path:
        return self.workspace / "cache" / "crates"

    def _purge_all_build_dirs(self) -> None:
        _purge(self._builds_dir)
        self._builds_dir.mkdir(parents=True, exist_ok=True)

    def _build_dir(self, name: str) -> Path:
        return self._builds_dir / name

    def _tool(self, tool: str, *args: str) -> list[str]:
        return ["rustup", "run", self.toolchain, tool, *args]

    def _run(self, command, *, cwd=None, env=None, timeout=None, merge_output=False):
        try:
            return self.runner(
                command,
                cwd=cwd,
                env=env,
                timeout=timeout,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise CratesfyiError(f"failed to run `{' '.join(command)}`: {exc}") from exc

    def _checked(self, command, **kwargs) -> subprocess.CompletedProcess:
        completed = self._run(command, **kwargs)
        if completed.returncode != 0:
            output = _as_text(completed.stderr) or _as_text(completed.stdout)
            raise CratesfyiError(f"`{' '.join(command)}` failed: {output.strip()}")
        return completed

    def update_toolchain(self) -> None:
        """Install the toolchain and its targets; refresh essential files on a new rustc."""
        try:
            old_version = self.detect_rustc_version()
        except CratesfyiError:
            old_version = None

        self._checked(["rustup", "toolchain", "install", self.toolchain])
        for target in TARGETS:
            self._checked(["rustup", "target", "add", "--toolchain", self.toolchain, target])
        self.rustc_version = self.detect_rustc_version()

        if old_version != self.rustc_version:
            self.add_essential_files()

    def detect_rustc_version(self) -> str:
        """The single line printed by the toolchain's ``rustc --version``."""
        log.info("detecting rustc's version...")
        completed = self._checked(self._tool("rustc", "--version"))
        lines = _as_text(completed.stdout).splitlines()
        if len(lines) != 1:
            raise CratesfyiError("invalid output returned by `rustc --version`")
        log.info("found rustc %s", lines[0])
        return lines[0]

    def _fetch_crate(self, name: str, version: str, dest: Path) -> None:
        archive = self._cache_dir / f"{name}-{version}.crate"
        if not archive.is_file():
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            url = CRATE_DOWNLOAD_URL.format(name=name, version=version)
            try:
                response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=60)
                response.raise_for_status()
            except requests.RequestException as exc:
                raise CratesfyiError(f"failed to download {name} {version}: {exc}") from exc
            archive.write_bytes(response.content)
        _extract_crate(archive, dest)

    def _purge_from_cache(self, name: str, version: str) -> None:
        (self._cache_dir / f"{name}-{version}.crate").unlink(missing_ok=True)

    def _prepare(self, build_dir: Path, name: str, version: str) -> tuple[Path, Path]:
        _purge(build_dir)
        source_dir = build_dir / "source"
        target_dir = build_dir / "target"
        target_dir.mkdir(parents=True, exist_ok=True)
        self._fetch_crate(name, version, source_dir)
        return source_dir, target_dir

    def add_essential_files(self) -> None:
        """Build a dummy crate and store the shared rustdoc files of this rustc."""
        self.rustc_version = self.detect_rustc_version()
        rustc_version = parse_rustc_version(self.rustc_version)

        log.info("building a dummy crate to get essential files")
        build_dir = self._build_dir(f"essential-files-{rustc_version}")
        with self.connect() as conn:
            limits = Limits.for_crate(conn, DUMMY_CRATE_NAME)
            try:
                source_dir, target_dir = self._prepare(
                    build_dir, DUMMY_CRATE_NAME, DUMMY_CRATE_VERSION
                )
                res = self.execute_build(None, source_dir, target_dir, limits)
                if not res.successful:
                    raise CratesfyiError(
                        f"failed to build dummy crate for {self.rustc_version}"
                    )

                log.info("copying essential files for %s", self.rustc_version)
                source = target_dir / res.target / "doc"
                with tempfile.TemporaryDirectory(prefix="essential-files") as dest:
                    for file_name in essential_file_names(rustc_version):
                        source_path = source / file_name
                        dest_path = Path(dest) / file_name
                        try:
                            shutil.copyfile(source_path, dest_path)
                        except OSError as exc:
                            raise CratesfyiError(
                                f"couldn't copy '{source_path}' to '{dest_path}'"
                            ) from exc
                    add_path_into_database(conn, "", dest)

                conn.execute(
                    text(
                        "INSERT INTO config (name, value) VALUES ('rustc_version', :value) "
                        "ON CONFLICT (name) DO UPDATE SET value = :value"
                    ),
                    {"value": json.dumps(self.rustc_version)},
                )
                conn.commit()
            finally:
                _purge(build_dir)
                self._purge_from_cache(DUMMY_CRATE_NAME, DUMMY_CRATE_VERSION)

    def build_world(self, doc_builder) -> None:
        """Build every crate version listed in the crates.io index."""
        count = 0
        for name, version in crates_from_path(doc_builder.options.crates_io_index_path):
            try:
                status = self.build_package(doc_builder, name, version)
            except Exception as err:  # one failed crate must not stop the run
                log.warning("failed to build package %s %s: %s", name, version, err)
            else:
                count += 1
                if status and count % 10 == 0:
                    try:
                        doc_builder.save_cache()
                    except OSError as err:
                        log.warning("failed to save cache: %s", err)
            doc_builder.add_to_cache(name, version)

    def build_package(self, doc_builder, name: str, version: str) -> bool:
        """Build and store the documentation of one crate version.

        Returns ``False`` when the version is skipped, otherwise whether the build succeeded.
        """
        if not doc_builder.should_build(name, version):
            return False

        self.update_toolchain()
        log.info("building package %s %s", name, version)

        build_dir = self._build_dir(f"{name}-{version}")
        with self.connect() as conn:
            limits = Limits.for_crate(conn, name)
            try:
                source_dir, target_dir = self._prepare(build_dir, name, version)
                files_list = None
                has_docs = False
                successful_targets: list[str] = []

                res = self.execute_build(None, source_dir, target_dir, limits)
                if res.successful:
                    log.debug("adding sources into database")
                    files_list = add_path_into_database(
                        conn, f"sources/{name}/{version}", source_dir
                    )
                    has_docs = (
                        target_dir / res.target / "doc" / name.replace("-", "_")
                    ).is_dir()

                if has_docs:
                    log.debug("adding documentation for the default target to the database")
                    self._copy_docs(doc_builder, target_dir, name, version, res.target, True)

                    for target in TARGETS:
                        log.debug("building package %s %s for %s", name, version, target)
                        target_res = self.execute_build(target, source_dir, target_dir, limits)
                        # cargo may succeed without producing documentation for a target
                        if target_res.successful and (target_dir / target / "doc").is_dir():
                            log.debug("adding documentation for target %s to the database",
                                      target)
                            self._copy_docs(doc_builder, target_dir, name, version, target,
                                            False)
                            successful_targets.append(target)

                    self._upload_docs(doc_builder, conn, name, version)

                has_examples = (source_dir / "examples").is_dir()
                release_id = add_package_into_database(
                    conn,
                    res.cargo_metadata.root(),
                    source_dir,
                    res,
                    files_list,
                    successful_targets,
                    has_docs,
                    has_examples,
                )
                add_build_into_database(conn, release_id, res)
                doc_builder.add_to_cache(name, version)
            finally:
                _purge(build_dir)
                self._purge_from_cache(name, version)
        return res.successful

    def _load_cargo_metadata(self, source_dir: Path) -> CargoMetadata:
        completed = self._checked(
            self._tool("cargo", "metadata", "--format-version", "1"), cwd=source_dir
        )
        lines = _as_text(completed.stdout).splitlines()
        if len(lines) != 1:
            raise CratesfyiError("invalid output returned by `cargo metadata`")
        return CargoMetadata.from_json(lines[0])

    def execute_build(self, target, source_dir, target_dir, limits: Limits) -> BuildResult:
        """Run ``cargo doc`` for one target and capture its log.

        The timeout and the log size limit are enforced; the build runs with the
        permissions of the current process.
        """
        source_dir = Path(source_dir)
        metadata = Metadata.from_source_dir(source_dir)
        cargo_metadata = self._load_cargo_metadata(source_dir)

        target = target or metadata.default_target or DEFAULT_TARGET

        rustdoc_flags = [
            "-Z",
            "unstable-options",
            "--resource-suffix",
            f"-{parse_rustc_version(self.rustc_version)}",
            "--static-root-path",
            "/",
            "--disable-per-crate-search",
        ]
        for dep in cargo_metadata.root_dependencies():
            rustdoc_flags += [
                "--extern-html-root-url",
                f"{dep.name.replace('-', '_')}=https://docs.rs/{dep.name}/{dep.version}",
            ]
        if metadata.rustdoc_args is not None:
            rustdoc_flags += metadata.rustdoc_args

        cargo_args = ["doc", "--lib", "--no-deps", "--target", target]
        if metadata.features is not None:
            cargo_args += ["--features", " ".join(metadata.features)]
        if metadata.all_features:
            cargo_args.append("--all-features")
        if metadata.no_default_features:
            cargo_args.append("--no-default-features")

        env = {
            **os.environ,
            "RUSTFLAGS": " ".join(metadata.rustc_args or []),
            "RUSTDOCFLAGS": " ".join(rustdoc_flags),
            "CARGO_TARGET_DIR": str(target_dir),
        }
        try:
            completed = self._run(
                self._tool("cargo", *cargo_args),
                cwd=source_dir,
                env=env,
                timeout=limits.timeout.total_seconds(),
                merge_output=True,
            )
            output = _as_text(completed.stdout)
            successful = completed.returncode == 0
        except subprocess.TimeoutExpired as exc:
            output = _as_text(exc.output) + f"\nbuild timed out after {limits.timeout}\n"
            successful = False
        except CratesfyiError as exc:
            output = f"{exc}\n"
            successful = False

        return BuildResult(
            rustc_version=self.rustc_version,
            docsrs_version=f"docsrs {build_version()}",
            build_log=_limit_log(output, limits.max_log_size),
            successful=successful,
            target=target,
            cargo_metadata=cargo_metadata,
        )

    def _copy_docs(self, doc_builder, target_dir: Path, name: str, version: str,
                   target: str, is_default_target: bool) -> None:
        source = Path(target_dir) / target
        dest = Path(doc_builder.options.destination) / name / version
        # The default target's documentation lives at the root of the version directory.
        if not is_default_target:
            dest = dest / target
        log.info("%s %s", source, dest)
        copy_doc_dir(source, dest, self.rustc_version.strip())

    def _upload_docs(self, doc_builder, conn, name: str, version: str) -> None:
        log.debug("Adding documentation into database")
        add_path_into_database(
            conn,
            f"rustdoc/{name}/{version}",
            Path(doc_builder.options.destination) / name / version,
        )