"""Recording built packages and builds in the database."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import requests
import semver
from slugify import slugify
from sqlalchemy import text

from cratesfyi.cargo_metadata import CargoMetadata, Package
from cratesfyi.errors import CratesfyiError
from cratesfyi.metadata import Metadata

log = logging.getLogger(__name__)

CRATES_IO_API = "https://crates.io/api/v1/crates"
MAX_TEXT_LENGTH = 51200
_AUTHOR_RE = re.compile(r"([^><]+)<*(.*?)>*")
_LIBRARY_KINDS = (["lib"], ["proc-macro"])


@dataclass
class BuildResult:
    """Outcome of one documentation build."""

    rustc_version: str
    docsrs_version: str
    build_log: str
    successful: bool
    target: str = ""
    cargo_metadata: CargoMetadata | None = None


def _get_json(url: str):
    try:
        response = requests.get(url, headers={"Accept": "application/json"}, timeout=30)
        return response.json()
    except (requests.RequestException, ValueError) as exc:
        raise CratesfyiError(f"failed to fetch {url}: {exc}") from exc


def _find_or_create(conn, select_sql: str, key: dict, insert_sql: str, values: dict) -> int:
    existing = conn.execute(text(select_sql), key).scalar()
    if existing is not None:
        return int(existing)
    return int(conn.execute(text(insert_sql), values).scalar_one())


def _link(conn, table: str, **ids) -> None:
    condition = " AND ".join(f"{column} = :{column}" for column in ids)
    if conn.execute(text(f"SELECT COUNT(*) FROM {table} WHERE {condition}"), ids).scalar():
        return
    columns = ", ".join(ids)
    placeholders = ", ".join(f":{column}" for column in ids)
    conn.execute(text(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"), ids)


def _parse_version(version: str) -> semver.Version:
    try:
        return semver.Version.parse(version)
    except (ValueError, TypeError) as exc:
        raise CratesfyiError(f"invalid version {version!r}") from exc


def _limited(content: str, what: str) -> str | None:
    size = len(content.encode("utf-8"))
    if not content:
        return None
    if size > MAX_TEXT_LENGTH:
        return f"({what} ignored due to being too long. ({size} > {MAX_TEXT_LENGTH}))"
    return content


def convert_dependencies(pkg: Package) -> list[list[str]]:
    """Dependencies as ``[name, requirement, kind]`` triples."""
    return [[dep.name, dep.req, dep.kind or "normal"] for dep in pkg.dependencies]


def get_readme(pkg: Package, source_dir) -> str | None:
    """The package's readme, if it has one."""
    readme_path = Path(source_dir) / (pkg.readme or "README.md")
    if not readme_path.exists():
        return None
    return _limited(readme_path.read_text(encoding="utf-8"), "Readme")


def read_rust_doc(file_path) -> str | None:
    """The ``//!`` doc comment lines of a source file."""
    parts: list[str] = []
    with open(file_path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\n")
            if not line.startswith("//!"):
                continue
            while line.startswith("//!"):
                line = line[3:]
            line = line.lstrip()
            if line:
                parts.append(line)
            parts.append("\n")
    return _limited("".join(parts), "Library doc comment")


def get_rustdoc(pkg: Package, source_dir) -> str | None:
    """The crate-level doc comment of the package's first target."""
    src_path = pkg.targets[0].src_path
    if src_path is None:
        return None
    path = Path(src_path)
    if not path.is_absolute():
        path = Path(source_dir) / path
    return read_rust_doc(path)


def parse_author(author: str) -> tuple[str, str] | None:
    """Split ``Name <email>`` into its name and e-mail address."""
    match = _AUTHOR_RE.fullmatch(author)
    if match is None:
        return None
    return match.group(1).strip(), match.group(2).strip()


def get_release_time_yanked_downloads(pkg: Package):
    """Release time, yanked flag and download count of the version on crates.io."""
    data = _get_json(f"{CRATES_IO_API}/{pkg.name}/versions")
    versions = data.get("versions") if isinstance(data, dict) else None
    if not isinstance(versions, list):
        raise CratesfyiError("Not a JSON object")

    for version in versions:
        if not isinstance(version, dict):
            raise CratesfyiError("Not a JSON object")
        number = version.get("num")
        if not isinstance(number, str):
            raise CratesfyiError("Not a JSON object")
        if str(_parse_version(number)) != pkg.version:
            continue

        created_at = version.get("created_at")
        if not isinstance(created_at, str):
            raise CratesfyiError("Not a JSON object")
        try:
            release_time = datetime.strptime(created_at[:19], "%Y-%m-%dT%H:%M:%S")
        except ValueError as exc:
            raise CratesfyiError(f"invalid release time {created_at!r}") from exc
        yanked = version.get("yanked")
        if not isinstance(yanked, bool):
            raise CratesfyiError("Not a JSON object")
        downloads = version.get("downloads")
        if not isinstance(downloads, int) or isinstance(downloads, bool):
            raise CratesfyiError("Not a JSON object")
        return release_time, yanked, downloads

    return None, None, None


def _initialize_package(conn, pkg: Package) -> int:
    return _find_or_create(
        conn,
        "SELECT id FROM crates WHERE name = :name",
        {"name": pkg.name},
        "INSERT INTO crates (name) VALUES (:name) RETURNING id",
        {"name": pkg.name},
    )


def _add_keywords(conn, pkg: Package, release_id: int) -> None:
    for keyword in pkg.keywords:
        slug = slugify(keyword)
        keyword_id = _find_or_create(
            conn,
            "SELECT id FROM keywords WHERE slug = :slug",
            {"slug": slug},
            "INSERT INTO keywords (name, slug) VALUES (:name, :slug) RETURNING id",
            {"name": keyword, "slug": slug},
        )
        _link(conn, "keyword_rels", rid=release_id, kid=keyword_id)


def _add_authors(conn, pkg: Package, release_id: int) -> None:
    for author in pkg.authors:
        parsed = parse_author(author)
        if parsed is None:
            continue
        name, email = parsed
        slug = slugify(name)
        author_id = _find_or_create(
            conn,
            "SELECT id FROM authors WHERE slug = :slug",
            {"slug": slug},
            "INSERT INTO authors (name, email, slug) VALUES (:name, :email, :slug) RETURNING id",
            {"name": name, "email": email, "slug": slug},
        )
        _link(conn, "author_rels", rid=release_id, aid=author_id)


def _add_owners(conn, pkg: Package, crate_id: int) -> None:
    data = _get_json(f"{CRATES_IO_API}/{pkg.name}/owners")
    owners = data.get("users") if isinstance(data, dict) else None
    if not isinstance(owners, list):
        return
    for owner in owners:
        fields = owner if isinstance(owner, dict) else {}

        def field(key: str) -> str:
            value = fields.get(key)
            return value if isinstance(value, str) else ""

        login = field("login")
        if not login:
            continue
        owner_id = _find_or_create(
            conn,
            "SELECT id FROM owners WHERE login = :login",
            {"login": login},
            "INSERT INTO owners (login, avatar, name, email) "
            "VALUES (:login, :avatar, :name, :email) RETURNING id",
            {"login": login, "avatar": field("avatar"), "name": field("name"),
             "email": field("email")},
        )
        _link(conn, "owner_rels", cid=crate_id, oid=owner_id)


def _update_versions(conn, pkg: Package, crate_id: int) -> None:
    package_version = _parse_version(pkg.version)
    stored = conn.execute(
        text("SELECT versions FROM crates WHERE id = :id"), {"id": crate_id}
    ).scalar()
    versions = json.loads(stored) if isinstance(stored, (str, bytes)) else stored
    if isinstance(versions, list):
        if not any(_parse_version(v) == package_version for v in versions):
            versions.append(pkg.version)
    conn.execute(
        text("UPDATE crates SET versions = :versions WHERE id = :id"),
        {"versions": json.dumps(versions), "id": crate_id},
    )


def _optional_text(reader, pkg: Package, source_dir) -> str | None:
    try:
        return reader(pkg, source_dir)
    except (OSError, UnicodeDecodeError, CratesfyiError):
        return None


def add_package_into_database(
    conn, metadata_pkg: Package, source_dir, res: BuildResult, files, doc_targets,
    has_docs: bool, has_examples: bool,
) -> int:
    """Record a built package and its release; return the release id."""
    log.debug("Adding package into database")
    try:
        crate_id = _initialize_package(conn, metadata_pkg)
        dependencies = convert_dependencies(metadata_pkg)
        rustdoc = _optional_text(get_rustdoc, metadata_pkg, source_dir)
        readme = _optional_text(get_readme, metadata_pkg, source_dir)
        release_time, yanked, downloads = get_release_time_yanked_downloads(metadata_pkg)
        first_target = metadata_pkg.targets[0]
        is_library = first_target.kind in _LIBRARY_KINDS
        metadata = Metadata.from_source_dir(source_dir)

        fields = {
            "release_time": release_time,
            "dependencies": json.dumps(dependencies),
            "target_name": first_target.name.replace("-", "_"),
            "yanked": yanked,
            "build_status": res.successful,
            "rustdoc_status": has_docs,
            "test_status": False,
            "license": metadata_pkg.license,
            "repository_url": metadata_pkg.repository,
            "homepage_url": metadata_pkg.homepage,
            "description": metadata_pkg.description,
            "description_long": rustdoc,
            "readme": readme,
            "authors": json.dumps(metadata_pkg.authors),
            "keywords": json.dumps(metadata_pkg.keywords),
            "have_examples": has_examples,
            "downloads": downloads,
            "files": None if files is None else json.dumps(files),
            "doc_targets": json.dumps(list(doc_targets)),
            "is_library": is_library,
            "doc_rustc_version": res.rustc_version,
            "documentation_url": metadata_pkg.documentation,
            "default_target": metadata.default_target,
        }
        key = {"crate_id": crate_id, "version": metadata_pkg.version}
        params = {**key, **fields}

        release_id = conn.execute(
            text("SELECT id FROM releases WHERE crate_id = :crate_id AND version = :version"),
            key,
        ).scalar()
        if release_id is None:
            columns = ", ".join(fields)
            placeholders = ", ".join(f":{column}" for column in fields)
            release_id = conn.execute(
                text(
                    f"INSERT INTO releases (crate_id, version, {columns}) "
                    f"VALUES (:crate_id, :version, {placeholders}) RETURNING id"
                ),
                params,
            ).scalar_one()
        else:
            assignments = ", ".join(f"{column} = :{column}" for column in fields)
            conn.execute(
                text(
                    f"UPDATE releases SET {assignments} "
                    "WHERE crate_id = :crate_id AND version = :version"
                ),
                params,
            )
        release_id = int(release_id)

        _add_keywords(conn, metadata_pkg, release_id)
        _add_authors(conn, metadata_pkg, release_id)
        _add_owners(conn, metadata_pkg, crate_id)
        _update_versions(conn, metadata_pkg, crate_id)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return release_id


def add_build_into_database(conn, release_id: int, res: BuildResult) -> int:
    """Record one build of a release; return the build id."""
    log.debug("Adding build into database")
    build_id = conn.execute(
        text(
            "INSERT INTO builds (rid, rustc_version, cratesfyi_version, build_status, output) "
            "VALUES (:rid, :rustc_version, :cratesfyi_version, :build_status, :output) "
            "RETURNING id"
        ),
        {
            "rid": release_id,
            "rustc_version": res.rustc_version,
            "cratesfyi_version": res.docsrs_version,
            "build_status": res.successful,
            "output": res.build_log,
        },
    ).scalar_one()
    conn.commit()
    return int(build_id)