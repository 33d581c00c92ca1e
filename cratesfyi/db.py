"""Database connections, schema migrations and the search index."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from operator import attrgetter

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import TSVECTOR
from sqlalchemy.engine import Connection, Engine

from cratesfyi.errors import CratesfyiError

log = logging.getLogger(__name__)

DATABASE_URL_VARIABLE = "CRATESFYI_DATABASE_URL"
VERSIONS_TABLE = "database_versions"


def _database_url() -> str:
    url = os.environ.get(DATABASE_URL_VARIABLE)
    if not url:
        raise CratesfyiError(f"{DATABASE_URL_VARIABLE} environment variable is not exists")
    return url


@lru_cache(maxsize=None)
def _engine(url: str) -> Engine:
    return create_engine(url)


def create_pool() -> Engine:
    """Return a pooled engine for the configured database."""
    return _engine(_database_url())


def connect_db() -> Connection:
    """Open a connection to the configured database."""
    return create_pool().connect()


# --- schema -----------------------------------------------------------------

def _counter(name: str) -> Column:
    return Column(name, Integer, server_default=text("0"))


def _flag(name: str, default: bool) -> Column:
    return Column(name, Boolean, server_default=text("true" if default else "false"))


def _created(name: str) -> Column:
    return Column(name, DateTime, nullable=False, server_default=func.current_timestamp())


_INITIAL_SCHEMA = MetaData()

_crates = Table(
    "crates",
    _INITIAL_SCHEMA,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), unique=True, nullable=False),
    _counter("latest_version_id"),
    Column("versions", JSON, server_default=text("'[]'")),
    _counter("downloads_total"),
    Column("github_description", String(1024)),
    _counter("github_stars"),
    _counter("github_forks"),
    _counter("github_issues"),
    Column("github_last_commit", DateTime),
    Column("github_last_update", DateTime),
    Column("content", TSVECTOR),
    Index("content_idx", "content", postgresql_using="gin"),
)

_releases = Table(
    "releases",
    _INITIAL_SCHEMA,
    Column("id", Integer, primary_key=True),
    Column("crate_id", Integer, ForeignKey("crates.id"), nullable=False),
    Column("version", String(100)),
    Column("release_time", DateTime),
    Column("dependencies", JSON),
    Column("target_name", String(255)),
    _flag("yanked", False),
    _flag("is_library", True),
    _flag("build_status", False),
    _flag("rustdoc_status", False),
    _flag("test_status", False),
    Column("license", String(100)),
    Column("repository_url", String(255)),
    Column("homepage_url", String(255)),
    Column("documentation_url", String(255)),
    Column("description", String(1024)),
    Column("description_long", String(51200)),
    Column("readme", String(51200)),
    Column("authors", JSON),
    Column("keywords", JSON),
    _flag("have_examples", False),
    _counter("downloads"),
    Column("files", JSON),
    Column("doc_targets", JSON, server_default=text("'[]'")),
    Column("doc_rustc_version", String(100), nullable=False),
    Column("default_target", String(100)),
    UniqueConstraint("crate_id", "version"),
)
Index("releases_release_time_idx", _releases.c.release_time.desc())

Table(
    "authors",
    _INITIAL_SCHEMA,
    Column("id", Integer, primary_key=True),
    Column("name", String(255)),
    Column("email", String(255)),
    Column("slug", String(255), unique=True, nullable=False),
)
Table(
    "author_rels",
    _INITIAL_SCHEMA,
    Column("rid", Integer, ForeignKey("releases.id")),
    Column("aid", Integer, ForeignKey("authors.id")),
    UniqueConstraint("rid", "aid"),
)
Table(
    "keywords",
    _INITIAL_SCHEMA,
    Column("id", Integer, primary_key=True),
    Column("name", String(255)),
    Column("slug", String(255), unique=True, nullable=False),
)
Table(
    "keyword_rels",
    _INITIAL_SCHEMA,
    Column("rid", Integer, ForeignKey("releases.id")),
    Column("kid", Integer, ForeignKey("keywords.id")),
    UniqueConstraint("rid", "kid"),
)
Table(
    "owners",
    _INITIAL_SCHEMA,
    Column("id", Integer, primary_key=True),
    Column("login", String(255), unique=True, nullable=False),
    Column("avatar", String(255)),
    Column("name", String(255)),
    Column("email", String(255)),
)
Table(
    "owner_rels",
    _INITIAL_SCHEMA,
    Column("cid", Integer, ForeignKey("releases.id")),
    Column("oid", Integer, ForeignKey("owners.id")),
    UniqueConstraint("cid", "oid"),
)
Table(
    "builds",
    _INITIAL_SCHEMA,
    Column("id", Integer, Identity()),
    Column("rid", Integer, ForeignKey("releases.id"), nullable=False),
    Column("rustc_version", String(100), nullable=False),
    Column("cratesfyi_version", String(100), nullable=False),
    Column("build_status", Boolean, nullable=False),
    _created("build_time"),
    Column("output", Text),
)
Table(
    "queue",
    _INITIAL_SCHEMA,
    Column("id", Integer, Identity()),
    Column("name", String(255)),
    Column("version", String(100)),
    _counter("attempt"),
    _created("date_added"),
    UniqueConstraint("name", "version"),
)
Table(
    "files",
    _INITIAL_SCHEMA,
    Column("path", String(4096), primary_key=True),
    Column("mime", String(100), nullable=False),
    _created("date_added"),
    _created("date_updated"),
    Column("content", LargeBinary),
)
Table(
    "config",
    _INITIAL_SCHEMA,
    Column("name", String(100), primary_key=True),
    Column("value", JSON, nullable=False),
)

_SANDBOX_SCHEMA = MetaData()
Table(
    "sandbox_overrides",
    _SANDBOX_SCHEMA,
    Column("crate_name", String, primary_key=True),
    Column("max_memory_bytes", Integer),
    Column("timeout_seconds", Integer),
)


# --- search index -----------------------------------------------------------

def _search_index_statement():
    keyword_values = func.json_array_elements_text(_releases.c.keywords).table_valued("value")
    keywords = (
        select(func.string_agg(keyword_values.c.value, " "))
        .select_from(keyword_values)
        .scalar_subquery()
    )
    content = (
        func.setweight(func.to_tsvector(_crates.c.name), "A")
        .op("||")(func.setweight(func.to_tsvector(func.coalesce(_releases.c.description, "")), "B"))
        .op("||")(func.setweight(func.to_tsvector(func.coalesce(keywords, "")), "B"))
    )
    doc = (
        select(_releases.c.id, _releases.c.crate_id, content.label("content"))
        .select_from(_releases.join(_crates, _crates.c.id == _releases.c.crate_id))
        .distinct(_releases.c.crate_id)
        .order_by(_releases.c.crate_id, _releases.c.release_time.desc())
        .cte("doc")
    )
    return (
        update(_crates)
        .values(latest_version_id=doc.c.id, content=doc.c.content)
        .where(
            _crates.c.id == doc.c.crate_id,
            or_(_crates.c.latest_version_id == 0, _crates.c.latest_version_id != doc.c.id),
        )
    )


def update_search_index(conn) -> int:
    """Refresh the ``content`` search vector of crates; return the rows updated."""
    result = conn.execute(_search_index_statement())
    conn.commit()
    return result.rowcount


# --- migrations -------------------------------------------------------------

Step = str | Callable[[Connection], None]


@dataclass(frozen=True)
class Migration:
    """One schema change with the step that applies it and the step that undoes it.

    A step is either SQL text (statements separated by ``;``) or a callable
    taking the connection.
    """

    version: int
    description: str
    upgrade: Step
    downgrade: Step


def _statements(sql: str) -> list[str]:
    return [statement.strip() for statement in sql.split(";") if statement.strip()]


class Migrator:
    """Applies and reverts migrations, recording applied versions in a table."""

    def __init__(self, conn, migrations=(), table: str = VERSIONS_TABLE):
        self.conn = conn
        self.table = table
        self.migrations = sorted(migrations, key=attrgetter("version"))
        versions = [m.version for m in self.migrations]
        if len(set(versions)) != len(versions):
            raise CratesfyiError("duplicate migration version")

    def setup_schema(self) -> None:
        """Create the table that records applied versions."""
        self.conn.exec_driver_sql(
            f"CREATE TABLE IF NOT EXISTS {self.table} (version BIGINT PRIMARY KEY)"
        )
        self.conn.commit()

    def _applied(self) -> set[int]:
        rows = self.conn.execute(text(f"SELECT version FROM {self.table}"))
        return {int(row[0]) for row in rows}

    def current_version(self) -> int | None:
        """The highest applied version, or ``None`` when nothing is applied."""
        value = self.conn.execute(text(f"SELECT MAX(version) FROM {self.table}")).scalar()
        return None if value is None else int(value)

    def _run(self, step: Step, record) -> None:
        try:
            if callable(step):
                step(self.conn)
            else:
                for statement in _statements(step):
                    self.conn.exec_driver_sql(statement)
            record()
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def up(self, version=None) -> None:
        """Apply every pending migration up to ``version`` (all when ``None``)."""
        applied = self._applied()
        for migration in self.migrations:
            if migration.version in applied:
                continue
            if version is not None and migration.version > version:
                break
            log.info("Applying migration %s: %s", migration.version, migration.description)
            self._run(
                migration.upgrade,
                lambda m=migration: self.conn.execute(
                    text(f"INSERT INTO {self.table} (version) VALUES (:version)"),
                    {"version": m.version},
                ),
            )

    def down(self, version=None) -> None:
        """Revert applied migrations newer than ``version`` (all when ``None``)."""
        applied = self._applied()
        for migration in reversed(self.migrations):
            if migration.version not in applied:
                continue
            if version is not None and migration.version <= version:
                break
            log.info("Removing migration %s: %s", migration.version, migration.description)
            self._run(
                migration.downgrade,
                lambda m=migration: self.conn.execute(
                    text(f"DELETE FROM {self.table} WHERE version = :version"),
                    {"version": m.version},
                ),
            )


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        "Initial database schema",
        _INITIAL_SCHEMA.create_all,
        _INITIAL_SCHEMA.drop_all,
    ),
    Migration(
        2,
        "Added priority column to build queue",
        "ALTER TABLE queue ADD COLUMN priority INT DEFAULT 0",
        "ALTER TABLE queue DROP COLUMN priority",
    ),
    Migration(
        3,
        "Added sandbox_overrides table",
        _SANDBOX_SCHEMA.create_all,
        _SANDBOX_SCHEMA.drop_all,
    ),
)


def migrate(version=None, conn=None) -> None:
    """Bring the schema to ``version``, or to the newest version when ``None``."""
    if conn is None:
        with connect_db() as own_conn:
            migrate(version, own_conn)
        return

    migrator = Migrator(conn, MIGRATIONS)
    migrator.setup_schema()
    if version is None:
        migrator.up(None)
    elif version > (migrator.current_version() or 0):
        migrator.up(version)
    else:
        migrator.down(version)