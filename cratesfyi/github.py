"""Repository statistics of crates hosted on GitHub."""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import requests
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cratesfyi.db import connect_db
from cratesfyi.errors import CratesfyiError
from cratesfyi.version import PACKAGE_VERSION

log = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com/repos"
RATE_LIMIT_DELAY = 2.0
_PATH_RE = re.compile(r"https?://github\.com/([\w._-]+)/([\w._-]+)")

_CRATES_SQL = """
    SELECT DISTINCT ON (crates.name)
           crates.name,
           crates.id,
           releases.repository_url
    FROM crates
    INNER JOIN releases ON releases.crate_id = crates.id
    WHERE releases.repository_url ~ '^https*://github.com' AND
          (crates.github_last_update < NOW() - INTERVAL '1 day' OR
           crates.github_last_update IS NULL)
    ORDER BY crates.name, releases.release_time DESC
"""

_UPDATE_SQL = """
    UPDATE crates
    SET github_description = :description,
        github_stars = :stars, github_forks = :forks,
        github_issues = :issues, github_last_commit = :last_commit,
        github_last_update = NOW()
    WHERE id = :id
"""


@dataclass
class GitHubFields:
    """Repository statistics stored for a crate."""

    description: str
    stars: int
    forks: int
    issues: int
    last_commit: datetime


def get_github_path(url: str) -> str | None:
    """``owner/repository`` of a GitHub URL, or ``None`` for other URLs."""
    match = _PATH_RE.search(url)
    if match is None:
        return None
    owner, repository = match.groups()
    if repository.endswith(".git"):
        repository = repository.split(".git")[0]
    return f"{owner}/{repository}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _int_field(obj: dict, key: str) -> int:
    value = obj.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def get_github_fields(path: str) -> GitHubFields:
    """Fetch the statistics of the repository ``owner/name``."""
    auth = (
        os.environ.get("CRATESFYI_GITHUB_USERNAME", ""),
        os.environ.get("CRATESFYI_GITHUB_ACCESSTOKEN", ""),
    )
    try:
        response = requests.get(
            f"{GITHUB_API}/{path}",
            headers={"User-Agent": f"cratesfyi/{PACKAGE_VERSION}"},
            auth=auth,
            timeout=30,
        )
    except requests.RequestException as exc:
        raise CratesfyiError(f"failed to get github data: {exc}") from exc
    if response.status_code != 200:
        raise CratesfyiError("Failed to get github data")
    try:
        data = response.json()
    except ValueError as exc:
        raise CratesfyiError(f"invalid github data: {exc}") from exc
    if not isinstance(data, dict):
        raise CratesfyiError("github data is not a JSON object")

    description = data.get("description")
    pushed_at = data.get("pushed_at")
    try:
        last_commit = datetime.strptime(str(pushed_at or "")[:19], "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        last_commit = _utc_now()
    return GitHubFields(
        description=description if isinstance(description, str) else "",
        stars=_int_field(data, "stargazers_count"),
        forks=_int_field(data, "forks_count"),
        issues=_int_field(data, "open_issues"),
        last_commit=last_commit,
    )


def github_updater(conn=None) -> None:
    """Refresh the GitHub statistics of crates not updated for a day."""
    if conn is None:
        with connect_db() as own_conn:
            github_updater(own_conn)
        return

    rows = conn.execute(text(_CRATES_SQL)).all()
    conn.commit()
    for crate_name, crate_id, repository_url in rows:
        try:
            path = get_github_path(repository_url)
            if path is None:
                raise CratesfyiError("Failed to get github path")
            fields = get_github_fields(path)
            conn.execute(
                text(_UPDATE_SQL),
                {
                    "description": fields.description,
                    "stars": fields.stars,
                    "forks": fields.forks,
                    "issues": fields.issues,
                    "last_commit": fields.last_commit,
                    "id": crate_id,
                },
            )
            conn.commit()
        except (CratesfyiError, SQLAlchemyError) as err:
            conn.rollback()
            log.debug("Failed to update github fields of: %s %s", crate_name, err)
        time.sleep(RATE_LIMIT_DELAY)