"""Daily release and build-failure counts of the last thirty days."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cratesfyi.db import connect_db
from cratesfyi.errors import CratesfyiError

DAYS = 30

_COUNT_SQL = text(
    "SELECT COUNT(*) FROM releases "
    "WHERE release_time < :upper AND release_time > :lower"
)
_FAILURE_SQL = text(
    "SELECT COUNT(*) FROM releases "
    "WHERE is_library = TRUE AND build_status = FALSE AND "
    "release_time < :upper AND release_time > :lower"
)


def _store(conn, payload: str) -> None:
    try:
        conn.execute(
            text("INSERT INTO config (name, value) VALUES ('release_activity', :value)"),
            {"value": payload},
        )
        conn.commit()
        return
    except SQLAlchemyError:
        conn.rollback()
    try:
        conn.execute(
            text("UPDATE config SET value = :value WHERE name = 'release_activity'"),
            {"value": payload},
        )
        conn.commit()
    except SQLAlchemyError as exc:
        conn.rollback()
        raise CratesfyiError(f"failed to store release activity: {exc}") from exc


def update_release_activity(conn=None) -> dict[str, list]:
    """Count releases and failed library builds per day and store them in ``config``."""
    if conn is None:
        with connect_db() as own_conn:
            return update_release_activity(own_conn)

    now = datetime.now(timezone.utc).replace(tzinfo=None)
    local_now = datetime.now()
    dates: list[str] = []
    counts: list[int] = []
    failures: list[int] = []
    for day in range(DAYS):
        window = {"upper": now - timedelta(days=day), "lower": now - timedelta(days=day + 1)}
        counts.append(int(conn.execute(_COUNT_SQL, window).scalar()))
        failures.append(int(conn.execute(_FAILURE_SQL, window).scalar()))
        dates.append((local_now - timedelta(days=day)).strftime("%d %b"))
    conn.commit()

    activity = {
        "counts": counts[::-1],
        "dates": dates[::-1],
        "failures": failures[::-1],
    }
    _store(conn, json.dumps(activity, sort_keys=True))
    return activity