from datetime import timedelta

import pytest
from sqlalchemy import create_engine, text

from cratesfyi.limits import Limits, scale

SIZE_LABELS = ["bytes", "KB", "MB", "GB"]


@pytest.fixture
def conn():
    engine = create_engine("sqlite://")
    with engine.connect() as connection:
        connection.execute(
            text(
                "CREATE TABLE sandbox_overrides ("
                "crate_name VARCHAR NOT NULL PRIMARY KEY, "
                "max_memory_bytes INTEGER, timeout_seconds INTEGER)"
            )
        )
        yield connection


def test_defaults_for_website():
    website = Limits().for_website()
    assert website["Available RAM"] == "3 GB"
    assert website["Maximum rustdoc execution time"] == "15 minutes"
    assert website["Maximum size of a build log"] == "100 KB"
    assert website["Network access"] == "blocked"


def test_for_website_keys_sorted():
    keys = list(Limits().for_website())
    assert keys == sorted(keys)


def test_networking_allowed():
    assert Limits(networking=True).for_website()["Network access"] == "allowed"


def test_scale_below_interval_keeps_first_label():
    assert scale(5, 60, ["seconds", "minutes"]) == f"{5} seconds"


def test_scale_stops_at_last_label():
    result = scale(1024**5, 1024, SIZE_LABELS)
    assert result.endswith(" GB")
    assert int(result.split()[0]) == 1024**5 // 1024**3


def test_scale_truncates_remainder():
    assert scale(1024 * 2 + 5, 1024, SIZE_LABELS) == scale(1024 * 2, 1024, SIZE_LABELS)


def test_for_crate_without_override(conn):
    assert Limits.for_crate(conn, "serde") == Limits()


def test_for_crate_with_override(conn):
    conn.execute(
        text("INSERT INTO sandbox_overrides VALUES ('big', 1024, 60)")
    )
    limits = Limits.for_crate(conn, "big")
    assert limits.memory == 1024
    assert limits.timeout == timedelta(seconds=60)
    assert limits.max_log_size == Limits().max_log_size


def test_for_crate_with_partial_override(conn):
    conn.execute(
        text("INSERT INTO sandbox_overrides VALUES ('slow', NULL, 120)")
    )
    limits = Limits.for_crate(conn, "slow")
    assert limits.memory == Limits().memory
    assert limits.timeout == timedelta(seconds=120)