"""Long-running service that queues new crates, builds them and refreshes statistics."""

from __future__ import annotations

import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Callable

from cratesfyi.builder import RustwideBuilder
from cratesfyi.db import connect_db, update_search_index
from cratesfyi.docbuilder import DocBuilder
from cratesfyi.errors import CratesfyiError
from cratesfyi.github import github_updater
from cratesfyi.hubs import ping_hubs
from cratesfyi.options import DocBuilderOptions
from cratesfyi.release_activity import update_release_activity
from cratesfyi.version import build_version

log = logging.getLogger(__name__)

REQUIRED_ENVIRONMENT = (
    "CRATESFYI_PREFIX",
    "CRATESFYI_GITHUB_USERNAME",
    "CRATESFYI_GITHUB_ACCESSTOKEN",
)

READER_START_DELAY = 30
NEW_CRATES_INTERVAL = 60
QUEUE_POLL_INTERVAL = 60
RELEASE_ACTIVITY_POLL_INTERVAL = 60
SEARCH_INDEX_INTERVAL = 60 * 60 * 3
GITHUB_INTERVAL = 60 * 60 * 6
CACHE_FLUSH_BUILDS = 10


class _Phase(Enum):
    FRESH = auto()
    EMPTY_QUEUE = auto()
    LOCKED = auto()
    IN_PROGRESS = auto()


@dataclass
class BuilderState:
    """Where the queue builder stands: fresh, idle, locked, or on a streak of builds."""

    phase: _Phase = _Phase.FRESH
    built: int = 0

    def count(self) -> int:
        """Crates built since the caches were last refreshed; 0 when not building."""
        return self.built if self.phase is _Phase.IN_PROGRESS else 0

    def is_in_progress(self) -> bool:
        """Whether the builder has just finished building a crate."""
        return self.phase is _Phase.IN_PROGRESS

    def increment(self) -> None:
        """Count one more built crate."""
        self.built = self.count() + 1
        self.phase = _Phase.IN_PROGRESS


def _options() -> DocBuilderOptions:
    prefix = os.environ.get("CRATESFYI_PREFIX")
    if prefix is None:
        raise CratesfyiError("CRATESFYI_PREFIX environment variable not found")
    return DocBuilderOptions.from_prefix(Path(prefix))


def _ping(ping: Callable[[], int]) -> None:
    try:
        count = ping()
    except Exception as exc:  # a hub being down must not stop the builder
        log.error("Failed to ping hub: %s", exc)
    else:
        log.debug("Succesfully pinged %s hubs", count)


def _builder_step(doc_builder, builder, status: BuilderState,
                  ping: Callable[[], int] = ping_hubs) -> BuilderState:
    """One pass of the queue builder; returns the state for the next pass."""
    if doc_builder.is_locked():
        log.warning("Lock file exits, skipping building new crates")
        return BuilderState(_Phase.LOCKED)

    if status.count() >= CACHE_FLUSH_BUILDS:
        log.debug("%s builds in a row; flushing caches", CACHE_FLUSH_BUILDS)
        status = BuilderState(_Phase.IN_PROGRESS, 0)
        _ping(ping)
        try:
            doc_builder.load_cache()
        except Exception as exc:
            log.error("Failed to load cache: %s", exc)
        try:
            doc_builder.save_cache()
        except Exception as exc:
            log.error("Failed to save cache: %s", exc)

    log.debug("Checking build queue")
    try:
        queue_count = doc_builder.get_queue_count()
    except Exception as exc:
        log.error("Failed to read the number of crates in the queue: %s", exc)
        return status

    if queue_count == 0:
        if status.count() > 0:
            _ping(ping)
            try:
                doc_builder.save_cache()
            except Exception as exc:
                log.error("Failed to save cache: %s", exc)
        log.debug("Queue is empty, going back to sleep")
        return BuilderState(_Phase.EMPTY_QUEUE)

    log.info(
        "Starting build with %s crates in queue (currently on a %s crate streak)",
        queue_count,
        status.count(),
    )

    if not status.is_in_progress():
        try:
            doc_builder.load_cache()
        except Exception as exc:
            log.error("Failed to load cache: %s", exc)
            return status

    try:
        if doc_builder.build_next_queue_package(builder):
            status.increment()
    except Exception as exc:
        log.error("Failed to build crate from queue: %s", exc)
    return status


def _is_release_activity_time(moment: datetime) -> bool:
    return moment.hour == 23 and moment.minute == 55


def _new_crates_loop() -> None:
    # Spaced out so it does not clash with the queue builder on launch.
    time.sleep(READER_START_DELAY)
    while True:
        doc_builder = DocBuilder(_options())
        if doc_builder.is_locked():
            log.debug("Lock file exists, skipping checking new crates")
        else:
            log.debug("Checking new crates")
            try:
                added = doc_builder.get_new_crates()
            except Exception as exc:
                log.error("Failed to get new crates: %s", exc)
            else:
                log.debug("%s crates added to queue", added)
        time.sleep(NEW_CRATES_INTERVAL)


def _build_queue_loop() -> None:
    doc_builder = DocBuilder(_options())
    builder = RustwideBuilder.init()
    status = BuilderState()
    while True:
        if not status.is_in_progress():
            time.sleep(QUEUE_POLL_INTERVAL)
        status = _builder_step(doc_builder, builder, status)


def _release_activity_loop() -> None:
    while True:
        time.sleep(RELEASE_ACTIVITY_POLL_INTERVAL)
        if _is_release_activity_time(datetime.now()):
            log.info("Updating release activity")
            try:
                update_release_activity()
            except Exception as exc:
                log.error("Failed to update release activity: %s", exc)


def _search_index_loop() -> None:
    while True:
        time.sleep(SEARCH_INDEX_INTERVAL)
        try:
            with connect_db() as conn:
                update_search_index(conn)
        except Exception as exc:
            log.error("Failed to update search index: %s", exc)


def _github_loop() -> None:
    while True:
        time.sleep(GITHUB_INTERVAL)
        try:
            github_updater()
        except Exception as exc:
            log.error("Failed to update github fields: %s", exc)


def start_daemon() -> None:
    """Fork into the background and run the builder's periodic jobs."""
    for name in REQUIRED_ENVIRONMENT:
        if name not in os.environ:
            raise CratesfyiError(f"Environment variable {name} not found")

    options = _options()
    options.check_paths()

    pid = os.fork()
    if pid > 0:
        (Path(options.prefix) / "cratesfyi.pid").write_text(f"{pid}\n", encoding="utf-8")
        log.info("cratesfyi %s daemon started on: %s", build_version(), pid)
        sys.exit(0)

    jobs = (
        ("crates.io reader", _new_crates_loop),
        ("build queue reader", _build_queue_loop),
        ("release activity updater", _release_activity_loop),
        ("search index updater", _search_index_loop),
        ("github stat updater", _github_loop),
    )
    threads = [threading.Thread(target=job, name=name) for name, job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()