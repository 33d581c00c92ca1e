from datetime import datetime

import pytest

from cratesfyi.daemon import (
    BuilderState,
    _builder_step,
    _is_release_activity_time,
    start_daemon,
)
from cratesfyi.errors import CratesfyiError


class FakeDocBuilder:
    def __init__(self, locked=False, queue_count=1, build_result=True,
                 queue_error=None, build_error=None):
        self.locked = locked
        self.queue_count = queue_count
        self.build_result = build_result
        self.queue_error = queue_error
        self.build_error = build_error
        self.loads = 0
        self.saves = 0
        self.builds = 0

    def is_locked(self):
        return self.locked

    def get_queue_count(self):
        if self.queue_error is not None:
            raise self.queue_error
        return self.queue_count

    def load_cache(self):
        self.loads += 1

    def save_cache(self):
        self.saves += 1

    def build_next_queue_package(self, builder):
        self.builds += 1
        if self.build_error is not None:
            raise self.build_error
        return self.build_result


class Pinger:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return 2


def streak(n):
    state = BuilderState()
    for _ in range(n):
        state.increment()
    return state


def test_fresh_state_is_idle():
    state = BuilderState()
    assert state.count() == 0
    assert not state.is_in_progress()


def test_increment_counts_builds():
    state = streak(2)
    assert state.count() == 2
    assert state.is_in_progress()


def test_locked_builder_does_nothing():
    doc_builder = FakeDocBuilder(locked=True)
    ping = Pinger()
    state = _builder_step(doc_builder, object(), streak(3), ping)
    assert not state.is_in_progress()
    assert state.count() == 0
    assert doc_builder.builds == 0
    assert ping.calls == 0


def test_fresh_builder_loads_cache_and_builds():
    doc_builder = FakeDocBuilder(queue_count=3)
    state = _builder_step(doc_builder, object(), BuilderState(), Pinger())
    assert doc_builder.loads == 1
    assert doc_builder.builds == 1
    assert state.count() == 1


def test_streak_does_not_reload_cache():
    doc_builder = FakeDocBuilder(queue_count=3)
    state = _builder_step(doc_builder, object(), streak(2), Pinger())
    assert doc_builder.loads == 0
    assert state.count() == 3


def test_empty_queue_after_streak_pings_and_saves():
    doc_builder = FakeDocBuilder(queue_count=0)
    ping = Pinger()
    state = _builder_step(doc_builder, object(), streak(4), ping)
    assert ping.calls == 1
    assert doc_builder.saves == 1
    assert doc_builder.builds == 0
    assert not state.is_in_progress()


def test_empty_queue_when_idle_does_not_ping():
    doc_builder = FakeDocBuilder(queue_count=0)
    ping = Pinger()
    _builder_step(doc_builder, object(), BuilderState(), ping)
    assert ping.calls == 0
    assert doc_builder.saves == 0


def test_long_streak_flushes_caches():
    doc_builder = FakeDocBuilder(queue_count=5)
    ping = Pinger()
    state = _builder_step(doc_builder, object(), streak(10), ping)
    assert ping.calls == 1
    assert doc_builder.loads == 1
    assert doc_builder.saves == 1
    assert state.count() == 1


def test_ping_failure_is_swallowed():
    doc_builder = FakeDocBuilder(queue_count=0)
    ping = Pinger(error=RuntimeError("hub down"))
    state = _builder_step(doc_builder, object(), streak(1), ping)
    assert ping.calls == 1
    assert not state.is_in_progress()


def test_queue_count_error_keeps_state():
    doc_builder = FakeDocBuilder(queue_error=CratesfyiError("no database"))
    state = _builder_step(doc_builder, object(), streak(2), Pinger())
    assert state.count() == 2
    assert doc_builder.builds == 0


def test_build_failure_keeps_count():
    doc_builder = FakeDocBuilder(build_error=RuntimeError("boom"))
    state = _builder_step(doc_builder, object(), streak(2), Pinger())
    assert doc_builder.builds == 1
    assert state.count() == 2


def test_empty_build_does_not_increment():
    doc_builder = FakeDocBuilder(build_result=False)
    state = _builder_step(doc_builder, object(), streak(1), Pinger())
    assert state.count() == 1


def test_release_activity_time():
    assert _is_release_activity_time(datetime(2020, 1, 1, 23, 55))
    assert not _is_release_activity_time(datetime(2020, 1, 1, 23, 54))
    assert not _is_release_activity_time(datetime(2020, 1, 1, 22, 55))


def test_start_daemon_requires_environment(monkeypatch):
    for name in ("CRATESFYI_PREFIX", "CRATESFYI_GITHUB_USERNAME",
                 "CRATESFYI_GITHUB_ACCESSTOKEN"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(CratesfyiError, match="CRATESFYI_PREFIX"):
        start_daemon()


def test_start_daemon_requires_github_credentials(monkeypatch, tmp_path):
    monkeypatch.setenv("CRATESFYI_PREFIX", str(tmp_path))
    monkeypatch.delenv("CRATESFYI_GITHUB_USERNAME", raising=False)
    monkeypatch.delenv("CRATESFYI_GITHUB_ACCESSTOKEN", raising=False)
    with pytest.raises(CratesfyiError, match="CRATESFYI_GITHUB_USERNAME"):
        start_daemon()