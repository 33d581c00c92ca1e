from pathlib import Path

import pytest

from cratesfyi.errors import CratesfyiError
from cratesfyi.options import DocBuilderOptions


def test_from_prefix_generates_paths(tmp_path):
    opts = DocBuilderOptions.from_prefix(tmp_path)
    assert opts.prefix == tmp_path
    assert opts.destination == tmp_path / "documentations"
    assert opts.crates_io_index_path == tmp_path / "crates.io-index"


def test_from_prefix_accepts_strings(tmp_path):
    opts = DocBuilderOptions.from_prefix(str(tmp_path))
    assert opts.prefix == Path(tmp_path)


def test_flags_default_to_false(tmp_path):
    opts = DocBuilderOptions.from_prefix(tmp_path)
    flags = [
        opts.keep_build_directory,
        opts.skip_if_exists,
        opts.skip_if_log_exists,
        opts.skip_oldest_versions,
        opts.build_only_latest_version,
        opts.debug,
    ]
    assert flags == [False] * 6


def test_default_uses_current_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    opts = DocBuilderOptions.default()
    assert opts.prefix.resolve() == tmp_path.resolve()
    assert opts.destination.name == "documentations"


def test_check_paths_missing_destination(tmp_path):
    opts = DocBuilderOptions.from_prefix(tmp_path)
    with pytest.raises(CratesfyiError, match="destination path"):
        opts.check_paths()


def test_check_paths_missing_index(tmp_path):
    (tmp_path / "documentations").mkdir()
    opts = DocBuilderOptions.from_prefix(tmp_path)
    with pytest.raises(CratesfyiError, match="crates.io-index path"):
        opts.check_paths()


def test_check_paths_passes_when_present(tmp_path):
    (tmp_path / "documentations").mkdir()
    (tmp_path / "crates.io-index").mkdir()
    opts = DocBuilderOptions.from_prefix(tmp_path)
    opts.check_paths()
    assert opts.destination.is_dir()


def test_repr_lists_options(tmp_path):
    opts = DocBuilderOptions.from_prefix(tmp_path)
    opts.skip_if_exists = True
    text = repr(opts)
    assert text.startswith("DocBuilderOptions {")
    assert f'destination: "{opts.destination}"' in text
    assert "skip_if_exists: true" in text
    assert "debug: false" in text