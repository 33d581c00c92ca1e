import pytest

from cratesfyi.cli import build_parser, main
from cratesfyi.version import PACKAGE_VERSION


@pytest.fixture
def prefix(tmp_path):
    (tmp_path / "documentations").mkdir()
    (tmp_path / "crates.io-index").mkdir()
    return tmp_path


def test_queue_add_default_priority():
    args = build_parser().parse_args(["queue", "add", "serde", "1.0.0"])
    assert args.crate_name == "serde"
    assert args.crate_version == "1.0.0"
    assert args.priority == 5


def test_queue_add_priority_option():
    args = build_parser().parse_args(["queue", "add", "-p", "0", "serde", "1.0.0"])
    assert args.priority == 0


def test_queue_add_rejects_non_numeric_priority():
    with pytest.raises(SystemExit) as info:
        build_parser().parse_args(["queue", "add", "--priority", "high", "serde", "1.0.0"])
    assert info.value.code == 2


def test_build_crate_arguments():
    args = build_parser().parse_args(
        ["build", "-s", "--skip-if-log-exists", "-k", "crate", "rand", "0.7.0"]
    )
    assert args.skip_if_exists is True
    assert args.skip_if_log_exists is True
    assert args.keep_build_directory is True
    assert (args.crate_name, args.crate_version) == ("rand", "0.7.0")


def test_add_directory_prefix_is_optional():
    args = build_parser().parse_args(["database", "add-directory", "docs"])
    assert args.directory == "docs"
    assert args.prefix is None


def test_migrate_version_is_integer():
    args = build_parser().parse_args(["database", "migrate", "2"])
    assert args.version == 2


def test_no_command_prints_usage(capsys):
    assert main([]) == 0
    assert capsys.readouterr().out.startswith("usage:")


def test_version_option(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--version"])
    assert info.value.code == 0
    assert PACKAGE_VERSION in capsys.readouterr().out


def test_lock_and_unlock(prefix):
    lock_file = prefix / "cratesfyi.lock"
    assert main(["build", "-P", str(prefix), "lock"]) == 0
    assert lock_file.exists()
    assert main(["build", "-P", str(prefix), "unlock"]) == 0
    assert not lock_file.exists()


def test_prefix_from_environment(prefix, monkeypatch):
    monkeypatch.setenv("CRATESFYI_PREFIX", str(prefix))
    assert main(["build", "lock"]) == 0
    assert (prefix / "cratesfyi.lock").exists()


def test_missing_paths_fail(tmp_path):
    assert main(["build", "-P", str(tmp_path), "lock"]) == 1
    assert not (tmp_path / "cratesfyi.lock").exists()


def test_print_options_shows_destination(prefix, capsys):
    assert main(["build", "-P", str(prefix), "print-options"]) == 0
    assert str(prefix / "documentations") in capsys.readouterr().out


def test_destination_override(prefix, tmp_path_factory, capsys):
    other = tmp_path_factory.mktemp("elsewhere")
    assert main(["build", "-P", str(prefix), "-d", str(other), "print-options"]) == 0
    assert str(other) in capsys.readouterr().out