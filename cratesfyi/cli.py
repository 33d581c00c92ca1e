"""Command line interface of the documentation builder."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from cratesfyi.builder import RustwideBuilder
from cratesfyi.daemon import start_daemon
from cratesfyi.db import connect_db, migrate, update_search_index
from cratesfyi.docbuilder import DocBuilder, add_crate_to_queue
from cratesfyi.errors import CratesfyiError
from cratesfyi.files import add_path_into_database
from cratesfyi.github import github_updater
from cratesfyi.options import DocBuilderOptions
from cratesfyi.release_activity import update_release_activity
from cratesfyi.version import build_version

DEFAULT_PRIORITY = 5


def _init_logging() -> None:
    logger = logging.getLogger("cratesfyi")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y/%m/%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
    level = os.environ.get("CRATESFYI_LOG", "info").upper()
    logger.setLevel(level if level in logging.getLevelNamesMapping() else logging.INFO)


def _build_options(args) -> DocBuilderOptions:
    prefix = args.prefix if args.prefix is not None else os.environ.get("CRATESFYI_PREFIX")
    if prefix is not None:
        options = DocBuilderOptions.from_prefix(Path(prefix))
    else:
        options = DocBuilderOptions.default()
    if args.destination is not None:
        options.destination = Path(args.destination)
    if args.crates_io_index_path is not None:
        options.crates_io_index_path = Path(args.crates_io_index_path)
    options.skip_if_exists = args.skip_if_exists
    options.skip_if_log_exists = args.skip_if_log_exists
    options.keep_build_directory = args.keep_build_directory
    options.check_paths()
    return options


def _run_build(args) -> None:
    doc_builder = DocBuilder(_build_options(args))
    action = getattr(args, "build_action", None)
    if action is not None:
        action(doc_builder, args)


def _build_world(doc_builder, args) -> None:
    doc_builder.load_cache()
    RustwideBuilder.init().build_world(doc_builder)
    doc_builder.save_cache()


def _build_crate(doc_builder, args) -> None:
    doc_builder.load_cache()
    RustwideBuilder.init().build_package(doc_builder, args.crate_name, args.crate_version)
    doc_builder.save_cache()


def _add_essential_files(doc_builder, args) -> None:
    RustwideBuilder.init().add_essential_files()


def _lock(doc_builder, args) -> None:
    doc_builder.lock()


def _unlock(doc_builder, args) -> None:
    doc_builder.unlock()


def _print_options(doc_builder, args) -> None:
    print(repr(doc_builder.options))


def _nothing(args) -> None:
    """Parent commands given without a subcommand do nothing."""


def _migrate(args) -> None:
    with connect_db() as conn:
        migrate(args.version, conn)


def _update_github_fields(args) -> None:
    github_updater()


def _add_directory(args) -> None:
    with connect_db() as conn:
        add_path_into_database(conn, args.prefix or "", args.directory)


def _update_release_activity(args) -> None:
    update_release_activity()


def _update_search_index(args) -> None:
    with connect_db() as conn:
        update_search_index(conn)


def _daemon(args) -> None:
    start_daemon()


def _queue_add(args) -> None:
    with connect_db() as conn:
        add_crate_to_queue(conn, args.crate_name, args.crate_version, args.priority)


def build_parser() -> argparse.ArgumentParser:
    """The argument parser of the ``cratesfyi`` command."""
    parser = argparse.ArgumentParser(
        prog="cratesfyi", description="Builds and stores documentation of crates."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {build_version()}")
    parser.set_defaults(func=None)
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    build = commands.add_parser("build", help="Builds documentation in a chroot environment")
    build.add_argument("-P", "--prefix")
    build.add_argument("-d", "--destination", help="Sets destination path")
    build.add_argument("--crates-io-index-path", help="Sets crates.io-index path")
    build.add_argument("-s", "--skip", dest="skip_if_exists", action="store_true",
                       help="Skips building documentation if documentation exists")
    build.add_argument("--skip-if-log-exists", action="store_true",
                       help="Skips building documentation if build log exists")
    build.add_argument("-k", "--keep-build-directory", action="store_true",
                       help="Keeps build directory after build.")
    build.set_defaults(func=_run_build)
    build_commands = build.add_subparsers(dest="build_command", metavar="COMMAND")
    build_commands.add_parser(
        "world", help="Builds documentation of every crate"
    ).set_defaults(build_action=_build_world)
    crate = build_commands.add_parser("crate", help="Builds documentation for a crate")
    crate.add_argument("crate_name", metavar="CRATE_NAME", help="Crate name")
    crate.add_argument("crate_version", metavar="CRATE_VERSION", help="Version of crate")
    crate.set_defaults(build_action=_build_crate)
    build_commands.add_parser(
        "add-essential-files", help="Adds essential files for rustc"
    ).set_defaults(build_action=_add_essential_files)
    build_commands.add_parser(
        "lock", help="Locks cratesfyi daemon to stop building new crates"
    ).set_defaults(build_action=_lock)
    build_commands.add_parser(
        "unlock", help="Unlocks cratesfyi daemon to continue building new crates"
    ).set_defaults(build_action=_unlock)
    build_commands.add_parser("print-options").set_defaults(build_action=_print_options)

    commands.add_parser("daemon", help="Starts cratesfyi daemon").set_defaults(func=_daemon)

    database = commands.add_parser("database", help="Database operations")
    database.set_defaults(func=_nothing)
    database_commands = database.add_subparsers(dest="database_command", metavar="COMMAND")
    migrate_parser = database_commands.add_parser("migrate", help="Run database migrations")
    migrate_parser.add_argument("version", metavar="VERSION", type=int, nargs="?")
    migrate_parser.set_defaults(func=_migrate)
    database_commands.add_parser(
        "update-github-fields", help="Updates github stats for crates."
    ).set_defaults(func=_update_github_fields)
    add_directory = database_commands.add_parser(
        "add-directory", help="Adds a directory into database"
    )
    add_directory.add_argument("directory", metavar="DIRECTORY",
                               help="Path of file or directory")
    add_directory.add_argument("prefix", metavar="PREFIX", nargs="?",
                               help="Prefix of files in database")
    add_directory.set_defaults(func=_add_directory)
    database_commands.add_parser(
        "update-release-activity", help="Updates montly release activity chart"
    ).set_defaults(func=_update_release_activity)
    database_commands.add_parser(
        "update-search-index", help="Updates search index"
    ).set_defaults(func=_update_search_index)

    queue = commands.add_parser("queue", help="Interactions with the build queue")
    queue.set_defaults(func=_nothing)
    queue_commands = queue.add_subparsers(dest="queue_command", metavar="COMMAND")
    add = queue_commands.add_parser("add", help="Add a crate to the build queue")
    add.add_argument("crate_name", metavar="CRATE_NAME", help="Name of crate to build")
    add.add_argument("crate_version", metavar="CRATE_VERSION",
                     help="Version of crate to build")
    add.add_argument("-p", "--priority", type=int, default=DEFAULT_PRIORITY,
                     help="Priority of build (default: 5) (new crate builds get priority 0)")
    add.set_defaults(func=_queue_add)

    return parser


def main(argv=None) -> int:
    """Run the ``cratesfyi`` command; return its exit status."""
    _init_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.func is None:
        print(parser.format_usage(), end="")
        return 0
    try:
        args.func(args)
    except (CratesfyiError, SQLAlchemyError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())