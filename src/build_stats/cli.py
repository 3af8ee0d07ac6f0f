"""Command-line argument parsing for build-stats."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .config import DEFAULT_CONCURRENCY, DEFAULT_PERIOD_COUNT, DEFAULT_PERIOD_DAYS

COMMANDS = ("download", "calculate", "history", "success", "clean", "cache")

_EPILOG = """\
services:
  bitbucket      Bitbucket Pipelines
  travis         Travis CI

examples:
  build-stats travis:boltpkg/bolt download
  build-stats travis:boltpkg/bolt download --concurrency 20 --since 300
  build-stats travis:boltpkg/bolt calculate --branch master --period 1 --last 90
  build-stats travis:boltpkg/bolt history --branch master --result SUCCESSFUL,FAILED
  build-stats travis:boltpkg/bolt success
  build-stats travis:boltpkg/bolt clean
"""


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Args:
        value: Raw command-line argument value.

    Returns:
        The validated positive integer.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _build_number(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a build number") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("must not be negative")

    return parsed


def _seconds(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a number of seconds") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("must not be negative")

    return parsed


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed CLI arguments containing the repository string, the command and
        the download/query options.
    """
    parser = argparse.ArgumentParser(
        prog="build-stats",
        description=(
            "Download the build history of a repository from a CI service and "
            "calculate build time and success statistics over time."
        ),
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "repository",
        metavar="<service>:<user>/<repo>",
        help="Repository to operate on, for example travis:boltpkg/bolt.",
    )
    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="Operation to run.",
    )
    parser.add_argument(
        "--auth",
        default=None,
        help="(download) Credential for private repositories (default: $BUILD_STATS_AUTH).",
    )
    parser.add_argument(
        "--concurrency",
        type=_positive_int,
        default=DEFAULT_CONCURRENCY,
        help=f"(download) Number of parallel requests (default: {DEFAULT_CONCURRENCY}).",
    )
    parser.add_argument(
        "--since",
        type=_build_number,
        default=None,
        help="(download) Download builds after this number instead of the last cached build.",
    )
    parser.add_argument(
        "--branch",
        default=None,
        help="(calculate/history/success) Comma-separated branches to include (default: all).",
    )
    parser.add_argument(
        "--result",
        default=None,
        help="(calculate/history/success) Comma-separated results to include (default: all).",
    )
    parser.add_argument(
        "--period",
        type=_positive_int,
        default=DEFAULT_PERIOD_DAYS,
        help=f"(calculate/success) Days in one period (default: {DEFAULT_PERIOD_DAYS}).",
    )
    parser.add_argument(
        "--last",
        type=_positive_int,
        default=DEFAULT_PERIOD_COUNT,
        help=f"(calculate/success) Number of periods to go back (default: {DEFAULT_PERIOD_COUNT}).",
    )
    parser.add_argument(
        "--threshold",
        type=_seconds,
        default=None,
        help="(calculate/history) Build time in seconds under which a period is healthy "
        "(default: mean of all periods).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON instead of text.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log progress to stderr.",
    )

    return parser.parse_args(argv)
