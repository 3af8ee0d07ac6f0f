"""Configuration parsing and validation for build-stats."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import FrozenSet, Optional

from .errors import ConfigurationError, InvalidParameter, RepositoryIdentityError
from .models import RepositoryIdentity

DEFAULT_CONCURRENCY = 10
DEFAULT_PERIOD_DAYS = 1
DEFAULT_PERIOD_COUNT = 30

_IDENTITY_PATTERN = re.compile(r"^(?P<host>[^:]+):(?P<user>[^/]+)/(?P<repo>[^/]+)$")
_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass(frozen=True)
class Settings:
    """Process-level settings resolved from arguments and the environment."""

    cache_dir: Path
    credential: Optional[str]


@dataclass(frozen=True)
class DownloadOptions:
    """Options for the ``download`` operation."""

    credential: Optional[str] = None
    concurrency: int = DEFAULT_CONCURRENCY
    since: Optional[int] = None


@dataclass(frozen=True)
class QueryOptions:
    """Filter and windowing options shared by ``calculate``, ``history`` and ``success``."""

    branches: Optional[FrozenSet[str]] = None
    results: Optional[FrozenSet[str]] = None
    period_days: int = DEFAULT_PERIOD_DAYS
    period_count: int = DEFAULT_PERIOD_COUNT
    threshold_seconds: Optional[float] = None


def load_settings(credential: Optional[str] = None) -> Settings:
    """Build settings from explicit values and environment overrides.

    Args:
        credential: Credential passed on the command line; takes precedence
            over ``BUILD_STATS_AUTH``.

    Returns:
        A validated ``Settings`` instance.

    Raises:
        ConfigurationError: If ``BUILD_STATS_CACHE_DIR`` is set but blank.
    """
    cache_dir_override = os.getenv("BUILD_STATS_CACHE_DIR")
    if cache_dir_override is not None and not cache_dir_override.strip():
        raise ConfigurationError("Invalid value for 'BUILD_STATS_CACHE_DIR': expected a directory path.")

    if cache_dir_override:
        cache_dir = Path(cache_dir_override.strip()).expanduser()
    else:
        cache_dir = Path.home() / ".cache" / "build-stats"

    if credential is None:
        credential = os.getenv("BUILD_STATS_AUTH", "").strip() or None

    return Settings(cache_dir=cache_dir, credential=credential)


def parse_repository(text: str) -> RepositoryIdentity:
    """Parse a ``host:user/repo`` string into a validated identity.

    Raises:
        RepositoryIdentityError: If the string does not have the expected shape.
    """
    match = _IDENTITY_PATTERN.match(text.strip())
    if not match:
        raise RepositoryIdentityError(f"Invalid repo '{text}', should be 'host:user/repo'.")

    identity = RepositoryIdentity(
        host=match.group("host").lower(),
        user=match.group("user"),
        repo=match.group("repo"),
    )
    validate_identity(identity)
    return identity


def validate_identity(identity: RepositoryIdentity) -> None:
    """Reject identities whose parts are empty or unsafe as path segments."""
    for field_name in ("host", "user", "repo"):
        value = getattr(identity, field_name)
        if not isinstance(value, str) or not value:
            raise RepositoryIdentityError(f"Repository {field_name} must be a non-empty string.")
        if value in (".", "..") or not _SAFE_SEGMENT.match(value):
            raise RepositoryIdentityError(f"Repository {field_name} '{value}' contains unsupported characters.")


def validate_download_options(options: DownloadOptions) -> None:
    if options.concurrency < 1:
        raise InvalidParameter("Invalid value for 'concurrency': expected an integer greater than 0.")
    if options.since is not None and options.since < 0:
        raise InvalidParameter("Invalid value for 'since': expected a build number of 0 or more.")


def validate_query_options(options: QueryOptions) -> None:
    """Validate windowing and filter options before any cache access.

    Raises:
        InvalidParameter: If the period length, period count or threshold is
            out of range, the window reaches before year 1, or a filter set is
            empty.
    """
    if options.period_days <= 0:
        raise InvalidParameter("Invalid value for 'period': expected an integer greater than 0.")
    if options.period_count <= 0:
        raise InvalidParameter("Invalid value for 'last': expected an integer greater than 0.")
    try:
        datetime.now(timezone.utc) - timedelta(days=options.period_days * options.period_count)
    except OverflowError:
        raise InvalidParameter(
            "Invalid value for 'last': the requested periods reach before the earliest supported date."
        ) from None
    if options.threshold_seconds is not None and options.threshold_seconds < 0:
        raise InvalidParameter("Invalid value for 'threshold': expected a non-negative number of seconds.")
    if options.branches is not None and not options.branches:
        raise InvalidParameter("Invalid value for 'branch': expected at least one branch name.")
    if options.results is not None and not options.results:
        raise InvalidParameter("Invalid value for 'result': expected at least one result name.")


def parse_csv(text: Optional[str]) -> Optional[FrozenSet[str]]:
    """Split a comma-separated filter; ``None``, blank and ``*`` mean no filter."""
    if text is None:
        return None

    values = frozenset(part.strip() for part in text.split(",") if part.strip())
    if not values or "*" in values:
        return None
    return values
