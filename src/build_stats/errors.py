"""Custom exception types for build-stats."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class BuildStatsError(Exception):
    """Base exception for all recoverable build-stats errors."""


class ConfigurationError(BuildStatsError):
    """Raised when runtime configuration values are missing or invalid."""


class InvalidParameter(ConfigurationError):
    """Raised when filter, period, count or concurrency values are invalid."""


class RepositoryIdentityError(ConfigurationError):
    """Raised when a ``host:user/repo`` identity is malformed or names an unknown host."""


class ProviderError(BuildStatsError):
    """Raised when a CI provider request fails or returns an unexpected response.

    ``transient`` marks failures worth retrying (connection errors, HTTP 429
    and 5xx). ``retry_after`` carries the provider's ``Retry-After`` hint in
    seconds when one was sent.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = False,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient
        self.retry_after = retry_after


class CacheCorruptError(BuildStatsError):
    """Raised when a cached build snapshot cannot be read or fails validation."""

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(f"{message} ({path})")
        self.path = path


class DownloadFailed(BuildStatsError):
    """Raised when a download aborts; pages committed before the failure stay cached."""

    def __init__(
        self,
        message: str,
        cause: ProviderError,
        high_water_mark: Optional[int] = None,
    ) -> None:
        super().__init__(f"{message}: {cause}")
        self.cause = cause
        self.high_water_mark = high_water_mark
