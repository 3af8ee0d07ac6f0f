"""Domain models for CI build history and the statistics computed from it.

Build records are the canonical shape every provider adapter normalizes to and
the shape persisted in the local cache. The remaining dataclasses are computed
views that are never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

SUCCESSFUL = "SUCCESSFUL"
FAILED = "FAILED"
ERRORED = "ERRORED"
CANCELED = "CANCELED"

TERMINAL_RESULTS = frozenset({SUCCESSFUL, FAILED, ERRORED, CANCELED})


@dataclass(frozen=True)
class RepositoryIdentity:
    """Identifies one repository on one CI service; also the cache partition key."""

    host: str
    user: str
    repo: str

    def __str__(self) -> str:
        return f"{self.host}:{self.user}/{self.repo}"


@dataclass(slots=True)
class BuildRecord:
    """Represents one CI run, completed or still in progress."""

    number: int
    branch: str
    result: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    @property
    def duration_seconds(self) -> Optional[float]:
        """Elapsed run time, or ``None`` until both timestamps are known."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def is_terminal(self) -> bool:
        """Whether the run has reached a final result."""
        return self.result in TERMINAL_RESULTS or self.finished_at is not None


@dataclass(slots=True)
class Page:
    """One page of build records returned by a provider adapter."""

    records: list[BuildRecord]
    has_more: bool


@dataclass(slots=True)
class PeriodBucket:
    """Aggregated statistics for the half-open window ``[start, end)``."""

    start: datetime
    end: datetime
    mean_duration_seconds: Optional[float]
    success_count: int
    failed_count: int
    is_healthy: Optional[bool] = None

    @property
    def total_count(self) -> int:
        return self.success_count + self.failed_count

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_count == 0:
            return None
        return self.success_count / self.total_count


@dataclass(slots=True)
class SuccessSummary:
    """Success and failure counts collapsed over one time span."""

    start: datetime
    end: datetime
    success_count: int
    failed_count: int

    @property
    def total_count(self) -> int:
        return self.success_count + self.failed_count

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_count == 0:
            return None
        return self.success_count / self.total_count


@dataclass(slots=True)
class DownloadResult:
    """Outcome of one download run."""

    start_after: Optional[int]
    fetched: int
    pages: int
    high_water_mark: Optional[int]
