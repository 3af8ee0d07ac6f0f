"""Time-bucketed build statistics computed from cached build records.

This module computes:
- Filtered build listings (branch and result filters).
- Per-period mean duration and success/failure counts, most recent first.
- Healthy/unhealthy classification of each period against a duration threshold.
- A single success/failure summary over the whole requested span.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional

from .errors import InvalidParameter
from .models import SUCCESSFUL, BuildRecord, PeriodBucket, SuccessSummary
from .stats import mean

logger = logging.getLogger(__name__)

_MICROSECOND = timedelta(microseconds=1)


def filter_records(
    records: Iterable[BuildRecord],
    branches: Optional[FrozenSet[str]] = None,
    results: Optional[FrozenSet[str]] = None,
) -> List[BuildRecord]:
    """Keep records on one of ``branches`` with one of ``results``.

    ``None`` disables the corresponding filter. Result names match without
    regard to case. The output is ascending by build number.
    """
    wanted_results = {result.upper() for result in results} if results is not None else None

    matching = [
        record
        for record in records
        if (branches is None or record.branch in branches)
        and (wanted_results is None or record.result.upper() in wanted_results)
    ]
    return sorted(matching, key=lambda record: record.number)


def _validate_window(period_days: int, period_count: int, now: datetime) -> None:
    if period_days <= 0:
        raise InvalidParameter("Invalid value for 'period': expected an integer greater than 0.")
    if period_count <= 0:
        raise InvalidParameter("Invalid value for 'last': expected an integer greater than 0.")
    try:
        now - timedelta(days=period_days * period_count)
    except OverflowError:
        raise InvalidParameter(
            f"Invalid window: {period_count} periods of {period_days} day(s) reach before the earliest supported date."
        ) from None


def _placement_time(record: BuildRecord) -> Optional[datetime]:
    """Instant used to place a record in a period.

    Finished runs are placed by completion time. Runs without one are placed by
    start time and only when their result is already final.
    """
    if record.finished_at is not None:
        return record.finished_at
    if record.is_terminal:
        return record.started_at
    return None


def _bucket_index(moment: datetime, now: datetime, period: timedelta) -> int:
    """Return ``k`` such that ``moment`` lies in ``[now - (k+1)*period, now - k*period)``.

    Negative when ``moment`` is at or after ``now``.
    """
    elapsed = (now - moment) // _MICROSECOND
    if elapsed <= 0:
        return -1
    return (elapsed - 1) // (period // _MICROSECOND)


def classify(buckets: List[PeriodBucket], threshold_seconds: Optional[float] = None) -> Optional[float]:
    """Mark each bucket healthy when its mean duration is within the threshold.

    When ``threshold_seconds`` is ``None`` the threshold is the mean of all
    bucket means. Buckets without a mean stay unclassified.

    Returns:
        The threshold applied, or ``None`` when no bucket has a mean.
    """
    if threshold_seconds is None:
        threshold_seconds = mean(
            bucket.mean_duration_seconds for bucket in buckets if bucket.mean_duration_seconds is not None
        )

    for bucket in buckets:
        if bucket.mean_duration_seconds is None or threshold_seconds is None:
            bucket.is_healthy = None
        else:
            bucket.is_healthy = bucket.mean_duration_seconds <= threshold_seconds

    return threshold_seconds


def aggregate(
    records: Iterable[BuildRecord],
    branches: Optional[FrozenSet[str]] = None,
    results: Optional[FrozenSet[str]] = None,
    period_days: int = 1,
    period_count: int = 30,
    threshold_seconds: Optional[float] = None,
    now: Optional[datetime] = None,
) -> List[PeriodBucket]:
    """Compute per-period build statistics, most recent period first.

    Period ``k`` covers ``[now - (k+1)*period_days, now - k*period_days)``.
    Every period is returned, including those without matching builds, whose
    mean duration and success rate are ``None``.

    Args:
        records: Cached build records.
        branches: Branch names to include; ``None`` for all.
        results: Result names to include; ``None`` for all.
        period_days: Length of each period in days.
        period_count: Number of periods walking back from ``now``.
        threshold_seconds: Healthy duration limit; defaults to the mean of the
            period means.
        now: Anchor instant; defaults to the current UTC time.

    Raises:
        InvalidParameter: If ``period_days`` or ``period_count`` is not positive,
            or the window reaches back before the earliest representable date.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    _validate_window(period_days, period_count, now)

    period = timedelta(days=period_days)
    durations: Dict[int, List[float]] = {index: [] for index in range(period_count)}
    successes = [0] * period_count
    failures = [0] * period_count

    for record in filter_records(records, branches, results):
        moment = _placement_time(record)
        if moment is None:
            continue

        index = _bucket_index(moment, now, period)
        if not 0 <= index < period_count:
            continue

        duration = record.duration_seconds
        if duration is not None:
            durations[index].append(duration)

        if record.is_terminal:
            if record.result == SUCCESSFUL:
                successes[index] += 1
            else:
                failures[index] += 1

    buckets = [
        PeriodBucket(
            start=now - period * (index + 1),
            end=now - period * index,
            mean_duration_seconds=mean(durations[index]),
            success_count=successes[index],
            failed_count=failures[index],
        )
        for index in range(period_count)
    ]

    applied_threshold = classify(buckets, threshold_seconds)
    logger.debug(
        "Aggregated build periods",
        extra={"periods": period_count, "period_days": period_days, "threshold_seconds": applied_threshold},
    )
    return buckets


def summarize_success(
    records: Iterable[BuildRecord],
    branches: Optional[FrozenSet[str]] = None,
    results: Optional[FrozenSet[str]] = None,
    period_days: int = 1,
    period_count: int = 30,
    now: Optional[datetime] = None,
) -> SuccessSummary:
    """Count successful and failed builds over ``period_days * period_count`` days.

    Uses the same filters and placement rules as :func:`aggregate`, collapsed
    into a single window ending at ``now``.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    _validate_window(period_days, period_count, now)

    buckets = aggregate(
        records,
        branches=branches,
        results=results,
        period_days=period_days * period_count,
        period_count=1,
        now=now,
    )
    span = buckets[0]
    return SuccessSummary(
        start=span.start,
        end=span.end,
        success_count=span.success_count,
        failed_count=span.failed_count,
    )
