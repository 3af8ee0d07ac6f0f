"""Statistics and formatting helpers for build reporting.

This module provides utilities for:
- Averaging duration samples.
- Formatting second-based durations as ``HH:MM:SS`` and rates as percentages.
- Building human-readable reports for periods, build listings and success counts.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional

from .models import BuildRecord, PeriodBucket, RepositoryIdentity, SuccessSummary


def mean(samples: Iterable[Optional[float]]) -> Optional[float]:
    """Return the arithmetic mean of the valid samples.

    ``None`` and NaN samples are ignored. Returns ``None`` when no valid sample
    remains, so an empty period is never reported as zero.
    """
    clean_samples = [
        sample
        for sample in samples
        if sample is not None and not math.isnan(sample)
    ]
    if not clean_samples:
        return None
    return math.fsum(clean_samples) / len(clean_samples)


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as ``HH:MM:SS``.

    Args:
        seconds: Duration in seconds.

    Returns:
        ``"n/a"`` when ``seconds`` is ``None``; otherwise a rounded
        ``HH:MM:SS`` string.
    """
    if seconds is None:
        return "n/a"

    total_seconds = max(0, int(round(seconds)))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{remaining_seconds:02d}"


def format_rate(rate: Optional[float]) -> str:
    """Format a ``0..1`` ratio as a percentage with one decimal, ``"n/a"`` for ``None``."""
    if rate is None:
        return "n/a"
    return f"{rate * 100:.1f}%"


def _health_label(is_healthy: Optional[bool]) -> str:
    if is_healthy is None:
        return "-"
    return "ok" if is_healthy else "slow"


def render_buckets(identity: RepositoryIdentity, buckets: List[PeriodBucket], period_days: int) -> str:
    """Generate a human-readable table of period statistics.

    One row per period, most recent first, with the period start date, mean
    duration, success/failure counts, success rate and health label.

    Args:
        identity: Repository the statistics belong to.
        buckets: Periods as returned by the aggregator.
        period_days: Period length, shown in the header.

    Returns:
        Formatted multi-line text report.
    """
    lines = [
        f"Repository: {identity}",
        f"Build statistics ({len(buckets)} periods of {period_days} day(s))",
        "",
        f"{'Period start':<12}  {'Mean':>8}  {'Passed':>6}  {'Failed':>6}  {'Rate':>6}  Health",
    ]

    for bucket in buckets:
        lines.append(
            f"{bucket.start.date().isoformat():<12}"
            f"  {format_duration(bucket.mean_duration_seconds):>8}"
            f"  {bucket.success_count:>6}"
            f"  {bucket.failed_count:>6}"
            f"  {format_rate(bucket.success_rate):>6}"
            f"  {_health_label(bucket.is_healthy)}"
        )

    return "\n".join(lines)


def render_history(records: List[BuildRecord], threshold_seconds: Optional[float] = None) -> str:
    """Generate one line per build; builds slower than ``threshold_seconds`` are flagged."""
    lines = []
    for record in records:
        finished = record.finished_at.isoformat() if record.finished_at else "running"
        line = (
            f"#{record.number:<6} {record.result:<10} {format_duration(record.duration_seconds):>8}"
            f"  {finished}  {record.branch}"
        )
        duration = record.duration_seconds
        if threshold_seconds is not None and duration is not None and duration > threshold_seconds:
            line += "  (slow)"
        lines.append(line)

    if not lines:
        return "No builds found."
    return "\n".join(lines)


def render_success(summary: SuccessSummary) -> str:
    lines = [
        f"Builds from {summary.start.date().isoformat()} to {summary.end.date().isoformat()}",
        f"   Successful: {summary.success_count}",
        f"   Failed: {summary.failed_count}",
        f"   Success rate: {format_rate(summary.success_rate)}",
    ]
    return "\n".join(lines)
