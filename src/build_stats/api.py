"""Operations exposed to the command line: download, calculate, history, success, clean, cache.

Every operation validates its inputs before touching the cache or the network
and reports problems by raising; none of them prints.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from . import aggregate as aggregation
from .cache import CacheStore
from .config import (
    DownloadOptions,
    QueryOptions,
    load_settings,
    validate_download_options,
    validate_identity,
    validate_query_options,
)
from .downloader import download as run_download
from .models import BuildRecord, DownloadResult, PeriodBucket, RepositoryIdentity, SuccessSummary
from .providers import Provider, create_provider


def _default_store() -> CacheStore:
    return CacheStore(load_settings().cache_dir)


def download(
    identity: RepositoryIdentity,
    options: DownloadOptions,
    store: Optional[CacheStore] = None,
    provider: Optional[Provider] = None,
) -> DownloadResult:
    """Fetch builds newer than the cache (or ``options.since``) into the cache.

    Raises:
        RepositoryIdentityError: If the identity is malformed or its service unknown.
        InvalidParameter: If the concurrency or starting build is invalid.
        DownloadFailed: If fetching stopped early; progress made so far is kept.
    """
    validate_identity(identity)
    validate_download_options(options)

    if store is None or provider is None:
        settings = load_settings(credential=options.credential)
        store = store or CacheStore(settings.cache_dir)
        provider = provider or create_provider(identity, credential=settings.credential)

    return run_download(
        store,
        provider,
        identity,
        concurrency=options.concurrency,
        since=options.since,
    )


def calculate(
    identity: RepositoryIdentity,
    options: QueryOptions,
    store: Optional[CacheStore] = None,
    now: Optional[datetime] = None,
) -> List[PeriodBucket]:
    """Return per-period statistics for the cached builds, most recent first."""
    validate_identity(identity)
    validate_query_options(options)
    store = store or _default_store()

    return aggregation.aggregate(
        store.read_all(identity),
        branches=options.branches,
        results=options.results,
        period_days=options.period_days,
        period_count=options.period_count,
        threshold_seconds=options.threshold_seconds,
        now=now,
    )


def history(
    identity: RepositoryIdentity,
    options: QueryOptions,
    store: Optional[CacheStore] = None,
) -> List[BuildRecord]:
    """Return cached builds matching the branch and result filters, oldest first."""
    validate_identity(identity)
    validate_query_options(options)
    store = store or _default_store()

    return aggregation.filter_records(store.read_all(identity), options.branches, options.results)


def success(
    identity: RepositoryIdentity,
    options: QueryOptions,
    store: Optional[CacheStore] = None,
    now: Optional[datetime] = None,
) -> SuccessSummary:
    """Return success and failure counts over the whole requested span."""
    validate_identity(identity)
    validate_query_options(options)
    store = store or _default_store()

    return aggregation.summarize_success(
        store.read_all(identity),
        branches=options.branches,
        results=options.results,
        period_days=options.period_days,
        period_count=options.period_count,
        now=now,
    )


def clean(identity: RepositoryIdentity, store: Optional[CacheStore] = None) -> None:
    """Delete the cached history of ``identity``; succeeds when there is none."""
    validate_identity(identity)
    store = store or _default_store()
    store.delete(identity)


def cache_location(identity: RepositoryIdentity, store: Optional[CacheStore] = None) -> Path:
    """Return the directory where ``identity``'s history is cached."""
    validate_identity(identity)
    store = store or _default_store()
    return store.location_of(identity)
