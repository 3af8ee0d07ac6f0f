"""Incremental, bounded-concurrency download of build history into the cache.

Business logic:
- Resume after the cache's highest build number unless a starting build is
  given explicitly.
- When the provider can plan its pages, fetch them on a thread pool whose size
  is the concurrency limit; otherwise walk pages one at a time.
- Commit pages to the cache as they arrive, in page order, so an aborted run
  leaves a gap-free prefix that the next run resumes from.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Set, TypeVar

from .cache import CacheStore
from .errors import DownloadFailed, InvalidParameter, ProviderError
from .models import DownloadResult, Page, RepositoryIdentity
from .providers.base import PageFetcher, Provider

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MAX_BACKOFF_SECONDS = 30

T = TypeVar("T")


def _backoff_seconds(error: ProviderError, attempt: int) -> int:
    """Compute exponential backoff seconds, honoring Retry-After when available."""
    if error.retry_after is not None:
        return min(MAX_BACKOFF_SECONDS, max(1, error.retry_after))
    return min(MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))


def call_with_retry(
    operation: Callable[[], T],
    sleep: Callable[[float], None] = time.sleep,
    max_attempts: int = MAX_ATTEMPTS,
) -> T:
    """Run ``operation``, retrying transient provider failures.

    Raises:
        ProviderError: The last error once attempts are exhausted, or the
            first non-transient one.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except ProviderError as exc:
            if not exc.transient or attempt == max_attempts:
                raise
            delay = _backoff_seconds(exc, attempt)
            logger.info(
                "Retrying provider request",
                extra={"attempt": attempt, "delay_seconds": delay, "error": str(exc)},
            )
            sleep(delay)

    raise ProviderError(f"Provider request was not attempted (max_attempts={max_attempts}).")


class _Committer:
    """Appends pages to the cache and tracks the download frontier."""

    def __init__(self, store: CacheStore, identity: RepositoryIdentity, start_after: Optional[int]) -> None:
        self._store = store
        self._identity = identity
        self.frontier = start_after
        self.fetched = 0
        self.pages = 0

    def commit(self, page: Page) -> None:
        self.pages += 1
        if not page.records:
            return

        self._store.append(self._identity, page.records)
        self.fetched += len(page.records)
        highest = max(record.number for record in page.records)
        if self.frontier is None or highest > self.frontier:
            self.frontier = highest

        logger.info(
            "Committed build page",
            extra={
                "repository": str(self._identity),
                "builds": len(page.records),
                "frontier": self.frontier,
            },
        )


def _run_planned(
    fetchers: List[PageFetcher],
    committer: _Committer,
    concurrency: int,
    sleep: Callable[[float], None],
) -> bool:
    """Fetch planned pages concurrently and commit them in page order.

    Returns:
        ``has_more`` of the final page, ``False`` when nothing was planned.
    """
    if not fetchers:
        return False

    completed: Dict[int, Page] = {}
    failures: Dict[int, BaseException] = {}
    next_index = 0
    last_has_more = False

    executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="build-stats-download")
    try:
        pending: Dict[Future, int] = {
            executor.submit(call_with_retry, fetcher, sleep): index
            for index, fetcher in enumerate(fetchers)
        }
        in_flight: Set[Future] = set(pending)

        while in_flight:
            done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                error = future.exception()
                if error is None:
                    completed[pending[future]] = future.result()
                else:
                    failures[pending[future]] = error

            if failures:
                # Only pages before the earliest failure can still be committed.
                first_failure = min(failures)
                for future in [future for future in in_flight if pending[future] > first_failure]:
                    future.cancel()
                    in_flight.discard(future)

            while next_index in completed:
                page = completed.pop(next_index)
                committer.commit(page)
                last_has_more = page.has_more
                next_index += 1
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    if failures:
        raise failures[min(failures)]
    return last_has_more


def _run_sequential(
    provider: Provider,
    committer: _Committer,
    sleep: Callable[[float], None],
) -> None:
    while True:
        frontier = committer.frontier
        page = call_with_retry(lambda: provider.fetch_page(frontier), sleep)
        committer.commit(page)

        if not page.has_more or committer.frontier == frontier:
            return


def download(
    store: CacheStore,
    provider: Provider,
    identity: RepositoryIdentity,
    concurrency: int,
    since: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DownloadResult:
    """Download every build newer than the cached (or given) build number.

    Args:
        store: Cache receiving the records.
        provider: Adapter for the repository's CI service.
        identity: Repository being downloaded.
        concurrency: Maximum number of provider requests in flight.
        since: Build number to resume after instead of the cache's high-water mark.
        sleep: Backoff hook, replaced in tests.

    Returns:
        Counts of fetched builds and pages plus the resulting high-water mark.

    Raises:
        InvalidParameter: If ``concurrency`` is below 1.
        DownloadFailed: If a page could not be fetched; earlier pages stay cached.
    """
    if concurrency < 1:
        raise InvalidParameter("Invalid value for 'concurrency': expected an integer greater than 0.")

    start_after = since if since is not None else store.high_water_mark(identity)
    committer = _Committer(store, identity, start_after)

    logger.info(
        "Starting build download",
        extra={"repository": str(identity), "start_after": start_after, "concurrency": concurrency},
    )

    try:
        fetchers = call_with_retry(lambda: provider.plan_pages(start_after), sleep)
        if fetchers is None:
            _run_sequential(provider, committer, sleep)
        elif _run_planned(fetchers, committer, concurrency, sleep):
            _run_sequential(provider, committer, sleep)
    except ProviderError as exc:
        raise DownloadFailed(
            f"Download of {identity} stopped after {committer.fetched} builds",
            cause=exc,
            high_water_mark=committer.frontier,
        ) from exc

    return DownloadResult(
        start_after=start_after,
        fetched=committer.fetched,
        pages=committer.pages,
        high_water_mark=store.high_water_mark(identity),
    )
