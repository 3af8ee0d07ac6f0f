"""Provider adapter interface and the shared paginated REST client."""

from __future__ import annotations

import functools
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from ..errors import ProviderError
from ..models import BuildRecord, Page, RepositoryIdentity

logger = logging.getLogger(__name__)

PageFetcher = Callable[[], Page]


class Provider(ABC):
    """Source of normalized build records for one repository."""

    @abstractmethod
    def fetch_page(self, after_build_number: Optional[int]) -> Page:
        """Return the next page of builds numbered above ``after_build_number``.

        ``None`` asks for the oldest builds. Records are ascending by number.
        """

    def plan_pages(self, after_build_number: Optional[int]) -> Optional[List[PageFetcher]]:
        """Return independent fetchers covering every build above ``after_build_number``.

        Providers that cannot predict page boundaries return ``None`` and are
        driven page by page through :meth:`fetch_page` instead.
        """
        return None


class PagedHttpProvider(Provider):
    """Client for CI build listings paginated by offset, oldest build first.

    Subclasses describe the endpoint and translate its payload; this class
    handles the HTTP session, error mapping and page planning. Listing
    responses must report the total number of builds so page boundaries can
    be predicted.
    """

    PAGE_SIZE = 100

    def __init__(
        self,
        identity: RepositoryIdentity,
        credential: Optional[str] = None,
        timeout_seconds: int = 30,
    ) -> None:
        """Initialize a client for one repository.

        Args:
            identity: Repository whose builds are listed.
            credential: Optional caller-supplied token forwarded to the service.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._identity = identity
        self._timeout_seconds = timeout_seconds
        self._pages: Dict[int, Tuple[List[BuildRecord], int]] = {}

        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if credential:
            self._authenticate(credential)

    @abstractmethod
    def _authenticate(self, credential: str) -> None:
        """Attach ``credential`` to ``self._session``."""

    @abstractmethod
    def _listing_url(self) -> str:
        """Return the URL of the build listing endpoint."""

    @abstractmethod
    def _page_params(self, index: int) -> Dict[str, Any]:
        """Return query parameters selecting the zero-based page ``index``."""

    @abstractmethod
    def _parse_listing(self, payload: Dict[str, Any]) -> Tuple[List[BuildRecord], int]:
        """Translate one listing payload into ``(records, total_build_count)``."""

    def _parse_datetime(self, value: Optional[str]) -> Optional[datetime]:
        """Parse ISO8601 timestamps into timezone-aware UTC datetimes."""
        if not value:
            return None

        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ProviderError(f"Unparseable timestamp in provider payload: {value!r}") from exc
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    def _extract_retry_after(self, response: requests.Response) -> Optional[int]:
        """Return the ``Retry-After`` header in whole seconds when it is numeric."""
        retry_after_header = response.headers.get("Retry-After")
        if not retry_after_header:
            return None
        try:
            return max(1, int(retry_after_header))
        except ValueError:
            return None

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a single GET request and decode its JSON object.

        Retrying is left to the caller; failures worth retrying are flagged as
        transient on the raised error.

        Raises:
            ProviderError: If the request fails, returns HTTP >= 400, or does
                not return a JSON object.
        """
        try:
            response = self._session.get(url, params=params, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            raise ProviderError(f"Request failed: GET {url}: {exc}", transient=True) from exc

        status_code = response.status_code
        if status_code >= 400:
            is_retryable = status_code == 429 or 500 <= status_code <= 599
            raise ProviderError(
                f"Provider API request failed: GET {url} returned {status_code} - {response.text}",
                status_code=status_code,
                transient=is_retryable,
                retry_after=self._extract_retry_after(response) if is_retryable else None,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"Provider API returned invalid JSON: GET {url}", status_code=status_code) from exc

        if not isinstance(payload, dict):
            raise ProviderError(
                f"Provider API returned unexpected payload shape: GET {url}",
                status_code=status_code,
            )

        return payload

    def _fetch_listing(self, index: int) -> Tuple[List[BuildRecord], int]:
        if index not in self._pages:
            payload = self._get_json(self._listing_url(), params=self._page_params(index))
            records, total = self._parse_listing(payload)
            self._pages[index] = (sorted(records, key=lambda record: record.number), total)
            logger.debug(
                "Fetched build listing page",
                extra={"repository": str(self._identity), "page": index, "builds": len(records)},
            )
        return self._pages[index]

    def _page_count(self, total: int) -> int:
        return math.ceil(total / self.PAGE_SIZE)

    def _locate(self, after_build_number: Optional[int]) -> Tuple[int, int]:
        """Find the first page holding a build above ``after_build_number``.

        Page ``i``'s last build number grows with ``i``, so a binary search
        needs only a logarithmic number of listing requests.

        Returns:
            ``(first_page_index, page_count)``; the index equals the count when
            nothing newer exists.
        """
        _, total = self._fetch_listing(0)
        page_count = self._page_count(total)
        if after_build_number is None:
            return 0, page_count

        low, high = 0, page_count
        while low < high:
            middle = (low + high) // 2
            records, _ = self._fetch_listing(middle)
            if not records or records[-1].number > after_build_number:
                high = middle
            else:
                low = middle + 1
        return low, page_count

    def _page_at(self, index: int, after_build_number: Optional[int]) -> Page:
        records, total = self._fetch_listing(index)
        newer = [
            record
            for record in records
            if after_build_number is None or record.number > after_build_number
        ]
        return Page(records=newer, has_more=index + 1 < self._page_count(total))

    def fetch_page(self, after_build_number: Optional[int]) -> Page:
        # Listings shift as builds are created; start from fresh responses.
        self._pages.clear()
        start, page_count = self._locate(after_build_number)
        if start >= page_count:
            return Page(records=[], has_more=False)
        return self._page_at(start, after_build_number)

    def plan_pages(self, after_build_number: Optional[int]) -> Optional[List[PageFetcher]]:
        start, page_count = self._locate(after_build_number)
        return [
            functools.partial(self._page_at, index, after_build_number)
            for index in range(start, page_count)
        ]
