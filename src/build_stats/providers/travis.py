"""Travis CI adapter (API v3)."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple
from urllib.parse import quote

from ..errors import ProviderError
from ..models import CANCELED, ERRORED, FAILED, SUCCESSFUL, BuildRecord
from .base import PagedHttpProvider

_RESULTS = {
    "passed": SUCCESSFUL,
    "failed": FAILED,
    "errored": ERRORED,
    "canceled": CANCELED,
}


class TravisProvider(PagedHttpProvider):
    """Lists builds of a Travis CI repository, oldest first."""

    _BASE_URL = "https://api.travis-ci.com"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._session.headers.update({"Travis-API-Version": "3"})

    def _authenticate(self, credential: str) -> None:
        self._session.headers.update({"Authorization": f"token {credential}"})

    def _listing_url(self) -> str:
        slug = quote(f"{self._identity.user}/{self._identity.repo}", safe="")
        return f"{self._BASE_URL}/repo/{slug}/builds"

    def _page_params(self, index: int) -> Dict[str, Any]:
        return {"limit": self.PAGE_SIZE, "offset": index * self.PAGE_SIZE, "sort_by": "id"}

    def _parse_listing(self, payload: Dict[str, Any]) -> Tuple[List[BuildRecord], int]:
        pagination = payload.get("@pagination") or {}
        total = pagination.get("count")
        if not isinstance(total, int):
            raise ProviderError(f"Travis builds payload is missing '@pagination.count': {self._identity}")

        records: List[BuildRecord] = []
        for item in payload.get("builds", []):
            number = item.get("number")
            state = item.get("state")
            if number is None or not state:
                raise ProviderError(
                    "Travis build payload is missing required fields: "
                    f"repository={self._identity}, payload={item}"
                )

            try:
                build_number = int(number)
            except (TypeError, ValueError) as exc:
                raise ProviderError(f"Travis build has a non-numeric number: {number!r}") from exc

            branch = item.get("branch") or {}
            records.append(
                BuildRecord(
                    number=build_number,
                    branch=str(branch.get("name") or ""),
                    result=_RESULTS.get(str(state), str(state)),
                    started_at=self._parse_datetime(item.get("started_at")),
                    finished_at=self._parse_datetime(item.get("finished_at")),
                )
            )

        return records, total
