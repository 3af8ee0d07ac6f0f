"""Bitbucket Pipelines adapter."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from requests.auth import HTTPBasicAuth

from ..errors import ProviderError
from ..models import CANCELED, ERRORED, FAILED, SUCCESSFUL, BuildRecord
from .base import PagedHttpProvider

_RESULTS = {
    "SUCCESSFUL": SUCCESSFUL,
    "FAILED": FAILED,
    "ERROR": ERRORED,
    "STOPPED": CANCELED,
}


class BitbucketProvider(PagedHttpProvider):
    """Lists pipelines of a Bitbucket Cloud repository, oldest first."""

    _BASE_URL = "https://api.bitbucket.org/2.0"

    def _authenticate(self, credential: str) -> None:
        # App passwords are given as "username:password"; anything else is a token.
        if ":" in credential:
            username, password = credential.split(":", 1)
            self._session.auth = HTTPBasicAuth(username, password)
        else:
            self._session.headers.update({"Authorization": f"Bearer {credential}"})

    def _listing_url(self) -> str:
        return f"{self._BASE_URL}/repositories/{self._identity.user}/{self._identity.repo}/pipelines/"

    def _page_params(self, index: int) -> Dict[str, Any]:
        return {"page": index + 1, "pagelen": self.PAGE_SIZE, "sort": "created_on"}

    def _parse_listing(self, payload: Dict[str, Any]) -> Tuple[List[BuildRecord], int]:
        total = payload.get("size")
        if not isinstance(total, int):
            raise ProviderError(f"Bitbucket pipelines payload is missing 'size': {self._identity}")

        records: List[BuildRecord] = []
        for item in payload.get("values", []):
            build_number = item.get("build_number")
            if build_number is None:
                raise ProviderError(
                    "Bitbucket pipeline payload is missing required fields: "
                    f"repository={self._identity}, payload={item}"
                )

            state = item.get("state") or {}
            result_name = (state.get("result") or {}).get("name")
            if result_name:
                result = _RESULTS.get(result_name, result_name)
            else:
                result = str(state.get("name") or "UNKNOWN")

            target = item.get("target") or {}
            records.append(
                BuildRecord(
                    number=int(build_number),
                    branch=str(target.get("ref_name") or ""),
                    result=result,
                    started_at=self._parse_datetime(item.get("created_on")),
                    finished_at=self._parse_datetime(item.get("completed_on")),
                )
            )

        return records, total
