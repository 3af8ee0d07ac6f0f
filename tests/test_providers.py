"""Tests for CI provider adapters with mocked HTTP."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests
from requests.auth import HTTPBasicAuth

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from build_stats.errors import ProviderError, RepositoryIdentityError
from build_stats.models import RepositoryIdentity
from build_stats.providers import BitbucketProvider, TravisProvider, create_provider


def _bitbucket(credential=None, page_size=None) -> BitbucketProvider:
    provider = BitbucketProvider(RepositoryIdentity(host="bitbucket", user="team", repo="app"), credential=credential)
    if page_size is not None:
        provider.PAGE_SIZE = page_size
    return provider


def _travis(credential=None) -> TravisProvider:
    return TravisProvider(RepositoryIdentity(host="travis", user="boltpkg", repo="bolt"), credential=credential)


def _response(status_code: int, payload=None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def _pipeline(number: int, result: str | None = "SUCCESSFUL", state: str = "COMPLETED", branch: str = "main") -> dict:
    item = {
        "build_number": number,
        "state": {"name": state},
        "target": {"ref_name": branch},
        "created_on": "2026-01-01T10:00:00.000000Z",
        "completed_on": "2026-01-01T10:05:00.000000Z" if result else None,
    }
    if result:
        item["state"]["result"] = {"name": result}
    return item


def _bitbucket_listing(numbers, page_size: int):
    """Serve Bitbucket pipeline pages for consecutive ``numbers``."""

    def _serve(url, params=None):
        page = params["page"]
        chunk = numbers[(page - 1) * page_size : page * page_size]
        return {"page": page, "pagelen": page_size, "size": len(numbers), "values": [_pipeline(n) for n in chunk]}

    return Mock(side_effect=_serve)


def test_get_json_marks_429_transient_with_retry_after():
    """Verify throttling responses raise a transient error carrying Retry-After."""
    provider = _bitbucket()
    provider._session.get = Mock(return_value=_response(429, text="slow down", headers={"Retry-After": "5"}))

    with pytest.raises(ProviderError) as excinfo:
        provider._get_json("https://example.invalid/builds")

    assert excinfo.value.transient is True
    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == 5


def test_get_json_marks_5xx_transient_and_4xx_permanent():
    """Verify server errors are retryable and client errors are not."""
    provider = _bitbucket()

    provider._session.get = Mock(return_value=_response(503, text="unavailable"))
    with pytest.raises(ProviderError) as server_error:
        provider._get_json("https://example.invalid/builds")

    provider._session.get = Mock(return_value=_response(404, text="not found"))
    with pytest.raises(ProviderError) as client_error:
        provider._get_json("https://example.invalid/builds")

    assert server_error.value.transient is True
    assert server_error.value.retry_after is None
    assert client_error.value.transient is False
    assert client_error.value.status_code == 404


def test_get_json_connection_error_is_transient():
    """Verify network failures are reported as transient provider errors."""
    provider = _bitbucket()
    provider._session.get = Mock(side_effect=requests.ConnectionError("reset"))

    with pytest.raises(ProviderError) as excinfo:
        provider._get_json("https://example.invalid/builds")

    assert excinfo.value.transient is True


def test_get_json_invalid_json_raises_provider_error():
    """Verify an undecodable body is reported as a permanent provider error."""
    provider = _bitbucket()
    response = _response(200)
    response.json.side_effect = ValueError("no json")
    provider._session.get = Mock(return_value=response)

    with pytest.raises(ProviderError) as excinfo:
        provider._get_json("https://example.invalid/builds")

    assert excinfo.value.transient is False


def test_bitbucket_parses_and_normalizes_pipelines():
    """Verify Bitbucket results, branches and timestamps map to canonical build records."""
    provider = _bitbucket()
    payload = {
        "size": 5,
        "values": [
            _pipeline(1, "SUCCESSFUL"),
            _pipeline(2, "FAILED", branch="develop"),
            _pipeline(3, "ERROR"),
            _pipeline(4, "STOPPED"),
            _pipeline(5, None, state="IN_PROGRESS"),
        ],
    }

    records, total = provider._parse_listing(payload)

    assert total == 5
    assert [record.result for record in records] == ["SUCCESSFUL", "FAILED", "ERRORED", "CANCELED", "IN_PROGRESS"]
    assert records[1].branch == "develop"
    assert records[0].started_at == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert records[0].duration_seconds == 300
    assert records[4].finished_at is None


def test_bitbucket_missing_build_number_raises_provider_error():
    """Verify a pipeline without a build number is rejected."""
    provider = _bitbucket()

    with pytest.raises(ProviderError):
        provider._parse_listing({"size": 1, "values": [{"state": {"name": "COMPLETED"}}]})


def test_bitbucket_authentication_modes():
    """Verify app passwords use basic auth and bare tokens use a bearer header."""
    basic = _bitbucket(credential="me:app-password")
    bearer = _bitbucket(credential="token-123")

    assert isinstance(basic._session.auth, HTTPBasicAuth)
    assert basic._session.auth.username == "me"
    assert bearer._session.headers["Authorization"] == "Bearer token-123"


def test_bitbucket_page_params_and_url():
    """Verify Bitbucket listing pages are one-based and sorted oldest first."""
    provider = _bitbucket()

    assert provider._listing_url() == "https://api.bitbucket.org/2.0/repositories/team/app/pipelines/"
    assert provider._page_params(2) == {"page": 3, "pagelen": 100, "sort": "created_on"}


def test_travis_parses_and_normalizes_builds():
    """Verify Travis states, string build numbers and branches map to canonical records."""
    provider = _travis()
    payload = {
        "@pagination": {"count": 3},
        "builds": [
            {
                "number": "11",
                "state": "passed",
                "branch": {"name": "master"},
                "started_at": "2026-01-02T00:00:00Z",
                "finished_at": "2026-01-02T00:10:00Z",
            },
            {"number": "12", "state": "canceled", "branch": {"name": "master"}, "started_at": None, "finished_at": None},
            {"number": "13", "state": "started", "branch": None, "started_at": "2026-01-02T01:00:00Z", "finished_at": None},
        ],
    }

    records, total = provider._parse_listing(payload)

    assert total == 3
    assert [record.number for record in records] == [11, 12, 13]
    assert [record.result for record in records] == ["SUCCESSFUL", "CANCELED", "started"]
    assert records[0].duration_seconds == 600
    assert records[2].branch == ""


def test_travis_headers_url_and_params():
    """Verify Travis requests use API v3, token auth and an encoded repository slug."""
    provider = _travis(credential="secret")

    assert provider._session.headers["Travis-API-Version"] == "3"
    assert provider._session.headers["Authorization"] == "token secret"
    assert provider._listing_url() == "https://api.travis-ci.com/repo/boltpkg%2Fbolt/builds"
    assert provider._page_params(1) == {"limit": 100, "offset": 100, "sort_by": "id"}


def test_travis_missing_pagination_raises_provider_error():
    """Verify a listing without a total count cannot be paginated and is rejected."""
    with pytest.raises(ProviderError):
        _travis()._parse_listing({"builds": []})


def test_plan_pages_covers_every_build_from_the_start():
    """Verify planning without a starting build returns one fetcher per listing page."""
    provider = _bitbucket(page_size=2)
    provider._get_json = _bitbucket_listing(list(range(1, 8)), page_size=2)

    fetchers = provider.plan_pages(None)
    pages = [fetch() for fetch in fetchers]

    assert [[record.number for record in page.records] for page in pages] == [[1, 2], [3, 4], [5, 6], [7]]
    assert [page.has_more for page in pages] == [True, True, True, False]


def test_plan_pages_binary_searches_first_page_with_newer_builds():
    """Verify planning after a build skips older pages and reuses fetched listings."""
    provider = _bitbucket(page_size=2)
    provider._get_json = _bitbucket_listing(list(range(1, 8)), page_size=2)

    fetchers = provider.plan_pages(4)
    pages = [fetch() for fetch in fetchers]

    assert [[record.number for record in page.records] for page in pages] == [[5, 6], [7]]
    assert provider._get_json.call_count == 4


def test_plan_pages_filters_partially_seen_page():
    """Verify the first planned page only returns builds above the starting build."""
    provider = _bitbucket(page_size=2)
    provider._get_json = _bitbucket_listing(list(range(1, 8)), page_size=2)

    first = provider.plan_pages(3)[0]()

    assert [record.number for record in first.records] == [4]


def test_fetch_page_returns_empty_last_page_when_up_to_date():
    """Verify asking for builds after the newest one yields nothing more."""
    provider = _bitbucket(page_size=2)
    provider._get_json = _bitbucket_listing(list(range(1, 8)), page_size=2)

    page = provider.fetch_page(7)

    assert page.records == []
    assert page.has_more is False


def test_plan_pages_for_repository_without_builds_is_empty():
    """Verify a repository without builds plans no pages."""
    provider = _bitbucket(page_size=2)
    provider._get_json = _bitbucket_listing([], page_size=2)

    assert provider.plan_pages(None) == []


def test_create_provider_selects_adapter_by_host():
    """Verify the provider factory maps service names to adapters."""
    travis = create_provider(RepositoryIdentity(host="travis", user="u", repo="r"))
    bitbucket = create_provider(RepositoryIdentity(host="bitbucket", user="u", repo="r"), credential="t")

    assert isinstance(travis, TravisProvider)
    assert isinstance(bitbucket, BitbucketProvider)


def test_create_provider_unknown_host_raises_identity_error():
    """Verify unsupported services are rejected as identity errors."""
    with pytest.raises(RepositoryIdentityError):
        create_provider(RepositoryIdentity(host="jenkins", user="u", repo="r"))
