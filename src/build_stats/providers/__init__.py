"""CI provider adapters."""

from __future__ import annotations

from typing import Dict, Optional, Type

from ..errors import RepositoryIdentityError
from ..models import RepositoryIdentity
from .base import PagedHttpProvider, Provider
from .bitbucket import BitbucketProvider
from .travis import TravisProvider

PROVIDERS: Dict[str, Type[PagedHttpProvider]] = {
    "bitbucket": BitbucketProvider,
    "travis": TravisProvider,
}


def create_provider(identity: RepositoryIdentity, credential: Optional[str] = None) -> Provider:
    """Return the adapter serving ``identity.host``.

    Raises:
        RepositoryIdentityError: If the host names no supported CI service.
    """
    provider_class = PROVIDERS.get(identity.host)
    if provider_class is None:
        supported = ", ".join(sorted(PROVIDERS))
        raise RepositoryIdentityError(f"Unknown service '{identity.host}', should be one of: {supported}.")
    return provider_class(identity, credential=credential)


__all__ = ["BitbucketProvider", "PROVIDERS", "PagedHttpProvider", "Provider", "TravisProvider", "create_provider"]
