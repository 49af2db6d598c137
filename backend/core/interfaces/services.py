"""Service interfaces for external integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SearchResponse:
    """Ordered item identifiers and result count returned by a store search."""

    result_count: int
    item_ids: tuple[str, ...]


class SearchService(ABC):
    """Abstract store search endpoint."""

    @abstractmethod
    async def search(self, term: str, platform: str, locale: str) -> SearchResponse:
        """Run one search query.

        Raises:
            UpstreamTransientError: 429, 5xx, timeout or transport failure
            UpstreamPermanentError: any other 4xx or an unusable response body
        """
        ...
