"""
iTunes Search API adapter for keyword ranking lookups.

Runs one store search per combo and returns the ordered app identifiers and
the endpoint's result count. The public endpoint needs no authentication,
returns at most 200 results and throttles aggressively, so failures are
classified into transient (retry) and permanent (do not retry) errors for
the ranking fetcher.
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from core.domain.errors import UpstreamPermanentError, UpstreamTransientError
from core.interfaces.services import SearchResponse, SearchService
from infrastructure.config.settings import Settings, settings

logger = logging.getLogger(__name__)

# Platform -> iTunes entity
PLATFORM_ENTITIES = {
    "ios": "software",
    "ipad": "iPadSoftware",
}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ITunesSearchAdapter(SearchService):
    """
    iTunes Search API client.

    An ``httpx.AsyncClient`` may be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise a client is opened per request.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        result_limit: Optional[int] = None,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url or settings.search_api_url
        self.timeout = timeout if timeout is not None else settings.search_timeout_seconds
        self.result_limit = result_limit or settings.search_result_limit
        self.user_agent = user_agent or settings.search_user_agent
        self._client = client

    def _params(self, term: str, platform: str, locale: str) -> Dict[str, Any]:
        entity = PLATFORM_ENTITIES.get(platform)
        if entity is None:
            raise UpstreamPermanentError(f"Unsupported platform: {platform}")
        return {
            "term": term,
            "country": locale,
            "entity": entity,
            "limit": self.result_limit,
        }

    async def _get(self, params: Dict[str, Any]) -> httpx.Response:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if self._client is not None:
            return await self._client.get(self.base_url, params=params, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(self.base_url, params=params, headers=headers)

    async def search(self, term: str, platform: str, locale: str) -> SearchResponse:
        """
        Search the store for *term*.

        Raises:
            UpstreamTransientError: 429, 5xx, timeout or transport failure
            UpstreamPermanentError: Other 4xx, unsupported platform or bad body
        """
        params = self._params(term, platform, locale)

        try:
            response = await self._get(params)
        except httpx.TimeoutException as e:
            raise UpstreamTransientError(f"Search timed out for '{term}': {e}")
        except httpx.TransportError as e:
            raise UpstreamTransientError(f"Search transport error for '{term}': {e}")

        status = response.status_code
        if status == 429 or status >= 500:
            raise UpstreamTransientError(
                f"Search returned HTTP {status} for '{term}'",
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 400:
            raise UpstreamPermanentError(
                f"Search returned HTTP {status} for '{term}'", status_code=status
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamPermanentError(f"Search returned invalid JSON for '{term}': {e}")

        return self._parse_response(data, term)

    @staticmethod
    def _parse_response(data: Any, term: str) -> SearchResponse:
        if not isinstance(data, dict):
            raise UpstreamPermanentError(f"Unexpected search response shape for '{term}'")

        results = data.get("results") or []
        item_ids = tuple(
            str(item["trackId"])
            for item in results
            if isinstance(item, dict) and item.get("trackId") is not None
        )
        try:
            result_count = int(data.get("resultCount", len(results)))
        except (TypeError, ValueError):
            result_count = len(results)

        logger.debug("Search '%s' returned %d results", term, result_count)
        return SearchResponse(result_count=result_count, item_ids=item_ids)


def create_itunes_adapter(
    config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None
) -> ITunesSearchAdapter:
    """Create an adapter configured from *config* (the process settings by default)."""
    config = config or settings
    return ITunesSearchAdapter(
        base_url=config.search_api_url,
        timeout=config.search_timeout_seconds,
        result_limit=config.search_result_limit,
        user_agent=config.search_user_agent,
        client=client,
    )
