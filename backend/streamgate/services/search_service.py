"""
Web search through a Serper-compatible HTTP API.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

import httpx

from ..config import settings
from ..exceptions import SearchError

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def clamp_result_count(requested: Optional[int]) -> int:
    if requested is None:
        requested = 10
    return max(settings.SEARCH_MIN_RESULTS, min(settings.SEARCH_MAX_RESULTS, int(requested)))


class SearchService:
    """Ranked (title, url, snippet) results for a query."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_url = api_url or settings.SEARCH_API_URL
        self.api_key = api_key if api_key is not None else settings.SEARCH_API_KEY
        self._client = client

    async def search(self, query: str, num_results: Optional[int] = 10) -> List[SearchResult]:
        if not self.api_key:
            raise SearchError("search is not configured")

        num = clamp_result_count(num_results)
        payload = {"q": query, "num": num}
        headers = {"X-API-KEY": self.api_key, "Content-Type": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.post(self.api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.SEARCH_TIMEOUT_SECONDS) as client:
                    response = await client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise SearchError(str(e)) from e

        results = [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("link", ""),
                snippet=item.get("snippet", "")
            )
            for item in data.get("organic", [])
        ]
        logger.info("Search for %r returned %d results", query, len(results))
        return results[:num]
