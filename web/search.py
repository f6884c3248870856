"""Web search over Tavily and Brave."""
import logging
from typing import Any, List, Optional

import httpx

from models.config import SUPPORTED_SEARCH_PROVIDERS, SearchConfig
from models.schema import SearchResultItem, WebSearchResult

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class SearchNotConfiguredError(RuntimeError):
    """No search provider has an API key."""

    def __init__(self):
        super().__init__(
            "No web search provider configured. "
            "Set a Tavily and/or Brave API key in config.yaml."
        )


class SearchProviderError(RuntimeError):
    """A search provider returned an error or an unusable payload."""


class WebSearcher:
    """
    Runs a query against the configured search providers in order.

    The order is the configured primary, then the fallback, then any other
    supported provider. Providers without an API key are skipped; the first
    provider that answers wins.
    """

    def __init__(self, config: SearchConfig):
        self.config = config

    @property
    def is_configured(self) -> bool:
        return bool(self.config.tavily_api_key or self.config.brave_api_key)

    def provider_order(self) -> List[str]:
        order: List[str] = []
        for name in (self.config.primary, self.config.fallback, *SUPPORTED_SEARCH_PROVIDERS):
            if name and name not in order:
                order.append(name)
        return order

    async def search(
        self, query: str, max_results: Optional[int] = None
    ) -> WebSearchResult:
        """
        Search the web.

        Args:
            query: Search query
            max_results: Results to request (default: config.results_per_query)

        Returns:
            WebSearchResult from the first provider that succeeded

        Raises:
            SearchNotConfiguredError: If no provider has an API key
            SearchProviderError, httpx.HTTPError: The last provider error when
                every configured provider failed
        """
        max_results = max_results or self.config.results_per_query
        last_error: Optional[Exception] = None

        for provider in self.provider_order():
            try:
                if provider == "tavily" and self.config.tavily_api_key:
                    return await self._tavily(query, max_results)
                if provider == "brave" and self.config.brave_api_key:
                    return await self._brave(query, max_results)
            except (httpx.HTTPError, SearchProviderError, ValueError) as e:
                logger.warning(f"{provider} search failed for {query!r}: {e}")
                last_error = e

        if last_error is not None:
            raise last_error
        raise SearchNotConfiguredError()

    async def _tavily(self, query: str, max_results: int) -> WebSearchResult:
        api_key = self.config.tavily_api_key
        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            response = await client.post(
                TAVILY_SEARCH_URL,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {api_key}",
                },
                json={
                    "api_key": api_key,
                    "query": query,
                    "search_depth": "advanced",
                    "max_results": max_results,
                    "include_answer": False,
                },
            )
            if response.status_code >= 400:
                raise SearchProviderError(
                    f"Tavily search failed: {response.status_code}"
                )
            payload = response.json()

        results = [
            SearchResultItem(
                title=item.get("title") or "Untitled",
                url=item.get("url") or "",
                snippet=item.get("content") or "",
                published_date=item.get("published_date"),
                provider="tavily",
            )
            for item in _as_list(payload.get("results"))
        ]
        return WebSearchResult(query=query, provider_used="tavily", results=results)

    async def _brave(self, query: str, max_results: int) -> WebSearchResult:
        params: dict[str, Any] = {
            "q": query,
            "count": max_results,
            "text_decorations": 0,
            "search_lang": "en",
            "safesearch": "moderate",
        }
        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self.config.brave_api_key,
                },
            )
            if response.status_code >= 400:
                raise SearchProviderError(
                    f"Brave search failed: {response.status_code}"
                )
            payload = response.json()

        web = payload.get("web") or {}
        results = [
            SearchResultItem(
                title=item.get("title") or "Untitled",
                url=item.get("url") or "",
                snippet=item.get("description") or "",
                published_date=item.get("page_age") or item.get("age"),
                provider="brave",
            )
            for item in _as_list(web.get("results"))
        ]
        return WebSearchResult(query=query, provider_used="brave", results=results)


def _as_list(value: Any) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
