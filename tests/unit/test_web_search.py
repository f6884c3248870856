"""Unit tests for web search."""
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from models.config import SearchConfig
from web.search import (BRAVE_SEARCH_URL, TAVILY_SEARCH_URL,
                        SearchNotConfiguredError, SearchProviderError,
                        WebSearcher)

TAVILY_PAYLOAD = {
    "results": [
        {
            "title": "Laptop battery life tested",
            "url": "https://reviews.example.com/battery",
            "content": "We ran every laptop through a looping video test.",
            "published_date": "2025-05-20",
        },
        {"url": "https://untitled.example.com"},
        "not a dict",
    ]
}

BRAVE_PAYLOAD = {
    "web": {
        "results": [
            {
                "title": "Ultrabook comparison",
                "url": "https://techforum.org/ultrabooks",
                "description": "Thin and light laptops compared.",
                "page_age": "2025-05-01T00:00:00",
            },
            {
                "title": "Older review",
                "url": "https://old.example.com",
                "age": "March 3, 2024",
            },
        ]
    }
}


def mock_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


def mock_client_for(mock_client_class, post=None, get=None):
    mock_client = AsyncMock()
    mock_client.post = post or AsyncMock()
    mock_client.get = get or AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


class TestWebSearcherConfiguration:
    """Tests for provider configuration and ordering."""

    def test_not_configured_without_keys(self):
        assert not WebSearcher(SearchConfig()).is_configured

    def test_configured_with_either_key(self):
        assert WebSearcher(SearchConfig(brave_api_key="b")).is_configured
        assert WebSearcher(SearchConfig(tavily_api_key="t")).is_configured

    def test_provider_order(self):
        assert WebSearcher(SearchConfig()).provider_order() == ["tavily", "brave"]
        config = SearchConfig(primary="brave", fallback=None)
        assert WebSearcher(config).provider_order() == ["brave", "tavily"]

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError, match="Unknown search provider"):
            SearchConfig(primary="bing")


class TestWebSearcherSearch:
    """Tests for WebSearcher.search."""

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_tavily_success(self, mock_client_class):
        client = mock_client_for(
            mock_client_class,
            post=AsyncMock(return_value=mock_response(200, TAVILY_PAYLOAD)),
        )
        searcher = WebSearcher(SearchConfig(tavily_api_key="tv-key", brave_api_key="b"))

        result = await searcher.search("best travel laptop")

        assert result.provider_used == "tavily"
        assert result.query == "best travel laptop"
        assert len(result.results) == 2
        first = result.results[0]
        assert first.snippet.startswith("We ran every laptop")
        assert first.published_date == "2025-05-20"
        assert first.provider == "tavily"
        assert result.results[1].title == "Untitled"

        call = client.post.call_args
        assert call.args[0] == TAVILY_SEARCH_URL
        assert call.kwargs["headers"]["Authorization"] == "Bearer tv-key"
        assert call.kwargs["json"]["query"] == "best travel laptop"
        assert call.kwargs["json"]["max_results"] == 6
        client.get.assert_not_called()

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_falls_back_to_brave(self, mock_client_class):
        client = mock_client_for(
            mock_client_class,
            post=AsyncMock(return_value=mock_response(500)),
            get=AsyncMock(return_value=mock_response(200, BRAVE_PAYLOAD)),
        )
        searcher = WebSearcher(SearchConfig(tavily_api_key="t", brave_api_key="brave-key"))

        result = await searcher.search("ultrabook", max_results=3)

        assert result.provider_used == "brave"
        assert [r.url for r in result.results] == [
            "https://techforum.org/ultrabooks",
            "https://old.example.com",
        ]
        assert result.results[0].published_date == "2025-05-01T00:00:00"
        assert result.results[1].published_date == "March 3, 2024"

        call = client.get.call_args
        assert call.args[0] == BRAVE_SEARCH_URL
        assert call.kwargs["params"]["count"] == 3
        assert call.kwargs["headers"]["X-Subscription-Token"] == "brave-key"

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_skips_providers_without_keys(self, mock_client_class):
        client = mock_client_for(
            mock_client_class,
            get=AsyncMock(return_value=mock_response(200, BRAVE_PAYLOAD)),
        )
        searcher = WebSearcher(SearchConfig(brave_api_key="b"))

        result = await searcher.search("ultrabook")

        assert result.provider_used == "brave"
        client.post.assert_not_called()

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_all_providers_fail_raises_last_error(self, mock_client_class):
        mock_client_for(
            mock_client_class,
            post=AsyncMock(side_effect=httpx.ConnectError("connection refused")),
            get=AsyncMock(return_value=mock_response(429)),
        )
        searcher = WebSearcher(SearchConfig(tavily_api_key="t", brave_api_key="b"))

        with pytest.raises(SearchProviderError, match="Brave search failed: 429"):
            await searcher.search("ultrabook")

    @pytest.mark.asyncio
    async def test_not_configured_raises(self):
        with pytest.raises(SearchNotConfiguredError):
            await WebSearcher(SearchConfig()).search("anything")

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_missing_results_field(self, mock_client_class):
        mock_client_for(
            mock_client_class,
            post=AsyncMock(return_value=mock_response(200, {"answer": None})),
        )
        searcher = WebSearcher(SearchConfig(tavily_api_key="t"))

        result = await searcher.search("ultrabook")

        assert result.results == []
