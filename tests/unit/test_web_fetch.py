"""Unit tests for page fetching."""
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from models.config import FetchConfig
from web.fetch import (JINA_READER_URL, USER_AGENT, WebFetcher, WebFetchError,
                       html_to_text, normalize_url)

HTML = """
<html>
  <head><title>Review</title><style>body { color: red; }</style></head>
  <body>
    <script>var tracking = true;</script>
    <h1>MacBook&nbsp;Air review</h1>
    <p>Battery lasted
       eighteen hours.</p>
    <noscript>Enable JavaScript</noscript>
  </body>
</html>
"""


def mock_response(status_code=200, text=""):
    response = Mock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.text = text
    return response


def mock_client_for(mock_client_class, get):
    mock_client = AsyncMock()
    mock_client.get = get
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


class TestHelpers:
    """Tests for URL normalization and HTML extraction."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("example.com/page", "https://example.com/page"),
            ("  http://example.com  ", "http://example.com"),
            ("HTTPS://Example.com", "HTTPS://Example.com"),
        ],
    )
    def test_normalize_url(self, url, expected):
        assert normalize_url(url) == expected

    def test_html_to_text_drops_scripts_and_collapses_whitespace(self):
        text = html_to_text(HTML)
        assert "MacBook Air review" in text
        assert "Battery lasted eighteen hours." in text
        assert "tracking" not in text
        assert "color: red" not in text
        assert "Enable JavaScript" not in text
        assert "  " not in text


class TestWebFetcher:
    """Tests for WebFetcher.fetch."""

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_reader_success(self, mock_client_class):
        client = mock_client_for(
            mock_client_class,
            AsyncMock(return_value=mock_response(200, "  Clean reader text  ")),
        )

        page = await WebFetcher(FetchConfig()).fetch("example.com/review")

        assert page.source == "jina"
        assert page.url == "https://example.com/review"
        assert page.content == "Clean reader text"
        client.get.assert_called_once_with(f"{JINA_READER_URL}https://example.com/review")

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_reader_failure_falls_back_to_direct(self, mock_client_class):
        client = mock_client_for(
            mock_client_class,
            AsyncMock(side_effect=[mock_response(451), mock_response(200, HTML)]),
        )

        page = await WebFetcher(FetchConfig()).fetch("https://example.com/review")

        assert page.source == "direct"
        assert "Battery lasted eighteen hours." in page.content
        direct_call = client.get.call_args_list[1]
        assert direct_call.args[0] == "https://example.com/review"
        assert direct_call.kwargs["headers"]["User-Agent"] == USER_AGENT

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_reader_network_error_falls_back(self, mock_client_class):
        mock_client_for(
            mock_client_class,
            AsyncMock(
                side_effect=[httpx.ConnectError("reader down"), mock_response(200, HTML)]
            ),
        )

        page = await WebFetcher(FetchConfig()).fetch("https://example.com")

        assert page.source == "direct"

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_empty_reader_body_falls_back(self, mock_client_class):
        mock_client_for(
            mock_client_class,
            AsyncMock(side_effect=[mock_response(200, "   "), mock_response(200, HTML)]),
        )

        page = await WebFetcher(FetchConfig()).fetch("https://example.com")

        assert page.source == "direct"

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_reader_disabled(self, mock_client_class):
        client = mock_client_for(
            mock_client_class, AsyncMock(return_value=mock_response(200, HTML))
        )

        page = await WebFetcher(FetchConfig(use_reader=False)).fetch("https://example.com")

        assert page.source == "direct"
        assert client.get.call_count == 1

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_direct_failure_raises(self, mock_client_class):
        mock_client_for(
            mock_client_class,
            AsyncMock(side_effect=[mock_response(500), mock_response(404)]),
        )

        with pytest.raises(WebFetchError, match="web_fetch failed with status 404"):
            await WebFetcher(FetchConfig()).fetch("https://example.com/missing")

    @pytest.mark.asyncio
    @patch("httpx.AsyncClient")
    async def test_content_is_capped(self, mock_client_class):
        mock_client_for(
            mock_client_class, AsyncMock(return_value=mock_response(200, "x" * 5_000))
        )

        page = await WebFetcher(FetchConfig(max_chars=1_000)).fetch("https://example.com")

        assert len(page.content) == 1_000
