"""Page fetching with the Jina reader and a direct HTML fallback."""
import logging
import re

import httpx
from bs4 import BeautifulSoup

from models.config import FetchConfig
from models.schema import FetchedPage

logger = logging.getLogger(__name__)

JINA_READER_URL = "https://r.jina.ai/"
USER_AGENT = "ClarityCheckBot/0.1 (+https://localhost; lightweight decision assistant)"
MAX_RAW_HTML_CHARS = 200_000

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


class WebFetchError(RuntimeError):
    """A page could not be fetched."""


def normalize_url(url: str) -> str:
    """Trim and add ``https://`` when the scheme is missing."""
    trimmed = url.strip()
    if _SCHEME.match(trimmed):
        return trimmed
    return f"https://{trimmed}"


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    text = soup.get_text(" ")
    return re.sub(r"\s+", " ", text.replace("\xa0", " ")).strip()


class WebFetcher:
    """Fetches pages as plain text.

    The Jina reader is tried first since it returns clean text for most
    pages; any reader failure falls through to a direct GET whose HTML is
    reduced to text with BeautifulSoup.
    """

    def __init__(self, config: FetchConfig):
        self.config = config

    async def fetch(self, url: str) -> FetchedPage:
        """
        Fetch a page.

        Args:
            url: Page URL; scheme-less URLs get ``https://``

        Returns:
            FetchedPage with content capped at ``config.max_chars``

        Raises:
            WebFetchError: If the direct fetch returns a non-2xx status
            httpx.HTTPError: On network errors in the direct fetch
        """
        normalized = normalize_url(url)

        if self.config.use_reader:
            try:
                page = await self._fetch_with_reader(normalized)
            except httpx.HTTPError as e:
                logger.debug(f"Reader fetch failed for {normalized}: {e}")
                page = None
            if page is not None:
                return page

        return await self._fetch_direct(normalized)

    async def _fetch_with_reader(self, url: str):
        async with httpx.AsyncClient(
            timeout=self.config.timeout, follow_redirects=True
        ) as client:
            response = await client.get(f"{JINA_READER_URL}{url}")
        if not response.is_success:
            logger.debug(f"Reader returned {response.status_code} for {url}")
            return None
        text = response.text.strip()
        if not text:
            return None
        return FetchedPage(url=url, source="jina", content=text[: self.config.max_chars])

    async def _fetch_direct(self, url: str) -> FetchedPage:
        async with httpx.AsyncClient(
            timeout=self.config.timeout, follow_redirects=True
        ) as client:
            response = await client.get(
                url,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml,application/xml",
                },
            )
        if not response.is_success:
            raise WebFetchError(f"web_fetch failed with status {response.status_code}")

        html = response.text[:MAX_RAW_HTML_CHARS]
        return FetchedPage(
            url=url,
            source="direct",
            content=html_to_text(html)[: self.config.max_chars],
        )
