"""Shared HTTP transport for chat-completion provider adapters."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import httpx
from tenacity import (retry, retry_if_exception, stop_after_attempt,
                      wait_exponential)

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, str]

RETRYABLE_STATUS_CODES = frozenset({429})
NETWORK_ERRORS = (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)


def is_retryable_http_error(exception: BaseException) -> bool:
    """True for 5xx, 429 and network failures; client errors fail fast."""
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status >= 500 or status in RETRYABLE_STATUS_CODES
    return isinstance(exception, NETWORK_ERRORS)


def build_messages(
    prompt: str,
    system: Optional[str] = None,
    history: Optional[List[ChatMessage]] = None,
) -> List[ChatMessage]:
    """Assemble system prompt, prior turns and the new user message."""
    messages: List[ChatMessage] = []
    if system:
        messages.append({"role": "system", "content": system})
    if history:
        messages.extend(history)
    messages.append({"role": "user", "content": prompt})
    return messages


class BaseHTTPAdapter(ABC):
    """
    Base class for provider adapters that talk to a JSON HTTP API.

    Subclasses describe the wire format through build_request() and
    parse_response(); this class owns the client, the timeout and the
    retry policy for transient failures.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 1,
        api_key: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """
        Args:
            base_url: API root, e.g. "https://api.groq.com/openai/v1"
            timeout: Per-request timeout in seconds
            max_retries: Total attempts for transient HTTP failures
            api_key: Bearer credential, if the provider needs one
            headers: Extra headers sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.api_key = api_key
        self.default_headers = headers or {}

    @abstractmethod
    def build_request(
        self,
        model: str,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> Tuple[str, dict[str, str], dict]:
        """Return (endpoint path, headers, JSON body) for one completion."""

    @abstractmethod
    def parse_response(self, response_json: dict) -> str:
        """Pull the completion text out of a decoded response."""

    async def invoke(
        self,
        prompt: str,
        model: str,
        system: Optional[str] = None,
        history: Optional[List[ChatMessage]] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Run one chat completion and return its text.

        Raises:
            TimeoutError: The request did not finish within self.timeout
            httpx.HTTPStatusError: Non-2xx response after any retries
            KeyError, IndexError: The response body has no completion text
        """
        messages = build_messages(prompt, system=system, history=history)
        endpoint, headers, body = self.build_request(
            model, messages, temperature=temperature, json_mode=json_mode
        )
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"POST {url} model={model} messages={len(messages)}")

        try:
            payload = await self._post_with_retry(url, headers, body)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise TimeoutError(f"HTTP request timed out after {self.timeout}s")
        return self.parse_response(payload)

    async def _post(self, url: str, headers: dict[str, str], body: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, headers=headers, json=body)
            if 400 <= response.status_code < 500:
                try:
                    detail = response.json()
                except ValueError:
                    detail = response.text
                logger.error(f"{url} returned {response.status_code}: {detail}")
            response.raise_for_status()
            return response.json()

    async def _post_with_retry(
        self, url: str, headers: dict[str, str], body: dict
    ) -> dict:
        attempt = retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.5, max=8),
            retry=retry_if_exception(is_retryable_http_error),
            reraise=True,
        )(self._post)
        return await attempt(url, headers, body)
