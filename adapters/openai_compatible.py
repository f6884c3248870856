"""OpenAI-compatible chat completions adapter."""
from typing import List, Optional, Tuple

from adapters.base_http import BaseHTTPAdapter, ChatMessage


class OpenAICompatibleAdapter(BaseHTTPAdapter):
    """
    Adapter for APIs that implement the OpenAI chat completions format.

    POST {base_url}/chat/completions
    Authorization: Bearer <api_key>

    Subclasses set DEFAULT_BASE_URL and PROVIDER_NAME and may add
    provider-specific headers through DEFAULT_HEADERS.
    """

    PROVIDER_NAME = "openai-compatible"
    DEFAULT_BASE_URL = ""
    DEFAULT_MODEL = ""
    DEFAULT_HEADERS: dict[str, str] = {}

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        base_url = base_url or self.DEFAULT_BASE_URL
        if not base_url:
            raise ValueError(f"{self.PROVIDER_NAME} adapter requires a base_url")
        super().__init__(base_url=base_url, **kwargs)

    def build_request(
        self,
        model: str,
        messages: List[ChatMessage],
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> Tuple[str, dict[str, str], dict]:
        """
        Build a chat completions request.

        Args:
            model: Model identifier
            messages: Chat messages in OpenAI format
            temperature: Optional sampling temperature
            json_mode: Request ``response_format: {"type": "json_object"}``

        Returns:
            Tuple of (endpoint, headers, body)
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            **self.DEFAULT_HEADERS,
            **self.default_headers,
        }

        body = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        if temperature is not None:
            body["temperature"] = temperature
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        return ("/chat/completions", headers, body)

    def parse_response(self, response_json: dict) -> str:
        """
        Parse an OpenAI-format response:
        {
          "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": "..."},
            "finish_reason": "stop"
          }]
        }

        Raises:
            KeyError: If response doesn't contain expected fields
            IndexError: If choices array is empty
        """
        name = self.PROVIDER_NAME
        if "choices" not in response_json:
            raise KeyError(
                f"{name} response missing 'choices' field. "
                f"Received keys: {list(response_json.keys())}"
            )

        if len(response_json["choices"]) == 0:
            raise IndexError(f"{name} response has empty 'choices' array")

        choice = response_json["choices"][0]

        if "message" not in choice:
            raise KeyError(
                f"{name} choice missing 'message' field. "
                f"Received keys: {list(choice.keys())}"
            )

        message = choice["message"]

        if message.get("content") is None:
            raise KeyError(
                f"{name} message missing 'content' field. "
                f"Received keys: {list(message.keys())}"
            )

        return message["content"]
