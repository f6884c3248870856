"""OpenRouter HTTP adapter."""
from adapters.openai_compatible import OpenAICompatibleAdapter


class OpenRouterAdapter(OpenAICompatibleAdapter):
    """
    Adapter for OpenRouter API.

    OpenRouter provides access to multiple LLM providers through a unified
    OpenAI-compatible API. It asks callers to identify themselves with the
    HTTP-Referer and X-Title headers.

    API Reference: https://openrouter.ai/docs
    """

    PROVIDER_NAME = "openrouter"
    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    DEFAULT_MODEL = "arcee-ai/trinity-large-preview:free"
    DEFAULT_HEADERS = {
        "HTTP-Referer": "https://localhost",
        "X-Title": "ClarityCheck",
    }
