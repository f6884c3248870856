"""Groq HTTP adapter."""
from adapters.openai_compatible import OpenAICompatibleAdapter


class GroqAdapter(OpenAICompatibleAdapter):
    """
    Adapter for the Groq API (OpenAI-compatible).

    API Reference: https://console.groq.com/docs
    """

    PROVIDER_NAME = "groq"
    DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
    DEFAULT_MODEL = "moonshotai/kimi-k2-instruct-0905"
