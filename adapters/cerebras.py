"""Cerebras HTTP adapter."""
from adapters.openai_compatible import OpenAICompatibleAdapter


class CerebrasAdapter(OpenAICompatibleAdapter):
    """
    Adapter for the Cerebras inference API (OpenAI-compatible).

    API Reference: https://inference-docs.cerebras.ai
    """

    PROVIDER_NAME = "cerebras"
    DEFAULT_BASE_URL = "https://api.cerebras.ai/v1"
    DEFAULT_MODEL = "zai-glm-4.7"
