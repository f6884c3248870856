"""Resolved model handles: free-text and schema-constrained completions."""
import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from tenacity import wait_random

from adapters import create_adapter
from adapters.base_http import BaseHTTPAdapter, ChatMessage
from models.config import Config
from workflow.fallback import (ProviderCandidate, ProviderFallbackRunner,
                               get_provider_candidates)

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class StructuredOutputError(ValueError):
    """Model output could not be parsed into the requested schema."""


def extract_json_object(text: str) -> dict:
    """
    Extract the first JSON object from model output.

    Handles bare JSON, JSON inside ```json fences, and JSON surrounded by
    prose.

    Raises:
        StructuredOutputError: If no JSON object can be decoded
    """
    if not text or not text.strip():
        raise StructuredOutputError("Model returned an empty response")

    candidates = [match.group(1) for match in _CODE_FENCE.finditer(text)]
    candidates.append(text)

    decoder = json.JSONDecoder()
    for candidate in candidates:
        idx = candidate.find("{")
        while idx != -1:
            try:
                obj, _ = decoder.raw_decode(candidate, idx=idx)
            except json.JSONDecodeError:
                idx = candidate.find("{", idx + 1)
                continue
            if isinstance(obj, dict):
                return obj
            idx = candidate.find("{", idx + 1)

    raise StructuredOutputError(
        f"No JSON object found in model output: {text[:200]!r}"
    )


def parse_structured(text: str, schema: Type[SchemaT]) -> SchemaT:
    """Parse model output into ``schema``."""
    data = extract_json_object(text)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Model output does not match {schema.__name__}: {e.error_count()} error(s)"
        ) from e


@dataclass
class ModelHandle:
    """A provider/model pair bound to its adapter."""

    provider: str
    model: str
    adapter: BaseHTTPAdapter

    async def generate_text(
        self,
        prompt: str,
        system: Optional[str] = None,
        history: Optional[List[ChatMessage]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Free-text completion.

        Raises:
            StructuredOutputError: If the model returns only whitespace
        """
        text = await self.adapter.invoke(
            prompt,
            self.model,
            system=system,
            history=history,
            temperature=temperature,
        )
        if not text or not text.strip():
            raise StructuredOutputError(f"{self.provider} returned an empty response")
        return text.strip()

    async def generate_object(
        self,
        schema: Type[SchemaT],
        prompt: str,
        system: Optional[str] = None,
        history: Optional[List[ChatMessage]] = None,
        temperature: Optional[float] = 0.2,
    ) -> SchemaT:
        """
        Schema-constrained completion.

        The JSON schema of ``schema`` is appended to the system prompt and the
        API is asked for a JSON object response.

        Raises:
            StructuredOutputError: If the output does not validate
        """
        instructions = (
            "Respond with a single JSON object and nothing else. "
            "It must match this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema())}"
        )
        system_prompt = f"{system}\n\n{instructions}" if system else instructions

        text = await self.adapter.invoke(
            prompt,
            self.model,
            system=system_prompt,
            history=history,
            temperature=temperature,
            json_mode=True,
        )
        return parse_structured(text, schema)


def resolve_model(candidate: ProviderCandidate, config: Config) -> ModelHandle:
    """Build the model handle for a candidate from its provider config."""
    provider_config = config.provider(candidate.provider).model_copy(
        update={"api_key": candidate.api_key}
    )
    adapter = create_adapter(candidate.provider, provider_config)
    return ModelHandle(
        provider=candidate.provider, model=candidate.model, adapter=adapter
    )


def build_fallback_runner(
    config: Config, active_provider: Optional[str] = None
) -> ProviderFallbackRunner:
    """Runner over the configured, credentialed providers."""
    workflow = config.workflow
    return ProviderFallbackRunner(
        get_provider_candidates(config, active_provider),
        resolve=lambda candidate: resolve_model(candidate, config),
        attempts=workflow.attempts_per_provider,
        wait=wait_random(workflow.backoff_min, workflow.backoff_max),
    )
