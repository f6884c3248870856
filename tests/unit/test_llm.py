"""Unit tests for model handles and structured output parsing."""
import json
from unittest.mock import AsyncMock, Mock

import pytest

from adapters.groq import GroqAdapter
from adapters.openrouter import OpenRouterAdapter
from models.config import Config
from models.schema import FollowUpClassification, QueryPlan
from workflow.fallback import ProviderCandidate
from workflow.llm import (ModelHandle, StructuredOutputError,
                          build_fallback_runner, extract_json_object,
                          parse_structured, resolve_model)


def handle_with(response: str) -> ModelHandle:
    adapter = Mock()
    adapter.invoke = AsyncMock(return_value=response)
    return ModelHandle(provider="groq", model="test-model", adapter=adapter)


class TestExtractJsonObject:
    """Tests for extract_json_object."""

    def test_bare_json(self):
        assert extract_json_object('{"queries": ["a"]}') == {"queries": ["a"]}

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"mode": "reresearch"}\n```\nThanks'
        assert extract_json_object(text) == {"mode": "reresearch"}

    def test_json_surrounded_by_prose(self):
        text = 'Sure! {"mode": "clarify_existing", "reason": "asks why"} Hope that helps.'
        assert extract_json_object(text)["mode"] == "clarify_existing"

    def test_skips_unbalanced_braces(self):
        text = 'The set {a, b} is small. {"queries": []}'
        assert extract_json_object(text) == {"queries": []}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]"])
    def test_no_object_raises(self, text):
        with pytest.raises(StructuredOutputError):
            extract_json_object(text)


class TestParseStructured:
    """Tests for parse_structured."""

    def test_valid_payload(self):
        result = parse_structured('{"mode": "Clarify-Existing"}', FollowUpClassification)
        assert result.mode == "clarify_existing"

    def test_invalid_payload_raises(self):
        with pytest.raises(StructuredOutputError, match="FollowUpClassification"):
            parse_structured('{"mode": "maybe"}', FollowUpClassification)


class TestModelHandle:
    """Tests for ModelHandle."""

    @pytest.mark.asyncio
    async def test_generate_text_strips(self):
        handle = handle_with("  The answer.  \n")
        assert await handle.generate_text("question") == "The answer."

    @pytest.mark.asyncio
    async def test_generate_text_empty_raises(self):
        handle = handle_with("   ")
        with pytest.raises(StructuredOutputError, match="empty"):
            await handle.generate_text("question")

    @pytest.mark.asyncio
    async def test_generate_object_requests_json(self):
        handle = handle_with(json.dumps({"queries": ["laptop battery test"]}))

        result = await handle.generate_object(QueryPlan, "plan", system="Be brief.")

        assert result.queries == ["laptop battery test"]
        kwargs = handle.adapter.invoke.call_args.kwargs
        assert kwargs["json_mode"] is True
        assert kwargs["system"].startswith("Be brief.")
        assert '"queries"' in kwargs["system"]
        assert kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_generate_object_invalid_output_raises(self):
        handle = handle_with("I cannot help with that.")
        with pytest.raises(StructuredOutputError):
            await handle.generate_object(FollowUpClassification, "classify")


class TestResolveModel:
    """Tests for building handles and runners from config."""

    def test_resolve_model_builds_provider_adapter(self):
        config = Config(providers={"groq": {"api_key": "groq-key", "timeout": 30}})
        handle = resolve_model(
            ProviderCandidate(provider="groq", model="m", api_key="groq-key"), config
        )
        assert isinstance(handle.adapter, GroqAdapter)
        assert handle.adapter.api_key == "groq-key"
        assert handle.adapter.timeout == 30
        assert handle.model == "m"

    def test_resolve_model_without_provider_section(self):
        handle = resolve_model(
            ProviderCandidate(provider="openrouter", model="m", api_key="k"), Config()
        )
        assert isinstance(handle.adapter, OpenRouterAdapter)
        assert handle.adapter.api_key == "k"

    def test_build_fallback_runner(self):
        config = Config(
            providers={"groq": {"api_key": "a"}, "openrouter": {"api_key": "b"}},
            workflow={"attempts_per_provider": 3},
        )
        runner = build_fallback_runner(config, active_provider="openrouter")
        assert runner.providers == ["openrouter", "groq"]
        assert runner.attempts == 3
