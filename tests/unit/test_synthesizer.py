"""Unit tests for recommendation synthesis."""
import pytest

from decision_store.schema import SourceLink
from models.schema import RecommendationDraft, RecommendationState
from workflow.evidence import EvidenceBundle
from workflow.fallback import AllProvidersFailedError
from workflow.synthesizer import (RecommendationSynthesizer,
                                  compose_recommendation_text,
                                  recommendation_changed)


def draft(option="MacBook Air", **overrides):
    values = dict(
        recommendation=option,
        confidence="high",
        rationale="Longest battery life within budget.",
        tradeoffs=["Fewer ports"],
        rejected_alternatives=["ThinkPad X1: heavier charger"],
        change_triggers=["A price drop on the X1"],
        response="Go with the MacBook Air [S1].",
    )
    values.update(overrides)
    return RecommendationDraft(**values)


def prior(option="ThinkPad X1"):
    return RecommendationState(
        recommended_option=option,
        confidence="medium",
        rationale="Better keyboard.",
        updated_at="2025-06-01T00:00:00+00:00",
    )


def bundle(sufficient=True, sources=None):
    return EvidenceBundle(
        queries=["laptop battery"],
        evidence_text="[S1] Laptop battery life tested",
        sources=sources
        if sources is not None
        else [SourceLink(title="Battery test", url="https://reviews.example.com")],
        sufficient=sufficient,
    )


class TestRecommendationChanged:
    """Tests for recommendation_changed."""

    def test_no_prior_is_not_a_change(self):
        assert not recommendation_changed(None, "MacBook Air")

    def test_whitespace_and_case_are_ignored(self):
        assert not recommendation_changed(prior("MacBook  Air"), " macbook air ")

    def test_different_option_is_a_change(self):
        assert recommendation_changed(prior("ThinkPad X1"), "MacBook Air")


class TestComposeRecommendationText:
    """Tests for compose_recommendation_text."""

    def test_sections_in_order(self):
        text = compose_recommendation_text(draft(), bundle().sources)

        order = [
            "Go with the MacBook Air [S1].",
            "Recommendation: MacBook Air",
            "Confidence: high",
            "Rationale: Longest battery life",
            "Tradeoffs:\n- Fewer ports",
            "Rejected alternatives:\n- ThinkPad X1",
            "What would change this:\n- A price drop",
            "Sources checked:\n1. Battery test - https://reviews.example.com",
        ]
        positions = [text.index(part) for part in order]
        assert positions == sorted(positions)
        assert "What changed" not in text

    def test_optional_sections_omitted(self):
        text = compose_recommendation_text(
            draft(rejected_alternatives=[], change_triggers=[]), []
        )
        assert "Rejected alternatives" not in text
        assert "What would change this" not in text
        assert "Sources checked" not in text

    def test_sources_capped_at_six(self):
        sources = [SourceLink(title=f"S{i}", url=f"https://s{i}.com") for i in range(9)]
        text = compose_recommendation_text(draft(), sources)
        assert "6. S5 - https://s5.com" in text
        assert "7. S6" not in text

    def test_change_note_added(self):
        text = compose_recommendation_text(draft(), [], prior("ThinkPad X1"))
        assert 'What changed: the recommendation moved from "ThinkPad X1" to "MacBook Air"' in text

    def test_change_note_not_duplicated(self):
        text = compose_recommendation_text(
            draft(response="What changed: new battery data. Go with the Air."),
            [],
            prior("ThinkPad X1"),
        )
        assert text.count("What changed") == 1


class TestRecommendationSynthesizer:
    """Tests for RecommendationSynthesizer.synthesize."""

    @pytest.mark.asyncio
    async def test_insufficient_evidence_raises(self, runner, complete_intake):
        synthesizer = RecommendationSynthesizer(runner)
        with pytest.raises(ValueError, match="sufficient"):
            await synthesizer.synthesize(bundle(sufficient=False), complete_intake)

    @pytest.mark.asyncio
    async def test_first_recommendation(self, fake_model, runner, complete_intake):
        fake_model.queue_object(RecommendationDraft, draft(option=" MacBook Air "))
        synthesizer = RecommendationSynthesizer(runner)

        result = await synthesizer.synthesize(bundle(), complete_intake)

        assert result.provider_used == "cerebras"
        assert not result.changed
        assert result.recommendation.recommended_option == "MacBook Air"
        assert result.recommendation.confidence == "high"
        assert result.recommendation.updated_at
        assert "Sources checked:" in result.text

    @pytest.mark.asyncio
    async def test_revision_reports_change(self, fake_model, runner, complete_intake):
        fake_model.queue_object(RecommendationDraft, draft())
        synthesizer = RecommendationSynthesizer(runner)

        result = await synthesizer.synthesize(
            bundle(), complete_intake, prior("ThinkPad X1")
        )

        assert result.changed
        assert "What changed" in result.text

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, runner, complete_intake):
        synthesizer = RecommendationSynthesizer(runner)
        with pytest.raises(AllProvidersFailedError):
            await synthesizer.synthesize(bundle(), complete_intake)
