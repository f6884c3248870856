"""Recommendation synthesis and revision."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from decision_store.schema import SourceLink
from models.schema import (IntakeState, RecommendationDraft,
                           RecommendationState)
from workflow import prompts
from workflow.evidence import EvidenceBundle
from workflow.fallback import ProviderFallbackRunner

logger = logging.getLogger(__name__)

MAX_SOURCES_LISTED = 6

STILL_RESEARCHING_MESSAGE = (
    "I'm still researching. I couldn't find enough solid evidence yet to make "
    "a confident recommendation. If you have links you trust, paste them here, "
    "or tighten your constraints (budget, must-haves, timeline) and I'll run "
    "another research pass."
)


def _normalize_option(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def recommendation_changed(
    prior: Optional[RecommendationState], new_option: str
) -> bool:
    if prior is None:
        return False
    return _normalize_option(prior.recommended_option) != _normalize_option(new_option)


def _bullets(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def compose_recommendation_text(
    draft: RecommendationDraft,
    sources: Sequence[SourceLink],
    prior: Optional[RecommendationState] = None,
) -> str:
    """
    Render a draft as the reply shown to the user.

    Layout: narrative response (with a "What changed" note when the
    recommendation changed and the narrative does not already say so),
    the structured recommendation block, then up to six sources checked.
    """
    narrative = draft.response.strip()
    if recommendation_changed(prior, draft.recommendation) and (
        "what changed" not in narrative.lower()
    ):
        narrative += (
            f"\n\nWhat changed: the recommendation moved from "
            f"\"{prior.recommended_option}\" to \"{draft.recommendation}\" "
            f"based on the latest evidence."
        )

    sections = [
        narrative,
        f"Recommendation: {draft.recommendation}\n"
        f"Confidence: {draft.confidence}\n"
        f"Rationale: {draft.rationale}",
        f"Tradeoffs:\n{_bullets(draft.tradeoffs)}",
    ]
    if draft.rejected_alternatives:
        sections.append(f"Rejected alternatives:\n{_bullets(draft.rejected_alternatives)}")
    if draft.change_triggers:
        sections.append(f"What would change this:\n{_bullets(draft.change_triggers)}")

    listed = list(sources)[:MAX_SOURCES_LISTED]
    if listed:
        sections.append(
            "Sources checked:\n"
            + "\n".join(
                f"{index}. {source.title} - {source.url}"
                for index, source in enumerate(listed, start=1)
            )
        )

    return "\n\n".join(sections)


@dataclass
class SynthesisResult:
    text: str
    provider_used: str
    recommendation: RecommendationState
    changed: bool


class RecommendationSynthesizer:
    """Turns a sufficient evidence bundle into a recommendation."""

    def __init__(self, runner: ProviderFallbackRunner):
        self.runner = runner

    async def synthesize(
        self,
        evidence: EvidenceBundle,
        intake: IntakeState,
        prior: Optional[RecommendationState] = None,
    ) -> SynthesisResult:
        """
        Synthesize a recommendation.

        Args:
            evidence: Gathered evidence; must be sufficient
            intake: Current intake
            prior: Recommendation standing before this pass, if any

        Returns:
            SynthesisResult with the composed reply and new recommendation state

        Raises:
            ValueError: If the evidence is not sufficient
            NoProviderConfiguredError, AllProvidersFailedError: From the runner
        """
        if not evidence.sufficient:
            raise ValueError("Synthesis requires sufficient evidence")

        prompt = prompts.synthesis_prompt(evidence.evidence_text, intake, prior)

        async def operation(model):
            return await model.generate_object(
                RecommendationDraft, prompt, system=prompts.SYSTEM_PROMPT
            )

        outcome = await self.runner.run(operation, label="recommendation synthesis")
        draft = outcome.result

        changed = recommendation_changed(prior, draft.recommendation)
        if changed:
            logger.info(
                f"Recommendation changed: {prior.recommended_option!r} -> {draft.recommendation!r}"
            )

        recommendation = RecommendationState(
            recommended_option=draft.recommendation.strip(),
            confidence=draft.confidence,
            rationale=draft.rationale.strip() or "No rationale provided.",
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

        return SynthesisResult(
            text=compose_recommendation_text(draft, evidence.sources, prior),
            provider_used=outcome.provider_used,
            recommendation=recommendation,
            changed=changed,
        )
