"""Decision completion: summarize a finished thread into an immutable record."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from decision_store.schema import (Decision, DecisionRecord, Message,
                                   SourceLink)
from decision_store.storage import DecisionStore
from models.schema import DecisionSummary, OptionConsidered, RuntimeState
from workflow import prompts
from workflow.controller import DecisionNotFoundError
from workflow.fallback import ProviderFallbackRunner
from workflow.llm import parse_structured

logger = logging.getLogger(__name__)

HEURISTIC_PROVIDER = "heuristic"
COMPLETION_HISTORY_LIMIT = 120
NO_RECOMMENDATION = "No recommendation recorded"

_OPTION_SPLIT = re.compile(r"\s*(?:,|;|/|\bor\b|\bvs\.?\b|\bversus\b)\s*", re.IGNORECASE)


@dataclass
class CompletionResult:
    record: DecisionRecord
    provider_used: str


def build_decision_record(
    decision_id: str,
    summary: DecisionSummary,
    sources: Sequence[SourceLink],
    outcome_note: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> DecisionRecord:
    """Copy a summary verbatim into a record for ``decision_id``."""
    note = outcome_note.strip() if outcome_note else None
    return DecisionRecord(
        decision_id=decision_id,
        title=summary.title,
        user_goal=summary.user_goal,
        constraints=list(summary.constraints),
        options_considered=[option.model_copy() for option in summary.options_considered],
        recommended_option=summary.recommended_option,
        rationale=summary.rationale,
        confidence=summary.confidence,
        sources=[SourceLink(title=source.title, url=source.url) for source in sources],
        outcome_note=note or None,
        completed_at=completed_at or datetime.now(timezone.utc),
    )


def _split_options(options_scope: Optional[str]) -> List[OptionConsidered]:
    if not options_scope:
        return []
    names = [part.strip() for part in _OPTION_SPLIT.split(options_scope)]
    return [OptionConsidered(option=name) for name in names if name]


def heuristic_summary(
    decision: Decision, messages: Sequence[Message], state: RuntimeState
) -> DecisionSummary:
    """Summary built from raw conversation and runtime state, without a model."""
    first_user = next(
        (message.content.strip() for message in messages if message.role == "user"),
        "",
    )
    recommendation = state.recommendation
    return DecisionSummary(
        title=decision.title,
        user_goal=first_user or state.intake.goal or decision.user_goal or decision.title,
        constraints=list(state.intake.constraints),
        options_considered=_split_options(state.intake.options_scope),
        recommended_option=(
            recommendation.recommended_option if recommendation else NO_RECOMMENDATION
        ),
        rationale=(
            recommendation.rationale
            if recommendation
            else "The decision was completed before a recommendation was made."
        ),
        confidence=recommendation.confidence if recommendation else "low",
    )


class DecisionAlreadyCompletedError(RuntimeError):
    """The decision already has an immutable record."""


class DecisionCompleter:
    """
    Completes decisions.

    Summarization escalates from a structured model call, to free text
    parsed as JSON, to a heuristic summary, so a record is always written.
    """

    def __init__(
        self,
        store: DecisionStore,
        runner: ProviderFallbackRunner,
        history_limit: int = COMPLETION_HISTORY_LIMIT,
    ):
        self.store = store
        self.runner = runner
        self.history_limit = history_limit

    async def complete(
        self, decision_id: str, outcome_note: Optional[str] = None
    ) -> CompletionResult:
        """
        Complete a decision and clear the active-decision pointer.

        Args:
            decision_id: Decision to complete
            outcome_note: Optional note from the user about the outcome

        Returns:
            CompletionResult with the stored record and the provider used
            ("heuristic" when no model call succeeded)

        Raises:
            DecisionNotFoundError: If the decision does not exist
            DecisionAlreadyCompletedError: If the decision was completed before
        """
        decision = self.store.get_decision(decision_id)
        if decision is None:
            raise DecisionNotFoundError(f"Decision not found: {decision_id}")
        if decision.status == "completed":
            raise DecisionAlreadyCompletedError(
                f"Decision {decision_id} is already completed"
            )

        messages = self.store.get_messages(decision_id, limit=self.history_limit)
        sources = self.store.get_sources(decision_id)

        summary, provider = await self._summarize(messages, outcome_note)
        if summary is None:
            logger.warning(f"Using heuristic summary for decision {decision_id}")
            state = self.store.get_runtime_state(decision_id)
            summary = heuristic_summary(decision, messages, state)
            provider = HEURISTIC_PROVIDER

        record = build_decision_record(decision_id, summary, sources, outcome_note)
        self.store.complete_decision(record)
        self.store.set_active_decision_id(None)

        return CompletionResult(record=record, provider_used=provider)

    async def _summarize(
        self, messages: Sequence[Message], outcome_note: Optional[str]
    ) -> Tuple[Optional[DecisionSummary], Optional[str]]:
        prompt = prompts.completion_prompt(messages, outcome_note)

        async def structured(model):
            return await model.generate_object(DecisionSummary, prompt, temperature=0.1)

        try:
            outcome = await self.runner.run(structured, label="decision summary")
            return outcome.result, outcome.provider_used
        except Exception as e:
            logger.warning(f"Structured decision summary failed: {e}")

        text_prompt = prompts.completion_json_prompt(messages, outcome_note)

        async def free_text(model):
            text = await model.generate_text(text_prompt, temperature=0.1)
            return parse_structured(text, DecisionSummary)

        try:
            outcome = await self.runner.run(free_text, label="decision summary (text)")
            return outcome.result, outcome.provider_used
        except Exception as e:
            logger.warning(f"Free-text decision summary failed: {e}")

        return None, None
