"""Stage controller: drives one turn per user message.

A decision moves through three stages:

    intake -> research -> recommendation
                 ^              |
                 +--------------+  (follow-up needs re-research)

Every transition is checked against ALLOWED_TRANSITIONS. Each turn appends
exactly one assistant message, and runtime state is saved after each
sub-step and before the reply is returned.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

from decision_store.schema import Message
from decision_store.storage import DecisionStore
from models.schema import (FollowUpClassification, IntakeAnalysis,
                           ResearchState, RuntimeState)
from workflow import prompts
from workflow.evidence import EvidenceGatherer, latest_user_text
from workflow.fallback import ProviderFallbackRunner
from workflow.intake import (INTAKE_FIELD_LABELS, intake_progress,
                             is_intake_complete, merge_intake,
                             missing_fields_to_questions,
                             missing_intake_fields, normalize_string_list)
from workflow.synthesizer import (STILL_RESEARCHING_MESSAGE,
                                  RecommendationSynthesizer)

logger = logging.getLogger(__name__)

NO_PROVIDER = "none"
HISTORY_LIMIT = 80
MAX_INTAKE_QUESTIONS = 4

ALLOWED_TRANSITIONS = {
    "intake": frozenset({"intake", "research"}),
    "research": frozenset({"research", "recommendation"}),
    "recommendation": frozenset({"recommendation", "research"}),
}

ACKNOWLEDGEMENT_PHRASES = frozenset(
    {
        "thanks",
        "thank you",
        "ok",
        "okay",
        "done",
        "got it",
        "great",
        "cool",
        "perfect",
        "sounds good",
        "thx",
        "ty",
    }
)


class InvalidStageTransitionError(RuntimeError):
    """A stage change outside ALLOWED_TRANSITIONS was attempted."""


class DecisionNotFoundError(LookupError):
    """The decision id does not exist."""


def transition(state: RuntimeState, target: str) -> RuntimeState:
    """Return a copy of ``state`` in stage ``target``.

    Raises:
        InvalidStageTransitionError: If the edge is not allowed
    """
    if target not in ALLOWED_TRANSITIONS.get(state.stage, frozenset()):
        raise InvalidStageTransitionError(
            f"Cannot move from '{state.stage}' to '{target}'"
        )
    if target != state.stage:
        logger.info(f"Stage transition: {state.stage} -> {target}")
    return state.model_copy(update={"stage": target})


def is_acknowledgement(text: str) -> bool:
    normalized = " ".join(text.strip().lower().split()).rstrip(".!?,;: ")
    return normalized in ACKNOWLEDGEMENT_PHRASES


def compose_intake_reply(acknowledgement: str, questions: Sequence[str], progress: float) -> str:
    parts = []
    if acknowledgement.strip():
        parts.append(acknowledgement.strip())
    if questions:
        parts.append(
            "Before I research, I need a bit more:\n"
            + "\n".join(f"{index}. {question}" for index, question in enumerate(questions, start=1))
        )
    parts.append(f"Intake progress: {round(progress * 100)}%")
    return "\n\n".join(parts)


@dataclass
class TurnResult:
    """Outcome of one turn."""

    text: str
    provider_used: str
    stage: str


@dataclass
class _StageReply:
    text: str
    provider_used: Optional[str]
    state: RuntimeState


class DecisionTurnOrchestrator:
    """
    Runs turns for decisions.

    The latest user message must already be in the decision's history when
    run_turn() is called.
    """

    def __init__(
        self,
        store: DecisionStore,
        runner: ProviderFallbackRunner,
        gatherer: EvidenceGatherer,
        synthesizer: RecommendationSynthesizer,
        history_limit: int = HISTORY_LIMIT,
    ):
        self.store = store
        self.runner = runner
        self.gatherer = gatherer
        self.synthesizer = synthesizer
        self.history_limit = history_limit

    async def run_turn(self, decision_id: str) -> TurnResult:
        """
        Process the latest user message of a decision.

        Args:
            decision_id: Active decision

        Returns:
            TurnResult with the reply text, provider used and resulting stage

        Raises:
            DecisionNotFoundError: If the decision does not exist
            NoProviderConfiguredError, AllProvidersFailedError: Model calls failed
            SearchNotConfiguredError: Research needed but no search provider
        """
        if self.store.get_decision(decision_id) is None:
            raise DecisionNotFoundError(f"Decision not found: {decision_id}")

        state = self.store.get_runtime_state(decision_id)
        history = self.store.get_messages(decision_id, limit=self.history_limit)
        logger.info(f"Turn for decision {decision_id} in stage {state.stage}")

        if state.stage == "intake":
            reply = await self._handle_intake(decision_id, state, history)
        elif state.stage == "research":
            reply = await self._handle_research(decision_id, state, history)
        else:
            reply = await self._handle_recommendation(decision_id, state, history)

        self.store.save_runtime_state(decision_id, reply.state)
        self.store.add_message(decision_id, "assistant", reply.text)

        return TurnResult(
            text=reply.text,
            provider_used=reply.provider_used or NO_PROVIDER,
            stage=reply.state.stage,
        )

    async def _handle_intake(
        self, decision_id: str, state: RuntimeState, history: Sequence[Message]
    ) -> _StageReply:
        prompt = prompts.intake_analysis_prompt(state.intake, history)

        async def operation(model):
            return await model.generate_object(
                IntakeAnalysis, prompt, system=prompts.SYSTEM_PROMPT
            )

        outcome = await self.runner.run(operation, label="intake analysis")
        analysis: IntakeAnalysis = outcome.result

        intake = merge_intake(state.intake, analysis.extracted)
        state = state.model_copy(update={"intake": intake})
        self.store.save_runtime_state(decision_id, state)

        if not is_intake_complete(intake):
            missing = missing_intake_fields(intake)
            logger.info(
                "Intake incomplete, missing: "
                + ", ".join(INTAKE_FIELD_LABELS[name] for name in missing)
            )
            questions = normalize_string_list(
                analysis.questions + missing_fields_to_questions(missing),
                limit=MAX_INTAKE_QUESTIONS,
            )
            text = compose_intake_reply(
                analysis.acknowledgement, questions, intake_progress(intake)
            )
            return _StageReply(text, outcome.provider_used, state)

        state = transition(state, "research")
        self.store.save_runtime_state(decision_id, state)

        research = await self._handle_research(decision_id, state, history)
        acknowledgement = analysis.acknowledgement.strip()
        text = f"{acknowledgement}\n\n{research.text}" if acknowledgement else research.text
        return _StageReply(
            text, research.provider_used or outcome.provider_used, research.state
        )

    async def _handle_research(
        self, decision_id: str, state: RuntimeState, history: Sequence[Message]
    ) -> _StageReply:
        evidence = await self.gatherer.gather(decision_id, state, history)

        state = state.model_copy(
            update={
                "research": ResearchState(
                    queries=evidence.queries,
                    last_research_at=datetime.now(timezone.utc).isoformat(),
                )
            }
        )

        if not evidence.sufficient:
            logger.info(f"Insufficient evidence for {decision_id}; staying in research")
            return _StageReply(STILL_RESEARCHING_MESSAGE, evidence.provider_used, state)

        synthesis = await self.synthesizer.synthesize(
            evidence, state.intake, state.recommendation
        )
        state = transition(state, "recommendation").model_copy(
            update={"recommendation": synthesis.recommendation}
        )
        return _StageReply(synthesis.text, synthesis.provider_used, state)

    async def _handle_recommendation(
        self, decision_id: str, state: RuntimeState, history: Sequence[Message]
    ) -> _StageReply:
        user_text = latest_user_text(history)

        if state.recommendation is None:
            mode, provider = "reresearch", None
        else:
            mode, provider = await self.classify_follow_up(user_text, state)

        if mode == "clarify_existing":
            return await self._clarify(decision_id, state, user_text, provider)

        # Persisted by run_turn only once the research pass succeeds
        state = transition(state, "research")
        research = await self._handle_research(decision_id, state, history)
        return _StageReply(
            research.text, research.provider_used or provider, research.state
        )

    async def classify_follow_up(
        self, user_text: str, state: RuntimeState
    ) -> Tuple[str, Optional[str]]:
        """
        Decide whether a recommendation-stage follow-up needs new research.

        Short acknowledgements are ``clarify_existing`` without a model call.
        A failed classification defaults to ``reresearch``.

        Returns:
            Tuple of (mode, provider used or None)
        """
        if is_acknowledgement(user_text):
            return "clarify_existing", None

        prompt = prompts.classification_prompt(
            user_text, state.intake, state.recommendation
        )

        async def operation(model):
            return await model.generate_object(
                FollowUpClassification, prompt, system=prompts.SYSTEM_PROMPT
            )

        try:
            outcome = await self.runner.run(operation, label="follow-up classification")
        except Exception as e:
            logger.warning(f"Follow-up classification failed, re-researching: {e}")
            return "reresearch", None

        logger.info(
            f"Follow-up classified as {outcome.result.mode}: {outcome.result.reason}"
        )
        return outcome.result.mode, outcome.provider_used

    async def _clarify(
        self,
        decision_id: str,
        state: RuntimeState,
        user_text: str,
        provider: Optional[str],
    ) -> _StageReply:
        recommendation = state.recommendation

        if is_acknowledgement(user_text):
            text = (
                f"You're welcome. The recommendation stands: "
                f"{recommendation.recommended_option} ({recommendation.confidence} confidence). "
                "Send new details anytime and I'll re-check, or complete the decision "
                "when you're ready."
            )
            return _StageReply(text, provider, transition(state, "recommendation"))

        sources = self.store.get_sources(decision_id)
        prompt = prompts.clarify_prompt(user_text, state.intake, recommendation, sources)

        async def operation(model):
            return await model.generate_text(prompt, system=prompts.SYSTEM_PROMPT)

        outcome = await self.runner.run(operation, label="clarification")
        return _StageReply(
            outcome.result, outcome.provider_used, transition(state, "recommendation")
        )
