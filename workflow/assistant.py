"""Decision assistant: the command surface over the decision workflow.

Wires storage, providers, web search and fetch into the turn orchestrator
and exposes the user-facing operations: free-text turns, starting and
completing decisions, status, provider switching and memory search.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from decision_store.schema import Decision, DecisionRecord, MemoryMatch
from decision_store.storage import ACTIVE_PROVIDER_KEY, DecisionStore
from models.config import SUPPORTED_PROVIDERS, Config
from web.fetch import WebFetcher
from web.search import WebSearcher
from workflow.completion import CompletionResult, DecisionCompleter
from workflow.controller import DecisionTurnOrchestrator
from workflow.evidence import EvidenceGatherer
from workflow.fallback import ProviderFallbackRunner
from workflow.intake import (INTAKE_FIELD_LABELS, intake_progress,
                             missing_intake_fields)
from workflow.llm import build_fallback_runner
from workflow.planner import ResearchQueryPlanner
from workflow.synthesizer import RecommendationSynthesizer

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 60
ERROR_REPLY_PREFIX = "I hit an error while processing that turn: "
EMPTY_MESSAGE_REPLY = "Tell me about the decision you're working on."


@dataclass
class AssistantReply:
    """Reply to one inbound message."""

    text: str
    decision_id: Optional[str] = None
    provider_used: Optional[str] = None
    stage: Optional[str] = None
    error: Optional[str] = None


class DecisionAssistant:
    """
    Single-user decision assistant.

    Example:
        assistant = DecisionAssistant.from_config(load_config())
        reply = await assistant.handle_message("Should I lease or buy a car?")
        print(reply.text)
    """

    def __init__(
        self,
        config: Config,
        store: DecisionStore,
        searcher: Optional[WebSearcher] = None,
        fetcher: Optional[WebFetcher] = None,
        runner_factory: Optional[Callable[[str], ProviderFallbackRunner]] = None,
    ):
        """
        Args:
            config: Loaded configuration
            store: Decision store
            searcher: Web searcher (default: built from config.search)
            fetcher: Page fetcher (default: built from config.fetch)
            runner_factory: Builds a fallback runner for an active provider
                (default: runner over the configured providers)
        """
        self.config = config
        self.store = store
        self.searcher = searcher or WebSearcher(config.search)
        self.fetcher = fetcher or WebFetcher(config.fetch)
        self._runner_factory = runner_factory or (
            lambda provider: build_fallback_runner(config, provider)
        )

    @classmethod
    def from_config(cls, config: Config) -> "DecisionAssistant":
        return cls(config, DecisionStore(config.storage.db_path))

    @property
    def active_provider(self) -> str:
        stored = self.store.get_app_state(ACTIVE_PROVIDER_KEY)
        if stored in SUPPORTED_PROVIDERS:
            return stored
        return self.config.active_provider

    def configured_providers(self) -> List[str]:
        return [
            name
            for name in self.config.provider_order
            if name in self.config.providers and self.config.providers[name].api_key
        ]

    def _runner(self) -> ProviderFallbackRunner:
        return self._runner_factory(self.active_provider)

    def build_orchestrator(self) -> DecisionTurnOrchestrator:
        workflow = self.config.workflow
        runner = self._runner()
        planner = ResearchQueryPlanner(runner, max_queries=workflow.max_queries)
        gatherer = EvidenceGatherer(
            self.store, planner, self.searcher, self.fetcher, config=workflow
        )
        return DecisionTurnOrchestrator(
            self.store, runner, gatherer, RecommendationSynthesizer(runner)
        )

    def active_decision(self) -> Optional[Decision]:
        decision_id = self.store.get_active_decision_id()
        if not decision_id:
            return None
        decision = self.store.get_decision(decision_id)
        if decision is None or decision.status != "active":
            return None
        return decision

    async def handle_message(self, text: str) -> AssistantReply:
        """
        Run one turn for an inbound user message.

        Uses the active decision or starts one titled after the message.
        Errors are logged and returned as a reply rather than raised.
        """
        text = (text or "").strip()
        if not text:
            return AssistantReply(text=EMPTY_MESSAGE_REPLY)

        decision_id = None
        try:
            decision = self.active_decision()
            if decision is None:
                decision = self.store.create_decision(
                    title=text[:TITLE_MAX_CHARS], user_goal=text
                )
            decision_id = decision.id

            self.store.add_message(decision_id, "user", text)
            result = await self.build_orchestrator().run_turn(decision_id)

        except Exception as e:
            logger.error(f"Turn failed for decision {decision_id}: {e}", exc_info=True)
            return AssistantReply(
                text=f"{ERROR_REPLY_PREFIX}{e}",
                decision_id=decision_id,
                error=type(e).__name__,
            )

        return AssistantReply(
            text=f"{result.text}\n\n(Provider: {result.provider_used})",
            decision_id=decision_id,
            provider_used=result.provider_used,
            stage=result.stage,
        )

    def new_decision(self, goal: Optional[str] = None) -> Decision:
        """Start a new decision and make it active."""
        goal = (goal or "").strip()
        title = goal[:TITLE_MAX_CHARS] if goal else "New decision"
        return self.store.create_decision(title=title, user_goal=goal)

    async def complete_decision(
        self, outcome_note: Optional[str] = None
    ) -> Optional[CompletionResult]:
        """Complete the active decision; None when there is no active decision."""
        decision = self.active_decision()
        if decision is None:
            return None
        completer = DecisionCompleter(self.store, self._runner())
        result = await completer.complete(decision.id, outcome_note)
        logger.info(
            f"Decision {decision.id} completed (summary by {result.provider_used})"
        )
        return result

    def set_active_provider(self, name: str) -> str:
        """
        Switch the provider tried first.

        Raises:
            ValueError: If the provider is unknown or has no API key
        """
        name = (name or "").strip().lower()
        if name not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unknown provider '{name}'. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        if name not in self.configured_providers():
            raise ValueError(f"No API key configured for provider '{name}'")
        self.store.set_app_state(ACTIVE_PROVIDER_KEY, name)
        logger.info(f"Active provider set to {name}")
        return name

    def status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "active_provider": self.active_provider,
            "configured_providers": self.configured_providers(),
            "search_configured": self.searcher.is_configured,
            "active_decision": None,
        }

        decision = self.active_decision()
        if decision is None:
            return status

        state = self.store.get_runtime_state(decision.id)
        status["active_decision"] = {
            "id": decision.id,
            "title": decision.title,
            "stage": state.stage,
            "intake_progress": round(intake_progress(state.intake), 3),
            "missing_intake": [
                INTAKE_FIELD_LABELS[name] for name in missing_intake_fields(state.intake)
            ],
            "recommendation": (
                state.recommendation.model_dump() if state.recommendation else None
            ),
            "last_research_at": state.research.last_research_at,
        }
        return status

    def search_memory(self, query: str, limit: int = 3) -> List[MemoryMatch]:
        return self.store.search_memories(query, limit=limit)

    def get_record(self, decision_id: str) -> Optional[DecisionRecord]:
        return self.store.get_decision_record(decision_id)
