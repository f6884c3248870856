"""Research query planning with a deterministic fallback."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from models.schema import IntakeState, QueryPlan
from workflow import prompts
from workflow.fallback import ProviderFallbackRunner
from workflow.intake import normalize_string_list

logger = logging.getLogger(__name__)

MAX_QUERIES = 6
MIN_QUERY_LENGTH = 5
GENERIC_QUERIES = [
    "decision framework for comparing options",
    "how to evaluate tradeoffs between alternatives",
    "common mistakes when making this kind of decision",
]


@dataclass
class QueryPlanResult:
    """Queries for one research pass; provider_used is None for the fallback."""

    queries: List[str] = field(default_factory=list)
    provider_used: Optional[str] = None


def fallback_queries(intake: IntakeState) -> List[str]:
    """
    Derive queries from intake alone.

    Always returns at least one query.
    """
    candidates = []
    if intake.goal:
        candidates.append(f"{intake.goal} latest analysis")
    if intake.options_scope:
        candidates.append(f"{intake.options_scope} comparison")
    if intake.constraints:
        candidates.append(f"{' '.join(intake.constraints)} best options")
    if intake.timeline:
        candidates.append(f"{intake.timeline} market outlook")
    candidates = [query.strip() for query in candidates if len(query.strip()) >= MIN_QUERY_LENGTH]

    if len(candidates) >= 3:
        return candidates[:4]

    base = " ".join(
        part for part in (intake.goal, intake.options_scope, intake.timeline) if part
    ).strip()
    if len(base) >= MIN_QUERY_LENGTH:
        return [base, f"{base} latest updates", f"{base} risks and tradeoffs"]

    return list(GENERIC_QUERIES)


class ResearchQueryPlanner:
    """Asks the model for 3-6 search queries, falling back to intake-derived ones."""

    def __init__(self, runner: ProviderFallbackRunner, max_queries: int = MAX_QUERIES):
        self.runner = runner
        self.max_queries = max_queries

    async def plan(self, intake: IntakeState, latest_user_text: str = "") -> QueryPlanResult:
        prompt = prompts.query_plan_prompt(intake, latest_user_text)

        async def operation(model):
            return await model.generate_object(
                QueryPlan, prompt, system=prompts.SYSTEM_PROMPT
            )

        try:
            outcome = await self.runner.run(operation, label="query planning")
        except Exception as e:
            logger.warning(f"Query planning failed, using fallback queries: {e}")
            return QueryPlanResult(queries=fallback_queries(intake)[: self.max_queries])

        queries = normalize_string_list(outcome.result.queries, limit=self.max_queries)
        if not queries:
            logger.warning("Query planner returned no usable queries, using fallback")
            return QueryPlanResult(queries=fallback_queries(intake)[: self.max_queries])

        return QueryPlanResult(queries=queries, provider_used=outcome.provider_used)
