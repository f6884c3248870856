"""Evidence gathering for one research pass.

Plans queries, runs searches and page fetches concurrently, merges in
prior-decision memory, and judges whether there is enough evidence to
attempt a recommendation this turn.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from decision_store.schema import MemoryMatch, Message, SourceLink
from decision_store.storage import DecisionStore
from models.config import WorkflowConfig
from models.schema import FetchedPage, RankedSearchResult, RuntimeState
from web.fetch import WebFetcher
from web.search import SearchNotConfiguredError, WebSearcher
from workflow.planner import ResearchQueryPlanner
from workflow.prompts import format_intake
from workflow.ranking import rank_search_results

logger = logging.getLogger(__name__)

USER_LINK_TITLE = "User-provided link"
MAX_RESULTS_PER_QUERY = 6
SNIPPET_MAX_CHARS = 400
FETCH_EXTRACT_MAX_CHARS = 3_500
MIN_DISTINCT_URLS = 3
MIN_FETCHED_DOCUMENTS = 2

_URL_PATTERN = re.compile(r"https?://[^\s<>\"'`]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?)]}>'\""


@dataclass
class EvidenceBundle:
    """Everything one research pass produced."""

    queries: List[str]
    evidence_text: str
    sources: List[SourceLink]
    sufficient: bool
    provider_used: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    ranked: List[RankedSearchResult] = field(default_factory=list)
    fetched_count: int = 0


def extract_user_urls(text: str, limit: int = 4) -> List[str]:
    """First ``limit`` distinct http(s) URLs in ``text``, trailing punctuation stripped."""
    urls: List[str] = []
    for match in _URL_PATTERN.finditer(text or ""):
        url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if url and url not in urls:
            urls.append(url)
        if len(urls) >= limit:
            break
    return urls


def is_sufficient(distinct_urls: int, fetched_documents: int) -> bool:
    return distinct_urls >= MIN_DISTINCT_URLS or fetched_documents >= MIN_FETCHED_DOCUMENTS


def latest_user_text(history: Sequence[Message]) -> str:
    for message in reversed(history):
        if message.role == "user":
            return message.content
    return ""


def _truncate(text: str, max_chars: int) -> str:
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def build_evidence_text(
    now: datetime,
    runtime: RuntimeState,
    queries: Sequence[str],
    ranked: Sequence[RankedSearchResult],
    pages: Sequence[FetchedPage],
    memories: Sequence[MemoryMatch],
    warnings: Sequence[str],
    max_chars: int,
) -> str:
    """Assemble the evidence block handed to the synthesizer, capped at ``max_chars``."""
    lines = [
        f"Current time: {now.isoformat()}",
        "",
        "Intake:",
        format_intake(runtime.intake),
        "",
        "Queries used:",
    ]
    lines.extend(f"- {query}" for query in queries)

    lines.extend(["", "Top search results:"])
    if not ranked:
        lines.append("(none)")
    for index, item in enumerate(ranked, start=1):
        lines.append(f"[S{index}] {item.title}")
        lines.append(f"URL: {item.url}")
        if item.published_date:
            lines.append(f"Published: {item.published_date}")
        if item.snippet:
            lines.append(f"Snippet: {_truncate(item.snippet, SNIPPET_MAX_CHARS)}")

    if pages:
        lines.extend(["", "Fetched pages:"])
        for index, page in enumerate(pages, start=1):
            lines.append(f"[F{index}] {page.url} (via {page.source})")
            lines.append(_truncate(page.content, FETCH_EXTRACT_MAX_CHARS))

    if memories:
        lines.extend(["", "Relevant prior decisions:"])
        for memory in memories:
            lines.append(f"- {memory.title} (completed {memory.completed_at}): {memory.snippet}")

    if warnings:
        lines.extend(["", "Search warnings:"])
        lines.extend(f"- {warning}" for warning in warnings)

    return "\n".join(lines)[:max_chars]


class EvidenceGatherer:
    """Runs one research pass for a decision."""

    def __init__(
        self,
        store: DecisionStore,
        planner: ResearchQueryPlanner,
        searcher: WebSearcher,
        fetcher: WebFetcher,
        config: Optional[WorkflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.planner = planner
        self.searcher = searcher
        self.fetcher = fetcher
        self.config = config or WorkflowConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def gather(
        self, decision_id: str, runtime: RuntimeState, history: Sequence[Message]
    ) -> EvidenceBundle:
        """
        Gather evidence for the decision's current intake.

        Individual search and fetch failures are tolerated: failed searches
        become warnings and failed fetches are dropped.

        Args:
            decision_id: Decision the sources are recorded against
            runtime: Current runtime state (read only)
            history: Recent messages, oldest first

        Returns:
            EvidenceBundle with the sufficiency verdict

        Raises:
            SearchNotConfiguredError: If no search provider has an API key
        """
        if not self.searcher.is_configured:
            raise SearchNotConfiguredError()

        cfg = self.config
        user_text = latest_user_text(history)

        plan = await self.planner.plan(runtime.intake, user_text)
        queries = plan.queries[: cfg.max_queries]
        logger.info(f"Researching decision {decision_id} with {len(queries)} queries")

        ranked, warnings = await self._search(queries)

        for item in ranked:
            self.store.add_source(decision_id, item.title, item.url)
        user_urls = extract_user_urls(user_text, cfg.max_user_urls)
        for url in user_urls:
            self.store.add_source(decision_id, USER_LINK_TITLE, url)

        pages = await self._fetch(ranked, user_urls)

        memories: List[MemoryMatch] = []
        memory_query = " ".join(
            part for part in (runtime.intake.goal, runtime.intake.options_scope) if part
        ).strip()
        if memory_query:
            memories = self.store.search_memories(memory_query, limit=cfg.memory_matches)

        evidence_text = build_evidence_text(
            now=self.clock(),
            runtime=runtime,
            queries=queries,
            ranked=ranked,
            pages=pages,
            memories=memories,
            warnings=warnings,
            max_chars=cfg.evidence_max_chars,
        )

        sources = [SourceLink(title=item.title, url=item.url) for item in ranked]
        known = {source.url for source in sources}
        sources.extend(
            SourceLink(title=USER_LINK_TITLE, url=url) for url in user_urls if url not in known
        )

        distinct_urls = len({item.url for item in ranked})
        sufficient = is_sufficient(distinct_urls, len(pages))
        logger.info(
            f"Evidence for {decision_id}: {distinct_urls} ranked URLs, "
            f"{len(pages)} fetched pages, sufficient={sufficient}"
        )

        return EvidenceBundle(
            queries=queries,
            evidence_text=evidence_text,
            sources=sources,
            sufficient=sufficient,
            provider_used=plan.provider_used,
            warnings=warnings,
            ranked=ranked,
            fetched_count=len(pages),
        )

    async def _search(self, queries: Sequence[str]):
        cfg = self.config
        outcomes = await asyncio.gather(
            *(self.searcher.search(query) for query in queries),
            return_exceptions=True,
        )

        raw = []
        warnings: List[str] = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, SearchNotConfiguredError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                warnings.append(f"Search failed for '{query}': {outcome}")
                continue
            raw.extend(outcome.results[:MAX_RESULTS_PER_QUERY])

        ranked = rank_search_results(raw, self.clock())[: cfg.top_results]
        return ranked, warnings

    async def _fetch(
        self, ranked: Sequence[RankedSearchResult], user_urls: Sequence[str]
    ) -> List[FetchedPage]:
        cfg = self.config
        targets: List[str] = []
        for url in [item.url for item in ranked[: cfg.fetch_top]] + list(user_urls):
            if url not in targets:
                targets.append(url)
        targets = targets[: cfg.max_fetches]
        if not targets:
            return []

        outcomes = await asyncio.gather(
            *(self.fetcher.fetch(url) for url in targets), return_exceptions=True
        )

        pages = []
        for url, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.info(f"Dropping failed fetch of {url}: {outcome}")
                continue
            if outcome.content.strip():
                pages.append(outcome)
        return pages
