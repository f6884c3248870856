"""Pytest fixtures for all test modules."""
from typing import Dict, List, Optional

import pytest
from tenacity import wait_none

from decision_store.storage import DecisionStore
from models.config import FetchConfig, SearchConfig
from models.schema import (FetchedPage, IntakeState, SearchResultItem,
                           WebSearchResult)
from web.fetch import WebFetchError
from web.search import SearchNotConfiguredError
from workflow.fallback import ProviderCandidate, ProviderFallbackRunner
from workflow.llm import StructuredOutputError


class FakeModel:
    """Model handle that replays queued structured and text responses."""

    def __init__(self, provider: str = "cerebras"):
        self.provider = provider
        self.model = f"{provider}-test-model"
        self.objects: Dict[type, list] = {}
        self.texts: list = []
        self.calls: List[str] = []

    def queue_object(self, schema, *results):
        self.objects.setdefault(schema, []).extend(results)

    def queue_text(self, *results):
        self.texts.extend(results)

    async def generate_object(
        self, schema, prompt, system=None, history=None, temperature=0.2
    ):
        self.calls.append(schema.__name__)
        queue = self.objects.get(schema)
        if not queue:
            raise StructuredOutputError(f"No {schema.__name__} queued")
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_text(self, prompt, system=None, history=None, temperature=None):
        self.calls.append("text")
        if not self.texts:
            raise StructuredOutputError("No text queued")
        result = self.texts.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def make_runner(*models: FakeModel, attempts: int = 1) -> ProviderFallbackRunner:
    """Fallback runner over fake models, one candidate per model."""
    by_provider = {model.provider: model for model in models}
    candidates = [
        ProviderCandidate(provider=model.provider, model=model.model, api_key="test-key")
        for model in models
    ]
    return ProviderFallbackRunner(
        candidates,
        resolve=lambda candidate: by_provider[candidate.provider],
        attempts=attempts,
        wait=wait_none(),
    )


class FakeSearcher:
    """Searcher returning canned results; queries listed in ``failures`` raise."""

    def __init__(
        self,
        results: Optional[List[SearchResultItem]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        configured: bool = True,
    ):
        self.results = list(results or [])
        self.failures = failures or {}
        self.configured = configured
        self.config = SearchConfig()
        self.queries: List[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def search(self, query: str, max_results: Optional[int] = None):
        self.queries.append(query)
        if not self.configured:
            raise SearchNotConfiguredError()
        if query in self.failures:
            raise self.failures[query]
        return WebSearchResult(query=query, provider_used="tavily", results=self.results)


class FakeFetcher:
    """Fetcher serving ``pages`` by URL; anything else fails."""

    def __init__(self, pages: Optional[Dict[str, str]] = None):
        self.pages = pages or {}
        self.config = FetchConfig()
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> FetchedPage:
        self.fetched.append(url)
        if url not in self.pages:
            raise WebFetchError("web_fetch failed with status 404")
        return FetchedPage(url=url, source="jina", content=self.pages[url])


@pytest.fixture
def store():
    """Provide in-memory decision store for testing."""
    store = DecisionStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def fake_model():
    return FakeModel("cerebras")


@pytest.fixture
def runner(fake_model):
    return make_runner(fake_model)


@pytest.fixture
def search_results():
    """Three distinct hits, enough evidence on their own."""
    return [
        SearchResultItem(
            title="Laptop battery life tested",
            url="https://reviews.example.com/battery",
            snippet="We ran every laptop through a looping video test.",
            published_date="2025-05-20",
            provider="tavily",
        ),
        SearchResultItem(
            title="Energy use of portable computers",
            url="https://www.energy.gov/laptops",
            snippet="Guidance on power consumption.",
            provider="tavily",
        ),
        SearchResultItem(
            title="Ultrabook comparison",
            url="https://techforum.org/ultrabooks",
            snippet="Community comparison of thin and light laptops.",
            provider="tavily",
        ),
    ]


@pytest.fixture
def complete_intake():
    return IntakeState(
        goal="Choose a laptop for frequent travel",
        options_scope="MacBook Air or ThinkPad X1",
        constraints=["Budget under $1500"],
        timeline="Within two weeks",
        risk_tolerance="low",
        success_criteria="All-day battery and under 1.3 kg",
    )
