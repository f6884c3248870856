"""Multi-provider fallback for model calls.

Every model-calling step (intake analysis, query planning, synthesis,
follow-up classification, summarization) runs through
ProviderFallbackRunner: each credentialed provider is tried in order, a
fixed number of times, until one succeeds.
"""
import logging
from dataclasses import dataclass
from typing import (Any, Awaitable, Callable, Generic, List, Optional,
                    Sequence, TypeVar)

from tenacity import AsyncRetrying, stop_after_attempt, wait_random
from tenacity.wait import wait_base

from adapters import default_model
from models.config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS_PER_PROVIDER = 2


class NoProviderConfiguredError(RuntimeError):
    """No model provider has an API key."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "No LLM provider API keys configured. "
            "Set an API key for cerebras, groq or openrouter."
        )


class AllProvidersFailedError(RuntimeError):
    """Every candidate provider exhausted its attempts."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("All providers failed. " + " | ".join(self.errors))


@dataclass(frozen=True)
class ProviderCandidate:
    """A credentialed provider/model pair eligible for a model call."""

    provider: str
    model: str
    api_key: str


@dataclass
class FallbackResult(Generic[T]):
    """Result of a model call and the provider that produced it."""

    provider_used: str
    result: T


def get_provider_candidates(
    config: Config, active_provider: Optional[str] = None
) -> List[ProviderCandidate]:
    """
    Order providers for a model call.

    The active provider comes first, then the configured order. Providers
    without an API key are skipped.

    Args:
        config: Loaded configuration
        active_provider: Runtime override of ``config.active_provider``

    Returns:
        Candidates in the order they should be tried (may be empty)
    """
    active = active_provider or config.active_provider
    ordered = [active] + [name for name in config.provider_order if name != active]

    candidates = []
    for name in ordered:
        provider_config = config.providers.get(name)
        if provider_config is None or not provider_config.api_key:
            continue
        candidates.append(
            ProviderCandidate(
                provider=name,
                model=provider_config.model or default_model(name),
                api_key=provider_config.api_key,
            )
        )
    return candidates


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class ProviderFallbackRunner:
    """
    Runs one logical model call against an ordered list of providers.

    Each candidate gets ``attempts`` tries with a short jittered wait between
    them. The first success wins; failures are collected as
    ``"provider#attempt: message"`` and reported together if every candidate
    fails.

    Example:
        runner = ProviderFallbackRunner(candidates, resolve=handle_factory)
        outcome = await runner.run(lambda model: model.generate_text(prompt))
        print(outcome.provider_used, outcome.result)
    """

    def __init__(
        self,
        candidates: Sequence[ProviderCandidate],
        resolve: Callable[[ProviderCandidate], Any],
        attempts: int = DEFAULT_ATTEMPTS_PER_PROVIDER,
        wait: Optional[wait_base] = None,
    ):
        """
        Args:
            candidates: Providers in the order they should be tried
            resolve: Builds the model handle handed to the operation
            attempts: Attempts per candidate (default: 2)
            wait: tenacity wait strategy between attempts on one candidate
                (default: random 0.25-0.6s)
        """
        self.candidates = list(candidates)
        self.resolve = resolve
        self.attempts = attempts
        self.wait = wait if wait is not None else wait_random(0.25, 0.6)

    @property
    def providers(self) -> List[str]:
        return [candidate.provider for candidate in self.candidates]

    async def run(
        self, operation: Callable[[Any], Awaitable[T]], label: str = "model call"
    ) -> FallbackResult[T]:
        """
        Execute ``operation`` with provider fallback.

        Args:
            operation: Async callable receiving a resolved model handle
            label: Name of the step, used in logs

        Returns:
            FallbackResult with the first successful result

        Raises:
            NoProviderConfiguredError: If there are no candidates
            AllProvidersFailedError: If every attempt on every candidate failed
        """
        if not self.candidates:
            raise NoProviderConfiguredError()

        errors: List[str] = []
        for candidate in self.candidates:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=self.wait,
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        number = attempt.retry_state.attempt_number
                        try:
                            handle = self.resolve(candidate)
                            result = await operation(handle)
                        except Exception as e:
                            errors.append(f"{candidate.provider}#{number}: {_describe(e)}")
                            logger.warning(
                                f"{label} failed on {candidate.provider} "
                                f"(attempt {number}/{self.attempts}): {_describe(e)}"
                            )
                            raise
            except Exception:
                continue

            logger.debug(f"{label} succeeded on {candidate.provider}")
            return FallbackResult(provider_used=candidate.provider, result=result)

        logger.error(f"{label} failed on all providers: {errors}")
        raise AllProvidersFailedError(errors)
