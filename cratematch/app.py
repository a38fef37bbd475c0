from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .batch import BatchResolver
from .cache import MatchCache
from .config import Settings
from .providers import SearchProvider, create_provider
from .resolver import TrackResolver
from .prompt_io import PromptIO
from .review import ReviewSession, default_parse_external_id
from .scoring import CandidateScorer
from .store import TrackStore
from .throttle import CircuitBreaker, RequestBudget, ThrottleChain
from .unmatched import UnmatchedTrackQueue

logger = logging.getLogger(__name__)


@dataclass
class CrateMatchApp:
    settings: Settings
    store: TrackStore
    cache: MatchCache
    queue: UnmatchedTrackQueue
    _provider: SearchProvider | None = None
    _resolver: TrackResolver | None = None

    @classmethod
    def create(cls, settings: Settings) -> "CrateMatchApp":
        store = TrackStore(settings.resolver.cache_path)
        return cls(
            settings=settings,
            store=store,
            cache=MatchCache(store),
            queue=UnmatchedTrackQueue(store, max_candidates=settings.matching.max_near_misses),
        )

    @property
    def provider(self) -> SearchProvider:
        if self._provider is None:
            self._provider = create_provider(
                self.settings.providers,
                budget=RequestBudget(),
                default_retry_after=self.settings.throttle.default_retry_after_seconds,
            )
            logger.debug("Using %s search provider", self._provider.name)
        return self._provider

    def get_resolver(self) -> TrackResolver:
        if self._resolver is None:
            provider = self.provider
            throttles = [CircuitBreaker.from_settings(self.settings.throttle, name=provider.name)]
            budget = getattr(provider, "budget", None)
            if budget is not None:
                throttles.append(budget)
            self._resolver = TrackResolver(
                provider,
                self.cache,
                self.queue,
                scorer=CandidateScorer(self.settings.matching),
                throttle=ThrottleChain(throttles),
            )
        return self._resolver

    def get_batch(self) -> BatchResolver:
        return BatchResolver(
            self.get_resolver(), concurrency=self.settings.resolver.worker_concurrency
        )

    def get_review(
        self, prompt_io: Optional[PromptIO] = None, *, owner_id: Optional[str] = None
    ) -> ReviewSession:
        parse_external_id = default_parse_external_id
        try:
            parse_external_id = self.provider.parse_external_id
        except ValueError as exc:
            logger.warning("Search provider unavailable (%s); accepting plain track IDs only", exc)
        return ReviewSession(
            self.queue,
            prompt_io,
            parse_external_id=parse_external_id,
            owner_id=owner_id,
        )

    def close(self) -> None:
        self.store.close()
