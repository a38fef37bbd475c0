"""Per-track resolution state machine.

``NotStarted -> CacheChecked -> {Resolved | StrategyLoop} -> {Resolved | Exhausted}``

A cache hit ends immediately without touching the network. Otherwise the
query strategies are tried in order and the first one whose best candidate
clears the acceptance threshold wins. When every strategy is exhausted (or
the provider starts throttling) the near-misses go to the unmatched queue.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .cache import MatchCache
from .errors import PersistenceError, ResolutionCancelled, SearchTransportError, ThrottledError
from .models import OutcomeKind, ResolutionOutcome, ScoredCandidate, TrackDescriptor
from .normalize import build_query_strategies
from .providers.base import SearchProvider
from .scoring import CandidateScorer, select_best
from .throttle import NoThrottle, Throttle
from .unmatched import UnmatchedTrackQueue

logger = logging.getLogger(__name__)

OwnerId = Union[str, int]


class KeyedLocks:
    """One lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: Tuple[str, str]) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass(slots=True)
class _StrategyLoopResult:
    accepted: Optional[ScoredCandidate] = None
    seen: List[ScoredCandidate] = field(default_factory=list)
    tried: int = 0
    throttled: bool = False


class TrackResolver:
    def __init__(
        self,
        provider: SearchProvider,
        cache: MatchCache,
        queue: UnmatchedTrackQueue,
        *,
        scorer: Optional[CandidateScorer] = None,
        throttle: Optional[Throttle] = None,
        key_locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.queue = queue
        self.scorer = scorer or CandidateScorer()
        self.throttle: Throttle = throttle or NoThrottle()
        self.key_locks = key_locks or KeyedLocks()

    def resolve(
        self,
        owner_id: OwnerId,
        descriptor: TrackDescriptor,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResolutionOutcome:
        key = MatchCache.key(owner_id, descriptor.title)
        with self.key_locks.hold(key):
            _check_cancelled(cancel_event)
            cached = self._cached(owner_id, descriptor)
            if cached is not None:
                return cached
            loop = self._run_strategies(descriptor, cancel_event)
            _check_cancelled(cancel_event)
            if loop.accepted is not None:
                return self._accept(owner_id, descriptor, loop)
            return self._exhaust(owner_id, descriptor, loop)

    def _cached(self, owner_id: OwnerId, descriptor: TrackDescriptor) -> Optional[ResolutionOutcome]:
        try:
            match = self.cache.get(owner_id, descriptor.title)
        except PersistenceError as exc:
            logger.warning("Cache lookup failed for %r; searching instead: %s", descriptor.title, exc)
            return None
        if match is None:
            return None
        logger.debug("Cache hit for %r -> %s", descriptor.title, match.external_id)
        return ResolutionOutcome(
            kind=OutcomeKind.CACHE_HIT,
            descriptor=descriptor,
            external_id=match.external_id,
            confidence=match.confidence,
        )

    def _run_strategies(
        self, descriptor: TrackDescriptor, cancel_event: Optional[threading.Event]
    ) -> _StrategyLoopResult:
        result = _StrategyLoopResult()
        strategies = build_query_strategies(
            descriptor.title, descriptor.artists, descriptor.release_title
        )
        for query in strategies:
            _check_cancelled(cancel_event)
            if not self.throttle.try_acquire():
                logger.info("Search throttled; leaving %r for later", descriptor.title)
                result.throttled = True
                break
            try:
                candidates = self.provider.search(query)
            except ThrottledError as exc:
                logger.info("Search provider throttled on %r: %s", query, exc)
                result.throttled = True
                break
            except SearchTransportError as exc:
                self.throttle.record_outcome(False)
                result.tried += 1
                logger.warning("Search for %r failed: %s", query, exc)
                continue
            self.throttle.record_outcome(True)
            result.tried += 1
            scored = self.scorer.score_all(descriptor, candidates)
            result.seen.extend(scored)
            best = select_best(scored)
            if best is not None and self.scorer.accepts(best):
                logger.debug(
                    "Strategy %d (%r) matched %r at %.2f",
                    result.tried,
                    query,
                    best.title,
                    best.confidence,
                )
                result.accepted = best
                break
        return result

    def _accept(
        self, owner_id: OwnerId, descriptor: TrackDescriptor, loop: _StrategyLoopResult
    ) -> ResolutionOutcome:
        best = loop.accepted
        assert best is not None
        try:
            self.cache.set_automatic(
                owner_id, descriptor.title, best.external_id, best.confidence, best.title
            )
        except PersistenceError as exc:
            logger.warning(
                "Could not cache match for %r; result kept for this run only: %s",
                descriptor.title,
                exc,
            )
        logger.info(
            "Matched %r -> %r (%s, confidence %.2f)",
            descriptor.title,
            best.title,
            best.external_id,
            best.confidence,
        )
        return ResolutionOutcome(
            kind=OutcomeKind.RESOLVED,
            descriptor=descriptor,
            external_id=best.external_id,
            confidence=best.confidence,
            strategies_tried=loop.tried,
        )

    def _exhaust(
        self, owner_id: OwnerId, descriptor: TrackDescriptor, loop: _StrategyLoopResult
    ) -> ResolutionOutcome:
        record_id: Optional[int] = None
        try:
            record_id = self.queue.enqueue(
                owner_id,
                descriptor,
                strategies_tried=loop.tried,
                candidates=loop.seen,
            )
        except PersistenceError as exc:
            logger.warning("Could not queue %r for review: %s", descriptor.title, exc)
        if not loop.throttled:
            logger.info(
                "No confident match for %r after %d strategies", descriptor.title, loop.tried
            )
        return ResolutionOutcome(
            kind=OutcomeKind.QUEUED,
            descriptor=descriptor,
            strategies_tried=loop.tried,
            record_id=record_id,
            throttled=loop.throttled,
        )


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ResolutionCancelled("resolution cancelled")
