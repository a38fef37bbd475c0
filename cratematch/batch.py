from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Union

from .errors import ResolutionCancelled
from .models import BatchSummary, OutcomeKind, PlaylistEntry, ResolutionOutcome, TrackDescriptor
from .resolver import TrackResolver

logger = logging.getLogger(__name__)

OwnerId = Union[str, int]

DEFAULT_CONCURRENCY = 5


@dataclass(slots=True)
class BatchResult:
    owner_id: str
    outcomes: List[ResolutionOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def summary(self) -> BatchSummary:
        return BatchSummary.from_outcomes(self.outcomes, cancelled=self.cancelled)

    def playlist_entries(self) -> List[PlaylistEntry]:
        return playlist_entries(self.owner_id, self.outcomes)


class BatchResolver:
    """Resolve a release's tracks with a bounded pool of workers.

    Each worker takes the next track from an asyncio queue and runs the
    synchronous resolver in a thread. Outcomes keep the input order even
    though tracks may finish out of order.

    On timeout or cancellation the batch returns without joining threads
    that are still inside a provider call. Those threads see the cancel
    event once the call returns and drop their result, so a track reported
    as ABANDONED is normally left uncached. A thread that is already past
    that check finishes its cache or queue write atomically, which the next
    run picks up as a cache hit.
    """

    def __init__(self, resolver: TrackResolver, *, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.resolver = resolver
        self.concurrency = max(1, int(concurrency))

    async def run(
        self,
        owner_id: OwnerId,
        tracks: Iterable[TrackDescriptor],
        *,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> BatchResult:
        descriptors = list(tracks)
        owner = str(owner_id)
        cancel_event = cancel_event or threading.Event()
        outcomes: List[Optional[ResolutionOutcome]] = [None] * len(descriptors)
        queue: asyncio.Queue[tuple[int, TrackDescriptor]] = asyncio.Queue()
        for item in enumerate(descriptors):
            queue.put_nowait(item)

        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="cratematch")
        worker_count = min(self.concurrency, len(descriptors))
        workers = [
            asyncio.create_task(self._worker(i, owner, queue, outcomes, cancel_event, executor))
            for i in range(worker_count)
        ]
        try:
            await asyncio.wait_for(queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Batch for %s timed out after %ss; abandoning unfinished tracks", owner, timeout)
            cancel_event.set()
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        finally:
            await stop_workers(workers)
            executor.shutdown(wait=False, cancel_futures=True)

        final: List[ResolutionOutcome] = []
        for index, outcome in enumerate(outcomes):
            if outcome is None:
                outcome = ResolutionOutcome(kind=OutcomeKind.ABANDONED, descriptor=descriptors[index])
            final.append(outcome)
        result = BatchResult(owner_id=owner, outcomes=final, cancelled=cancel_event.is_set())
        logger.info("Release %s: %s", owner, result.summary.render())
        return result

    async def _worker(
        self,
        worker_id: int,
        owner_id: str,
        queue: "asyncio.Queue[tuple[int, TrackDescriptor]]",
        outcomes: List[Optional[ResolutionOutcome]],
        cancel_event: threading.Event,
        executor: ThreadPoolExecutor,
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            index, descriptor = await queue.get()
            try:
                if cancel_event.is_set():
                    continue
                outcomes[index] = await loop.run_in_executor(
                    executor, self.resolver.resolve, owner_id, descriptor, cancel_event
                )
            except ResolutionCancelled:
                logger.debug("Abandoned %r after cancellation", descriptor.title)
            except Exception:
                logger.exception("Worker %s failed to resolve %r", worker_id, descriptor.title)
                outcomes[index] = ResolutionOutcome(kind=OutcomeKind.FAILED, descriptor=descriptor)
            finally:
                queue.task_done()


async def stop_workers(workers: Sequence[asyncio.Task[None]]) -> None:
    for worker_task in workers:
        worker_task.cancel()
    await asyncio.gather(*workers, return_exceptions=True)


def resolve_batch(
    resolver: TrackResolver,
    owner_id: OwnerId,
    tracks: Iterable[TrackDescriptor],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> BatchResult:
    batch = BatchResolver(resolver, concurrency=concurrency)
    return asyncio.run(batch.run(owner_id, tracks, cancel_event=cancel_event, timeout=timeout))


def playlist_entries(owner_id: OwnerId, outcomes: Iterable[ResolutionOutcome]) -> List[PlaylistEntry]:
    """Resolved identifiers in input order, as handed to playlist assembly."""
    return [
        PlaylistEntry(
            release_id=str(owner_id),
            track_title=outcome.descriptor.title,
            external_id=str(outcome.external_id),
        )
        for outcome in outcomes
        if outcome.has_match
    ]
