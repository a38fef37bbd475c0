from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Dict, Iterable, List, Optional, Union

from .cache import MatchCache
from .errors import MalformedRecordError, QueueStateError
from .models import ScoredCandidate, TrackDescriptor, UnmatchedTrackRecord, UnmatchStatus
from .scoring import top_candidates
from .store import TrackStore, UnmatchedRow

logger = logging.getLogger(__name__)

OwnerId = Union[str, int]

MAX_NEAR_MISSES = 3


class UnmatchedTrackQueue:
    """Durable queue of tracks that failed automatic resolution.

    Records move from PENDING to RESOLVED or SKIPPED exactly once; all state
    lives in the store so a review can be interrupted and resumed.
    """

    def __init__(self, store: TrackStore, *, max_candidates: int = MAX_NEAR_MISSES) -> None:
        self.store = store
        self.max_candidates = max(0, min(MAX_NEAR_MISSES, max_candidates))
        self._lock = Lock()

    def enqueue(
        self,
        owner_id: OwnerId,
        descriptor: TrackDescriptor,
        *,
        strategies_tried: int,
        candidates: Iterable[ScoredCandidate],
    ) -> int:
        """Create or update the pending record for ``(owner_id, descriptor.title)``.

        The tried-strategy count accumulates across runs. Near-miss snapshots
        are merged with the stored ones so a throttled run that saw nothing
        does not erase earlier candidates.
        """
        owner = str(owner_id)
        fresh = list(candidates)
        with self._lock:
            existing = self.store.find_pending(owner, descriptor.title)
            if existing is None:
                snapshot = top_candidates(fresh, self.max_candidates)
                record_id = self.store.insert_unmatched(
                    owner,
                    descriptor.title,
                    descriptor.artists or None,
                    descriptor.duration_ms,
                    descriptor.release_title,
                    max(0, strategies_tried),
                    _dump_candidates(snapshot),
                )
                logger.info(
                    "Queued %r (%s) for review after %d strategies",
                    descriptor.title,
                    owner,
                    strategies_tried,
                )
                return record_id
            previous = _load_candidates(existing.get("top_candidates"), int(existing["id"]))
            snapshot = top_candidates(previous + fresh, self.max_candidates)
            tried = int(existing.get("strategies_tried_count") or 0) + max(0, strategies_tried)
            self.store.update_unmatched(
                int(existing["id"]),
                artist=descriptor.artists or existing.get("artist"),
                duration_ms=descriptor.duration_ms or existing.get("duration_ms"),
                release_title=descriptor.release_title or existing.get("release_title"),
                strategies_tried_count=tried,
                top_candidates=_dump_candidates(snapshot),
            )
            logger.info(
                "Updated queued track %r (%s); %d strategies tried so far",
                descriptor.title,
                owner,
                tried,
            )
            return int(existing["id"])

    def get(self, record_id: int) -> Optional[UnmatchedTrackRecord]:
        row = self.store.get_unmatched(record_id)
        return _record_from_row(row) if row else None

    def list(self, status: UnmatchStatus, owner_id: Optional[OwnerId] = None) -> List[UnmatchedTrackRecord]:
        owner = str(owner_id) if owner_id is not None else None
        return [_record_from_row(row) for row in self.store.list_unmatched(status, owner)]

    def list_pending(self, owner_id: Optional[OwnerId] = None) -> List[UnmatchedTrackRecord]:
        return self.list(UnmatchStatus.PENDING, owner_id)

    def list_resolved(self, owner_id: Optional[OwnerId] = None) -> List[UnmatchedTrackRecord]:
        return self.list(UnmatchStatus.RESOLVED, owner_id)

    def list_skipped(self, owner_id: Optional[OwnerId] = None) -> List[UnmatchedTrackRecord]:
        return self.list(UnmatchStatus.SKIPPED, owner_id)

    def counts(self, owner_id: Optional[OwnerId] = None) -> Dict[str, int]:
        owner = str(owner_id) if owner_id is not None else None
        return self.store.count_unmatched(owner)

    def resolve(
        self,
        record_id: int,
        external_id: str,
        matched_title: Optional[str] = None,
    ) -> UnmatchedTrackRecord:
        """PENDING -> RESOLVED, writing a manual cache entry with confidence 1.0."""
        external_id = str(external_id).strip()
        if not external_id:
            raise ValueError("external id must not be empty")
        record = self._require_pending(record_id)
        owner, track_key = MatchCache.key(record.owner_id, record.track_title)
        if not self.store.resolve_unmatched(
            record.id,
            external_id,
            owner_id=owner,
            track_key=track_key,
            matched_title=matched_title or record.track_title,
        ):
            raise QueueStateError(f"unmatched track {record_id} is no longer pending")
        logger.info("Resolved %r (%s) manually as %s", record.track_title, owner, external_id)
        return self._require(record_id)

    def skip(self, record_id: int) -> UnmatchedTrackRecord:
        record = self._require_pending(record_id)
        if not self.store.skip_unmatched(record.id):
            raise QueueStateError(f"unmatched track {record_id} is no longer pending")
        logger.info("Skipped %r (%s)", record.track_title, record.owner_id)
        return self._require(record_id)

    def _require(self, record_id: int) -> UnmatchedTrackRecord:
        record = self.get(record_id)
        if record is None:
            raise KeyError(f"unknown unmatched track id {record_id}")
        return record

    def _require_pending(self, record_id: int) -> UnmatchedTrackRecord:
        record = self._require(record_id)
        if not record.is_pending:
            raise QueueStateError(
                f"unmatched track {record_id} is {record.status.value}; only pending records can change"
            )
        return record


def _dump_candidates(candidates: List[ScoredCandidate]) -> str:
    return json.dumps([candidate.to_record() for candidate in candidates])


def parse_candidates(payload: Optional[str]) -> List[ScoredCandidate]:
    if not payload:
        return []
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedRecordError(f"near-miss snapshot is not valid JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise MalformedRecordError("near-miss snapshot is not a list")
    return [ScoredCandidate.from_record(item) for item in raw]


def _load_candidates(payload: object, record_id: int) -> List[ScoredCandidate]:
    try:
        return parse_candidates(payload if isinstance(payload, str) else None)
    except MalformedRecordError as exc:
        logger.warning("Ignoring near-miss candidates of unmatched track %s: %s", record_id, exc)
        return []


def _record_from_row(row: UnmatchedRow) -> UnmatchedTrackRecord:
    record_id = int(row["id"])
    duration = row.get("duration_ms")
    return UnmatchedTrackRecord(
        id=record_id,
        owner_id=str(row["owner_id"]),
        track_title=str(row["track_title"]),
        artist=row.get("artist"),
        duration_ms=int(duration) if duration is not None else None,
        release_title=row.get("release_title"),
        strategies_tried_count=int(row.get("strategies_tried_count") or 0),
        top_candidates=_load_candidates(row.get("top_candidates"), record_id),
        status=UnmatchStatus(row["status"]),
        resolved_external_id=row.get("resolved_external_id"),
        created_at=row.get("created_at"),
        resolved_at=row.get("resolved_at"),
    )
