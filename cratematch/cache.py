from __future__ import annotations

import logging
from typing import Dict, Optional, Union

from .models import CachedMatch, MatchSource
from .normalize import match_key
from .store import TrackStore

logger = logging.getLogger(__name__)

OwnerId = Union[str, int]

MANUAL_CONFIDENCE = 1.0


class MatchCache:
    """Read-through/write-through cache of resolved tracks.

    Entries are keyed by the catalog owner (release) and the normalized track
    title, and never expire. A manual decision always wins over an automatic
    match for the same key.
    """

    def __init__(self, store: TrackStore) -> None:
        self.store = store

    @staticmethod
    def key(owner_id: OwnerId, title: str) -> tuple[str, str]:
        return str(owner_id), match_key(title)

    def get(self, owner_id: OwnerId, title: str) -> Optional[CachedMatch]:
        owner, track_key = self.key(owner_id, title)
        return self.store.get_match(owner, track_key)

    def set_automatic(
        self,
        owner_id: OwnerId,
        title: str,
        external_id: str,
        confidence: float,
        matched_title: Optional[str],
    ) -> bool:
        owner, track_key = self.key(owner_id, title)
        written = self.store.set_match(
            owner, track_key, external_id, confidence, matched_title, MatchSource.AUTOMATIC
        )
        if not written:
            logger.info(
                "Kept manual match for %s / %r; automatic match %s ignored",
                owner,
                title,
                external_id,
            )
        return written

    def set_manual(
        self,
        owner_id: OwnerId,
        title: str,
        external_id: str,
        matched_title: Optional[str] = None,
    ) -> None:
        owner, track_key = self.key(owner_id, title)
        self.store.set_match(
            owner,
            track_key,
            external_id,
            MANUAL_CONFIDENCE,
            matched_title or title,
            MatchSource.MANUAL,
        )

    def stats(self) -> Dict[str, float]:
        return self.store.match_stats()

    def clear(self, *, include_manual: bool = False) -> int:
        if include_manual:
            return self.store.delete_matches()
        return self.store.delete_matches(MatchSource.AUTOMATIC)
