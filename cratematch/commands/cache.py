from __future__ import annotations

from typing import List

from ..cache import MatchCache
from ..unmatched import UnmatchedTrackQueue
from .output import percent, stat


def stats(cache: MatchCache, queue: UnmatchedTrackQueue) -> List[str]:
    matches = cache.stats()
    counts = queue.counts()
    lines = [
        stat("Cached matches", matches["total"], f"{matches['manual']} manual"),
        stat("Average confidence", percent(matches["average_confidence"])),
        stat("Unmatched pending", counts.get("pending", 0)),
        stat("Unmatched resolved", counts.get("resolved", 0)),
        stat("Unmatched skipped", counts.get("skipped", 0)),
    ]
    for line in lines:
        print(line)
    return lines


def clear(cache: MatchCache) -> int:
    removed = cache.clear()
    print(f"Removed {removed} automatic match(es); manual decisions kept.")
    return removed
