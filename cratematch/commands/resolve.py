from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from ..batch import BatchResolver, BatchResult
from ..catalog import CatalogRelease
from ..models import OutcomeKind

logger = logging.getLogger(__name__)


async def run(
    batch: BatchResolver,
    releases: List[CatalogRelease],
    *,
    timeout: Optional[float] = None,
    playlist_out: Optional[Path] = None,
) -> List[BatchResult]:
    results: List[BatchResult] = []
    for release in releases:
        label = f"{release.title or release.owner_id} ({len(release.tracks)} tracks)"
        if not release.tracks:
            print(f"{label}: nothing to resolve")
            continue
        print(f"Resolving {label}...")
        result = await batch.run(release.owner_id, release.tracks, timeout=timeout)
        results.append(result)
        for outcome in result.outcomes:
            if outcome.kind is OutcomeKind.QUEUED:
                note = " (throttled)" if outcome.throttled else ""
                print(f"  ? {outcome.descriptor.title}{note}")
            elif outcome.kind is OutcomeKind.FAILED:
                print(f"  ! {outcome.descriptor.title}")
        print(f"  {result.summary.render()}")
        if result.cancelled:
            break
    queued = sum(result.summary.queued for result in results)
    if queued:
        print(f"{queued} track(s) need manual review: run `cratematch review`.")
    if playlist_out is not None:
        write_playlist(playlist_out, results)
    return results


def write_playlist(path: Path, results: List[BatchResult]) -> None:
    payload = [
        {
            "release_id": result.owner_id,
            "tracks": [entry.to_record() for entry in result.playlist_entries()],
        }
        for result in results
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
    logger.info("Wrote playlist entries for %d release(s) to %s", len(payload), path)
