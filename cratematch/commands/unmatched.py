from __future__ import annotations

import json
from typing import List, Optional

from ..models import UnmatchedTrackRecord, UnmatchStatus
from ..review import format_duration
from ..unmatched import UnmatchedTrackQueue


def run(
    queue: UnmatchedTrackQueue,
    *,
    status: str = UnmatchStatus.PENDING.value,
    owner_id: Optional[str] = None,
    json_output: bool = False,
) -> List[UnmatchedTrackRecord]:
    records = queue.list(UnmatchStatus(status), owner_id)
    if json_output:
        print(json.dumps([record.to_record() for record in records], indent=2, sort_keys=True))
        return records
    if not records:
        print(f"No {status} unmatched tracks.")
        return records
    for record in records:
        artist = f" - {record.artist}" if record.artist else ""
        duration = format_duration(record.duration_ms)
        print(f"[{record.id}] {record.owner_id}: {record.track_title}{artist} ({duration})")
        if record.release_title:
            print(f"  release: {record.release_title}")
        print(f"  strategies tried: {record.strategies_tried_count}")
        if record.resolved_external_id:
            print(f"  resolved as: {record.resolved_external_id}")
        for candidate in record.top_candidates:
            print(f"  near miss: {candidate.confidence:.0%} {candidate.title} [{candidate.external_id}]")
    return records
