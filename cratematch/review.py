"""Interactive review of tracks that could not be matched automatically.

All state lives in the unmatched queue, so quitting half-way leaves the
remaining records pending for the next session.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

from .errors import PersistenceError, QueueStateError
from .models import ScoredCandidate, UnmatchedTrackRecord
from .prompt_io import ConsolePromptIO, PromptIO
from .unmatched import UnmatchedTrackQueue

logger = logging.getLogger(__name__)

OwnerId = Union[str, int]

_PLAIN_ID = re.compile(r"^[\w:.\-]+$")


class _Action(str, Enum):
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    FAILED = "failed"
    QUIT = "quit"


@dataclass(slots=True)
class ReviewSummary:
    resolved: int = 0
    skipped: int = 0
    remaining: int = 0
    aborted: bool = False


def default_parse_external_id(text: str) -> Optional[str]:
    value = (text or "").strip()
    if value and _PLAIN_ID.match(value):
        return value
    return None


def format_duration(ms: Optional[int]) -> str:
    if not ms:
        return "?:??"
    total = int(ms) // 1000
    return f"{total // 60}:{total % 60:02d}"


def format_candidate(idx: int, candidate: ScoredCandidate) -> List[str]:
    owner = f" @{candidate.candidate.owner_handle}" if candidate.candidate.owner_handle else ""
    lines = [
        f"  [{idx}] {candidate.confidence:.0%} {candidate.title}{owner} "
        f"({format_duration(candidate.candidate.duration_ms)})"
    ]
    b = candidate.breakdown
    lines.append(
        f"      title:{b.title_score:.0%} artist:{b.artist_score:.0%} duration:{b.duration_score:.0%}"
    )
    return lines


class ReviewSession:
    def __init__(
        self,
        queue: UnmatchedTrackQueue,
        prompt_io: Optional[PromptIO] = None,
        *,
        parse_external_id: Callable[[str], Optional[str]] = default_parse_external_id,
        owner_id: Optional[OwnerId] = None,
    ) -> None:
        self.queue = queue
        self.io: PromptIO = prompt_io or ConsolePromptIO()
        self.parse_external_id = parse_external_id
        self.owner_id = owner_id

    def run(self) -> ReviewSummary:
        summary = ReviewSummary()
        pending = self.queue.list_pending(self.owner_id)
        if not pending:
            self.io.show("No pending unmatched tracks.")
            return summary
        self.io.show(f"{len(pending)} unmatched track(s) to review.")
        self.io.show("Options: [1-3] select candidate | [u] custom ID/URL | [s] skip | [q] quit")
        for idx, record in enumerate(pending, start=1):
            self._show(record, idx, len(pending))
            action = self._decide(record)
            if action is _Action.RESOLVED:
                summary.resolved += 1
            elif action is _Action.SKIPPED:
                summary.skipped += 1
            elif action is _Action.QUIT:
                summary.aborted = True
                self.io.show("Review paused. Run again to continue with the remaining tracks.")
                break
            self.io.show()
        summary.remaining = len(pending) - summary.resolved - summary.skipped
        self.io.show(
            f"Review summary: {summary.resolved} resolved, {summary.skipped} skipped, "
            f"{summary.remaining} pending"
        )
        return summary

    def _show(self, record: UnmatchedTrackRecord, idx: int, total: int) -> None:
        self.io.show(f"--- Track {idx}/{total} ---")
        self.io.show(f"  Title:    {record.track_title}")
        if record.artist:
            self.io.show(f"  Artist:   {record.artist}")
        if record.duration_ms:
            self.io.show(f"  Duration: {format_duration(record.duration_ms)}")
        if record.release_title:
            self.io.show(f"  Release:  {record.release_title}")
        self.io.show(f"  Strategies tried: {record.strategies_tried_count}")
        if not record.top_candidates:
            self.io.show("  (No near-miss candidates found)")
            return
        self.io.show("  Near-miss candidates:")
        for pos, candidate in enumerate(record.top_candidates, start=1):
            for line in format_candidate(pos, candidate):
                self.io.show(line)

    def _decide(self, record: UnmatchedTrackRecord) -> _Action:
        candidates = record.top_candidates
        while True:
            try:
                answer = self.io.ask("  Choice: ")
            except EOFError:
                return _Action.QUIT
            choice = answer.lower()
            if choice == "q":
                return _Action.QUIT
            if choice == "s":
                return self._skip(record)
            if choice == "u":
                try:
                    raw = self.io.ask("  Enter track ID or URL: ")
                except EOFError:
                    return _Action.QUIT
                external_id = self.parse_external_id(raw)
                if not external_id:
                    self.io.show("  Invalid selection; could not read a track ID from that input.")
                    continue
                return self._resolve(record, external_id, None)
            if answer.isdecimal():
                number = int(answer)
                if 1 <= number <= len(candidates):
                    chosen = candidates[number - 1]
                    return self._resolve(record, chosen.external_id, chosen.title)
            self.io.show(self._invalid_message(len(candidates)))

    @staticmethod
    def _invalid_message(count: int) -> str:
        if count:
            return f"  Invalid selection; enter 1-{count}, u, s or q."
        return "  Invalid selection; enter u, s or q."

    def _resolve(self, record: UnmatchedTrackRecord, external_id: str, matched_title: Optional[str]) -> _Action:
        try:
            self.queue.resolve(record.id, external_id, matched_title)
        except (PersistenceError, QueueStateError) as exc:
            logger.warning("Could not resolve %r: %s", record.track_title, exc)
            self.io.show(f"  Could not save decision: {exc}")
            return _Action.FAILED
        label = matched_title or external_id
        self.io.show(f"  -> Resolved: {label}")
        return _Action.RESOLVED

    def _skip(self, record: UnmatchedTrackRecord) -> _Action:
        try:
            self.queue.skip(record.id)
        except (PersistenceError, QueueStateError) as exc:
            logger.warning("Could not skip %r: %s", record.track_title, exc)
            self.io.show(f"  Could not save decision: {exc}")
            return _Action.FAILED
        self.io.show("  -> Skipped")
        return _Action.SKIPPED
