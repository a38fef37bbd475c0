from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import MalformedRecordError


@dataclass(frozen=True, slots=True)
class TrackDescriptor:
    """One recording as the source catalog knows it."""

    title: str
    artists: str
    release_title: Optional[str] = None
    duration_ms: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Candidate:
    """A search result returned by the external index."""

    external_id: str
    title: str
    owner_handle: Optional[str] = None
    duration_ms: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    title_score: float
    artist_score: float
    duration_score: float

    def to_record(self) -> Dict[str, float]:
        return {
            "title_score": self.title_score,
            "artist_score": self.artist_score,
            "duration_score": self.duration_score,
        }


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    candidate: Candidate
    confidence: float
    breakdown: ScoreBreakdown

    @property
    def external_id(self) -> str:
        return self.candidate.external_id

    @property
    def title(self) -> str:
        return self.candidate.title

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.candidate.external_id,
            "title": self.candidate.title,
            "owner_handle": self.candidate.owner_handle,
            "duration_ms": self.candidate.duration_ms,
            "confidence": self.confidence,
            "breakdown": self.breakdown.to_record(),
        }

    @classmethod
    def from_record(cls, payload: Any) -> "ScoredCandidate":
        if not isinstance(payload, dict):
            raise MalformedRecordError(f"candidate snapshot is not an object: {payload!r}")
        try:
            breakdown = payload.get("breakdown") or {}
            return cls(
                candidate=Candidate(
                    external_id=str(payload["id"]),
                    title=str(payload["title"]),
                    owner_handle=payload.get("owner_handle"),
                    duration_ms=_parse_int(payload.get("duration_ms")),
                ),
                confidence=float(payload["confidence"]),
                breakdown=ScoreBreakdown(
                    title_score=float(breakdown.get("title_score", 0.0)),
                    artist_score=float(breakdown.get("artist_score", 0.0)),
                    duration_score=float(breakdown.get("duration_score", 0.0)),
                ),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedRecordError(f"invalid candidate snapshot: {exc}") from exc


class MatchSource(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class CachedMatch:
    owner_id: str
    track_key: str
    external_id: str
    confidence: float
    matched_title: Optional[str]
    resolved_at: str
    source: MatchSource = MatchSource.AUTOMATIC


class UnmatchStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    SKIPPED = "skipped"


@dataclass(slots=True)
class UnmatchedTrackRecord:
    id: int
    owner_id: str
    track_title: str
    artist: Optional[str] = None
    duration_ms: Optional[int] = None
    release_title: Optional[str] = None
    strategies_tried_count: int = 0
    top_candidates: List[ScoredCandidate] = field(default_factory=list)
    status: UnmatchStatus = UnmatchStatus.PENDING
    resolved_external_id: Optional[str] = None
    created_at: Optional[str] = None
    resolved_at: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is UnmatchStatus.PENDING

    def to_record(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "track_title": self.track_title,
            "artist": self.artist,
            "duration_ms": self.duration_ms,
            "release_title": self.release_title,
            "strategies_tried_count": self.strategies_tried_count,
            "top_candidates": [c.to_record() for c in self.top_candidates],
            "status": self.status.value,
            "resolved_external_id": self.resolved_external_id,
            "created_at": self.created_at,
            "resolved_at": self.resolved_at,
        }


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    CACHE_HIT = "cache_hit"
    QUEUED = "queued"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(slots=True)
class ResolutionOutcome:
    kind: OutcomeKind
    descriptor: TrackDescriptor
    external_id: Optional[str] = None
    confidence: Optional[float] = None
    strategies_tried: int = 0
    record_id: Optional[int] = None
    throttled: bool = False

    @property
    def has_match(self) -> bool:
        return self.kind in (OutcomeKind.RESOLVED, OutcomeKind.CACHE_HIT) and bool(self.external_id)


@dataclass(slots=True)
class BatchSummary:
    resolved: int = 0
    cached: int = 0
    queued: int = 0
    failed: int = 0
    abandoned: int = 0
    cancelled: bool = False

    @classmethod
    def from_outcomes(cls, outcomes: List[ResolutionOutcome], *, cancelled: bool = False) -> "BatchSummary":
        summary = cls(cancelled=cancelled)
        for outcome in outcomes:
            if outcome.kind is OutcomeKind.RESOLVED:
                summary.resolved += 1
            elif outcome.kind is OutcomeKind.CACHE_HIT:
                summary.cached += 1
            elif outcome.kind is OutcomeKind.QUEUED:
                summary.queued += 1
            elif outcome.kind is OutcomeKind.FAILED:
                summary.failed += 1
            else:
                summary.abandoned += 1
        return summary

    def render(self) -> str:
        text = (
            f"{self.resolved} resolved, {self.cached} cached, {self.queued} queued for review"
        )
        if self.failed:
            text += f", {self.failed} failed"
        if self.abandoned:
            text += f", {self.abandoned} abandoned"
        if self.cancelled:
            text += " (cancelled)"
        return text


@dataclass(frozen=True, slots=True)
class PlaylistEntry:
    release_id: str
    track_title: str
    external_id: str

    def to_record(self) -> Dict[str, str]:
        return {
            "release_id": self.release_id,
            "track_title": self.track_title,
            "external_id": self.external_id,
        }


def _parse_int(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if cleaned.isdigit():
            return int(cleaned)
    return None
