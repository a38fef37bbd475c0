"""Candidate scoring.

Confidence is a transparent weighted average so a reviewer can see why a
candidate was accepted or rejected::

    confidence = clamp(title_weight * title_score
                       + artist_weight * artist_score
                       + duration_weight * duration_score)

rounded to six decimal places. With the default weights (0.6 / 0.25 / 0.15)
title carries most of the signal; the artist score compares the catalog's
primary artist with the uploader handle, which is a weaker signal.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .config import MatchingSettings
from .models import Candidate, ScoreBreakdown, ScoredCandidate, TrackDescriptor
from .normalize import extract_primary_artist

CONTAINMENT_SCORE = 0.8
UNKNOWN_DURATION_SCORE = 0.5


def basic_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Case-insensitive similarity in [0, 1].

    Exact match scores 1.0 and containment scores 0.8, which also rates
    "Intro" against "Introduction" at 0.8. Otherwise the shared-token ratio
    over the larger token set is returned.
    """
    if not a or not b:
        return 0.0
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE
    tokens1 = set(s1.split())
    tokens2 = set(s2.split())
    total = max(len(tokens1), len(tokens2))
    if not tokens1 or not tokens2 or total == 0:
        return 0.0
    return len(tokens1 & tokens2) / total


def duration_score(
    expected_ms: Optional[int],
    candidate_ms: Optional[int],
    *,
    tolerance_seconds: float = 5.0,
    cutoff_seconds: float = 30.0,
) -> float:
    if not expected_ms or not candidate_ms:
        return UNKNOWN_DURATION_SCORE
    diff = abs(expected_ms - candidate_ms) / 1000.0
    if diff <= tolerance_seconds:
        return 1.0
    if diff >= cutoff_seconds:
        return 0.0
    return 1.0 - (diff - tolerance_seconds) / (cutoff_seconds - tolerance_seconds)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class CandidateScorer:
    def __init__(self, settings: Optional[MatchingSettings] = None) -> None:
        self.settings = settings or MatchingSettings()

    @property
    def threshold(self) -> float:
        return self.settings.accept_threshold

    def breakdown(self, expected: TrackDescriptor, candidate: Candidate) -> ScoreBreakdown:
        return ScoreBreakdown(
            title_score=basic_similarity(expected.title, candidate.title),
            artist_score=basic_similarity(
                extract_primary_artist(expected.artists), candidate.owner_handle or ""
            ),
            duration_score=duration_score(
                expected.duration_ms,
                candidate.duration_ms,
                tolerance_seconds=self.settings.duration_tolerance_seconds,
                cutoff_seconds=self.settings.duration_cutoff_seconds,
            ),
        )

    def confidence(self, breakdown: ScoreBreakdown) -> float:
        s = self.settings
        weighted = (
            s.title_weight * breakdown.title_score
            + s.artist_weight * breakdown.artist_score
            + s.duration_weight * breakdown.duration_score
        )
        return round(_clamp(weighted), 6)

    def score(self, expected: TrackDescriptor, candidate: Candidate) -> ScoredCandidate:
        breakdown = self.breakdown(expected, candidate)
        return ScoredCandidate(
            candidate=candidate,
            confidence=self.confidence(breakdown),
            breakdown=breakdown,
        )

    def score_all(self, expected: TrackDescriptor, candidates: Iterable[Candidate]) -> List[ScoredCandidate]:
        return [self.score(expected, candidate) for candidate in candidates]

    def accepts(self, scored: ScoredCandidate) -> bool:
        return scored.confidence >= self.settings.accept_threshold


def select_best(scored: Sequence[ScoredCandidate]) -> Optional[ScoredCandidate]:
    """Highest confidence wins; ties keep the earlier (more relevant) result."""
    best: Optional[ScoredCandidate] = None
    for item in scored:
        if best is None or item.confidence > best.confidence:
            best = item
    return best


def top_candidates(scored: Iterable[ScoredCandidate], limit: int = 3) -> List[ScoredCandidate]:
    """Best distinct candidates, descending by confidence.

    The same external id returned by several queries is kept once, with its
    latest snapshot. Ties keep first-seen order.
    """
    order: List[str] = []
    by_id: dict[str, ScoredCandidate] = {}
    for item in scored:
        if item.external_id not in by_id:
            order.append(item.external_id)
        by_id[item.external_id] = item
    ranked = sorted((by_id[key] for key in order), key=lambda c: c.confidence, reverse=True)
    return ranked[: max(0, limit)]
