import tempfile
import unittest
from pathlib import Path

from cratematch.cache import MatchCache
from cratematch.errors import MalformedRecordError, QueueStateError
from cratematch.models import (
    Candidate,
    MatchSource,
    ScoreBreakdown,
    ScoredCandidate,
    TrackDescriptor,
    UnmatchStatus,
)
from cratematch.store import TrackStore
from cratematch.unmatched import UnmatchedTrackQueue, parse_candidates


def _scored(external_id: str, confidence: float) -> ScoredCandidate:
    return ScoredCandidate(
        candidate=Candidate(external_id=external_id, title=f"Title {external_id}", owner_handle="dj"),
        confidence=confidence,
        breakdown=ScoreBreakdown(confidence, 0.0, 0.5),
    )


class TestUnmatchedTrackQueue(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.store = TrackStore(Path(self._tmp.name) / "cache.sqlite3")
        self.addCleanup(self.store.close)
        self.queue = UnmatchedTrackQueue(self.store)
        self.cache = MatchCache(self.store)
        self.track = TrackDescriptor(
            title="Blue Monday", artists="New Order", release_title="Substance", duration_ms=448000
        )

    def test_enqueue_creates_pending_record(self) -> None:
        record_id = self.queue.enqueue(
            "r1", self.track, strategies_tried=3, candidates=[_scored("a", 0.2), _scored("b", 0.3)]
        )
        record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual(record.status, UnmatchStatus.PENDING)
        self.assertEqual(record.owner_id, "r1")
        self.assertEqual(record.artist, "New Order")
        self.assertEqual(record.duration_ms, 448000)
        self.assertEqual(record.release_title, "Substance")
        self.assertEqual(record.strategies_tried_count, 3)
        self.assertEqual([c.external_id for c in record.top_candidates], ["b", "a"])
        self.assertEqual(record.top_candidates[0].breakdown.duration_score, 0.5)

    def test_enqueue_twice_updates_the_same_record(self) -> None:
        first = self.queue.enqueue(
            "r1", self.track, strategies_tried=2, candidates=[_scored("a", 0.2), _scored("b", 0.3)]
        )
        second = self.queue.enqueue(
            "r1",
            self.track,
            strategies_tried=1,
            candidates=[_scored("a", 0.35), _scored("c", 0.1), _scored("d", 0.05)],
        )
        self.assertEqual(first, second)
        self.assertEqual(len(self.queue.list_pending()), 1)
        record = self.queue.get(first)
        assert record is not None
        self.assertEqual(record.strategies_tried_count, 3)
        self.assertEqual([c.external_id for c in record.top_candidates], ["a", "b", "c"])
        self.assertEqual(record.top_candidates[0].confidence, 0.35)

    def test_empty_rerun_keeps_previous_candidates(self) -> None:
        record_id = self.queue.enqueue("r1", self.track, strategies_tried=4, candidates=[_scored("a", 0.2)])
        self.queue.enqueue("r1", self.track, strategies_tried=0, candidates=[])
        record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual([c.external_id for c in record.top_candidates], ["a"])
        self.assertEqual(record.strategies_tried_count, 4)

    def test_resolve_writes_manual_cache_entry(self) -> None:
        record_id = self.queue.enqueue("r1", self.track, strategies_tried=3, candidates=[])
        record = self.queue.resolve(record_id, "12345")
        self.assertEqual(record.status, UnmatchStatus.RESOLVED)
        self.assertEqual(record.resolved_external_id, "12345")
        self.assertIsNotNone(record.resolved_at)
        match = self.cache.get("r1", "Blue Monday")
        assert match is not None
        self.assertEqual(match.external_id, "12345")
        self.assertEqual(match.confidence, 1.0)
        self.assertEqual(match.source, MatchSource.MANUAL)
        self.assertEqual(self.queue.list_resolved("r1")[0].id, record_id)
        self.assertEqual(self.queue.list_pending(), [])

    def test_terminal_records_cannot_change(self) -> None:
        record_id = self.queue.enqueue("r1", self.track, strategies_tried=1, candidates=[])
        self.queue.resolve(record_id, "1")
        with self.assertRaises(QueueStateError):
            self.queue.resolve(record_id, "2")
        with self.assertRaises(QueueStateError):
            self.queue.skip(record_id)
        match = self.cache.get("r1", "Blue Monday")
        assert match is not None
        self.assertEqual(match.external_id, "1")

    def test_skip_does_not_touch_cache(self) -> None:
        record_id = self.queue.enqueue("r1", self.track, strategies_tried=1, candidates=[])
        record = self.queue.skip(record_id)
        self.assertEqual(record.status, UnmatchStatus.SKIPPED)
        self.assertIsNone(self.cache.get("r1", "Blue Monday"))
        self.assertEqual(self.queue.counts(), {"pending": 0, "resolved": 0, "skipped": 1})

    def test_skipped_track_can_be_queued_again(self) -> None:
        first = self.queue.enqueue("r1", self.track, strategies_tried=1, candidates=[])
        self.queue.skip(first)
        second = self.queue.enqueue("r1", self.track, strategies_tried=2, candidates=[])
        self.assertNotEqual(first, second)
        self.assertEqual(len(self.queue.list_pending("r1")), 1)

    def test_resolve_rejects_bad_input(self) -> None:
        record_id = self.queue.enqueue("r1", self.track, strategies_tried=1, candidates=[])
        with self.assertRaises(ValueError):
            self.queue.resolve(record_id, "  ")
        with self.assertRaises(KeyError):
            self.queue.resolve(9999, "1")

    def test_list_filters_by_owner(self) -> None:
        self.queue.enqueue("r1", self.track, strategies_tried=1, candidates=[])
        self.queue.enqueue("r2", self.track, strategies_tried=1, candidates=[])
        self.assertEqual(len(self.queue.list_pending()), 2)
        self.assertEqual([r.owner_id for r in self.queue.list_pending("r2")], ["r2"])
        self.assertEqual(self.queue.counts("r1")["pending"], 1)

    def test_malformed_snapshot_loads_without_candidates(self) -> None:
        record_id = self.store.insert_unmatched("r1", "Broken", None, None, None, 2, "{not json")
        with self.assertLogs("cratematch.unmatched", level="WARNING"):
            record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual(record.top_candidates, [])
        self.assertEqual(record.strategies_tried_count, 2)

    def test_parse_candidates_rejects_bad_payloads(self) -> None:
        self.assertEqual(parse_candidates(None), [])
        with self.assertRaises(MalformedRecordError):
            parse_candidates("{}")
        with self.assertRaises(MalformedRecordError):
            parse_candidates('[{"title": "no id"}]')


if __name__ == "__main__":
    unittest.main()
