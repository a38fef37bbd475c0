import tempfile
import unittest
from pathlib import Path
from typing import Optional
from unittest.mock import patch

from cratematch.cache import MatchCache
from cratematch.errors import PersistenceError
from cratematch.models import Candidate, ScoreBreakdown, ScoredCandidate, TrackDescriptor, UnmatchStatus
from cratematch.prompt_io import ScriptedPromptIO
from cratematch.review import ReviewSession, format_duration
from cratematch.store import TrackStore
from cratematch.unmatched import UnmatchedTrackQueue


def _digits(text: str) -> Optional[str]:
    return text if text.isdigit() else None


def _near_miss(external_id: str, title: str, confidence: float) -> ScoredCandidate:
    return ScoredCandidate(
        candidate=Candidate(external_id=external_id, title=title, owner_handle="uploader", duration_ms=200000),
        confidence=confidence,
        breakdown=ScoreBreakdown(0.5, 0.2, 1.0),
    )


class TestReviewSession(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.store = TrackStore(Path(self._tmp.name) / "cache.sqlite3")
        self.addCleanup(self.store.close)
        self.queue = UnmatchedTrackQueue(self.store)
        self.cache = MatchCache(self.store)

    def _enqueue(self, title: str, *candidates: ScoredCandidate, owner: str = "r1") -> int:
        return self.queue.enqueue(
            owner,
            TrackDescriptor(title=title, artists="Artist", release_title="Album", duration_ms=201000),
            strategies_tried=4,
            candidates=list(candidates),
        )

    def _session(self, *inputs: str, owner_id=None) -> tuple[ReviewSession, ScriptedPromptIO]:
        prompt_io = ScriptedPromptIO(answers=list(inputs))
        return ReviewSession(self.queue, prompt_io, parse_external_id=_digits, owner_id=owner_id), prompt_io

    def test_picking_a_near_miss_resolves_and_caches(self) -> None:
        record_id = self._enqueue("Track One", _near_miss("11", "Track 1", 0.3), _near_miss("12", "Other", 0.2))
        session, prompt_io = self._session("2")
        summary = session.run()

        self.assertEqual((summary.resolved, summary.skipped, summary.remaining), (1, 0, 0))
        self.assertFalse(summary.aborted)
        record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual(record.status, UnmatchStatus.RESOLVED)
        self.assertEqual(record.resolved_external_id, "12")
        match = self.cache.get("r1", "Track One")
        assert match is not None
        self.assertEqual((match.external_id, match.confidence, match.matched_title), ("12", 1.0, "Other"))

        output = prompt_io.transcript
        self.assertIn("Title:    Track One", output)
        self.assertIn("Duration: 3:21", output)
        self.assertIn("Strategies tried: 4", output)
        self.assertIn("[1] 30% Track 1 @uploader (3:20)", output)
        self.assertIn("title:50% artist:20% duration:100%", output)

    def test_invalid_choices_reprompt(self) -> None:
        record_id = self._enqueue("Track One", _near_miss("11", "Track 1", 0.3))
        session, prompt_io = self._session("x", "9", "s")
        summary = session.run()

        self.assertEqual(summary.skipped, 1)
        invalid = [line for line in prompt_io.shown if "Invalid selection" in line]
        self.assertEqual(len(invalid), 2)
        self.assertEqual(len(prompt_io.asked), 3)
        record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual(record.status, UnmatchStatus.SKIPPED)
        self.assertIsNone(self.cache.get("r1", "Track One"))

    def test_non_ascii_digit_is_an_invalid_selection(self) -> None:
        record_id = self._enqueue("Track One", _near_miss("11", "Track 1", 0.3))
        session, prompt_io = self._session("²", "s")
        summary = session.run()

        self.assertEqual(summary.skipped, 1)
        self.assertFalse(summary.aborted)
        self.assertEqual(len([line for line in prompt_io.shown if "Invalid selection" in line]), 1)
        record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual(record.status, UnmatchStatus.SKIPPED)

    def test_custom_id_is_parsed_and_retried(self) -> None:
        record_id = self._enqueue("Track One")
        session, prompt_io = self._session("u", "not-an-id", "u", "555")
        summary = session.run()

        self.assertEqual(summary.resolved, 1)
        self.assertTrue(any("Invalid selection" in line for line in prompt_io.shown))
        record = self.queue.get(record_id)
        assert record is not None
        self.assertEqual(record.resolved_external_id, "555")
        match = self.cache.get("r1", "Track One")
        assert match is not None
        self.assertEqual(match.matched_title, "Track One")

    def test_quit_leaves_remaining_tracks_pending(self) -> None:
        self._enqueue("Track One")
        self._enqueue("Track Two")
        self._enqueue("Track Three")
        session, _ = self._session("s", "q")
        summary = session.run()

        self.assertTrue(summary.aborted)
        self.assertEqual((summary.resolved, summary.skipped, summary.remaining), (0, 1, 2))
        self.assertEqual(
            [r.track_title for r in self.queue.list_pending()], ["Track Two", "Track Three"]
        )

    def test_resumed_session_continues_with_pending_tracks(self) -> None:
        self._enqueue("Track One")
        self._enqueue("Track Two")
        self._session("s", "q")[0].run()
        session, prompt_io = self._session("u", "77")
        summary = session.run()

        self.assertEqual(summary.resolved, 1)
        output = prompt_io.transcript
        self.assertIn("Title:    Track Two", output)
        self.assertNotIn("Title:    Track One", output)

    def test_end_of_input_aborts(self) -> None:
        self._enqueue("Track One")
        summary = self._session()[0].run()
        self.assertTrue(summary.aborted)
        self.assertEqual(summary.remaining, 1)

    def test_owner_filter(self) -> None:
        self._enqueue("Track One", owner="r1")
        self._enqueue("Track Two", owner="r2")
        session, _ = self._session("s", owner_id="r2")
        summary = session.run()
        self.assertEqual(summary.skipped, 1)
        self.assertEqual(len(self.queue.list_pending("r1")), 1)

    def test_storage_failure_keeps_record_pending(self) -> None:
        record_id = self._enqueue("Track One", _near_miss("11", "Track 1", 0.3))
        session, prompt_io = self._session("1")
        with patch.object(
            UnmatchedTrackQueue, "resolve", side_effect=PersistenceError("database is locked")
        ), self.assertLogs("cratematch.review", level="WARNING"):
            summary = session.run()

        self.assertEqual((summary.resolved, summary.remaining), (0, 1))
        self.assertTrue(any("Could not save decision" in line for line in prompt_io.shown))
        record = self.queue.get(record_id)
        assert record is not None
        self.assertTrue(record.is_pending)

    def test_nothing_to_review(self) -> None:
        session, prompt_io = self._session()
        summary = session.run()
        self.assertEqual(prompt_io.shown, ["No pending unmatched tracks."])
        self.assertEqual(summary.remaining, 0)


class TestFormatDuration(unittest.TestCase):
    def test_format(self) -> None:
        self.assertEqual(format_duration(201000), "3:21")
        self.assertEqual(format_duration(59999), "0:59")
        self.assertEqual(format_duration(None), "?:??")


if __name__ == "__main__":
    unittest.main()
