import tempfile
import unittest
from pathlib import Path

from cratematch.cache import MatchCache
from cratematch.errors import PersistenceError
from cratematch.models import MatchSource
from cratematch.store import TrackStore


class TestMatchCache(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "cache.sqlite3"
        self.store = TrackStore(self.path)
        self.addCleanup(self.store.close)
        self.cache = MatchCache(self.store)

    def test_automatic_match_is_found_under_equivalent_title(self) -> None:
        self.assertTrue(self.cache.set_automatic(42, "Hey Jude (2015 Remaster)", "111", 0.9, "Hey Jude"))
        match = self.cache.get("42", "hey jude")
        self.assertIsNotNone(match)
        assert match is not None
        self.assertEqual(match.external_id, "111")
        self.assertEqual(match.confidence, 0.9)
        self.assertEqual(match.source, MatchSource.AUTOMATIC)
        self.assertIsNone(self.cache.get("43", "Hey Jude"))

    def test_manual_entry_is_not_replaced_by_automatic(self) -> None:
        self.cache.set_manual(1, "Song", "manual-id")
        with self.assertLogs("cratematch.cache", level="INFO"):
            written = self.cache.set_automatic(1, "Song", "auto-id", 0.95, "Song")
        self.assertFalse(written)
        match = self.cache.get(1, "Song")
        assert match is not None
        self.assertEqual(match.external_id, "manual-id")
        self.assertEqual(match.confidence, 1.0)
        self.assertEqual(match.source, MatchSource.MANUAL)

    def test_manual_entry_replaces_automatic(self) -> None:
        self.cache.set_automatic(1, "Song", "auto-id", 0.5, "Song")
        self.cache.set_manual(1, "Song", "manual-id")
        match = self.cache.get(1, "Song")
        assert match is not None
        self.assertEqual(match.external_id, "manual-id")

    def test_automatic_entry_is_updated(self) -> None:
        self.cache.set_automatic(1, "Song", "a", 0.5, "Song")
        self.cache.set_automatic(1, "Song", "b", 0.6, "Song")
        match = self.cache.get(1, "Song")
        assert match is not None
        self.assertEqual(match.external_id, "b")
        self.assertEqual(self.cache.stats()["total"], 1)

    def test_stats_and_clear_keep_manual_entries(self) -> None:
        self.cache.set_automatic(1, "One", "a", 0.5, None)
        self.cache.set_automatic(1, "Two", "b", 0.7, None)
        self.cache.set_manual(1, "Three", "c")
        stats = self.cache.stats()
        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["manual"], 1)
        self.assertAlmostEqual(stats["average_confidence"], (0.5 + 0.7 + 1.0) / 3)

        self.assertEqual(self.cache.clear(), 2)
        self.assertIsNone(self.cache.get(1, "One"))
        self.assertIsNotNone(self.cache.get(1, "Three"))
        self.assertEqual(self.cache.clear(include_manual=True), 1)

    def test_entries_survive_reopen(self) -> None:
        self.cache.set_automatic(7, "Song", "x", 0.8, "Song")
        self.store.close()
        reopened = TrackStore(self.path)
        self.addCleanup(reopened.close)
        match = MatchCache(reopened).get(7, "Song")
        assert match is not None
        self.assertEqual(match.external_id, "x")

    def test_closed_store_raises_persistence_error(self) -> None:
        store = TrackStore(":memory:")
        store.close()
        with self.assertRaises(PersistenceError):
            MatchCache(store).get(1, "Song")


if __name__ == "__main__":
    unittest.main()
