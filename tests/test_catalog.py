import tempfile
import unittest
from pathlib import Path

from cratematch.catalog import load_catalog, parse_catalog, parse_duration, select_releases
from cratematch.errors import CatalogError

CATALOG = """
releases:
  - id: 4711
    title: Abbey Road
    artists: The Beatles
    tracks:
      - title: Come Together
        duration: "4:20"
      - title: Something
        artists: [The Beatles, Billy Preston]
        duration: 182000
  - id: abc
    title: Empty
    artists: Nobody
"""


class TestParseDuration(unittest.TestCase):
    def test_formats(self) -> None:
        self.assertEqual(parse_duration("4:20"), 260000)
        self.assertEqual(parse_duration("1:03:02"), 3782000)
        self.assertEqual(parse_duration(182000), 182000)
        self.assertEqual(parse_duration("182000"), 182000)
        self.assertIsNone(parse_duration(None))
        self.assertIsNone(parse_duration(""))
        self.assertIsNone(parse_duration(0))

    def test_garbage_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_duration("four minutes")


class TestLoadCatalog(unittest.TestCase):
    def test_load(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "catalog.yaml"
            path.write_text(CATALOG, encoding="utf-8")
            releases = load_catalog(path)

        self.assertEqual([r.owner_id for r in releases], ["4711", "abc"])
        abbey = releases[0]
        self.assertEqual(abbey.title, "Abbey Road")
        first, second = abbey.tracks
        self.assertEqual(first.title, "Come Together")
        self.assertEqual(first.artists, "The Beatles")
        self.assertEqual(first.release_title, "Abbey Road")
        self.assertEqual(first.duration_ms, 260000)
        self.assertEqual(second.artists, "The Beatles, Billy Preston")
        self.assertEqual(second.duration_ms, 182000)
        self.assertEqual(releases[1].tracks, [])

    def test_select_releases(self) -> None:
        releases = parse_catalog({"releases": [{"id": 1, "title": "A"}, {"id": 2, "title": "B"}]})
        self.assertEqual([r.owner_id for r in select_releases(releases, "2")], ["2"])
        self.assertEqual(len(select_releases(releases, None)), 2)
        self.assertEqual(select_releases(releases, "3"), [])

    def test_invalid_catalog(self) -> None:
        with self.assertRaises(CatalogError):
            parse_catalog({"releases": [{"id": 1, "tracks": [{"title": ""}]}]})
        with self.assertRaises(CatalogError):
            parse_catalog({"releases": [{"id": 1, "tracks": [{"title": "X", "duration": "soon"}]}]})
        with self.assertRaises(CatalogError):
            load_catalog(Path("/nonexistent/catalog.yaml"))

    def test_empty_catalog(self) -> None:
        self.assertEqual(parse_catalog(None), [])


if __name__ == "__main__":
    unittest.main()
