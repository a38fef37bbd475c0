"""Text normalization and search-query generation for catalog tracks.

Catalog titles carry decorations ("(2015 Remaster)", "[feat. X]") that the
search index rarely repeats verbatim. Everything here is a pure function of
its input so query strategies are stable across runs.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

TITLE_KEYWORDS = (
    "remaster",
    "remix",
    "edit",
    "version",
    "radio",
    "album",
    "single",
    "explicit",
    "clean",
)

_FEATURING = r"\b(?:featuring|feat|ft)\b\.?"

KEYWORD_GROUP = re.compile(
    r"\([^()]*?(?:" + "|".join(TITLE_KEYWORDS) + r")[^()]*\)", re.IGNORECASE
)
FEATURING_GROUP = re.compile(r"[(\[]?\s*" + _FEATURING + r"\s+[^)\]]+[)\]]?", re.IGNORECASE)
FEATURING_CAPTURE = re.compile(r"[(\[]?\s*" + _FEATURING + r"\s+([^)\]]+)[)\]]?", re.IGNORECASE)
FEATURING_MARKER = re.compile(r"\s*" + _FEATURING + r"\s+", re.IGNORECASE)
PRIMARY_SPLIT = re.compile(r"\s*[(\[]?\s*" + _FEATURING + r"\s+", re.IGNORECASE)
SQUARE_GROUP = re.compile(r"\[[^\]]*\]")
TITLE_DISALLOWED = re.compile(r"[^\w\s'\-]")
ARTIST_DISALLOWED = re.compile(r"[^\w\s\-]")
AMPERSAND = re.compile(r"\s*&\s*")
AND_WORD = re.compile(r"\s+and\s+", re.IGNORECASE)
LEADING_THE = re.compile(r"^the\s+", re.IGNORECASE)
NAME_SPLIT = re.compile(r"[,&]|\s+and\s+", re.IGNORECASE)
WHITESPACE = re.compile(r"\s+")

MAX_FEATURING_IN_QUERY = 2


def _collapse(value: str) -> str:
    return WHITESPACE.sub(" ", value).strip()


def _as_text(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value


def _clean_title_once(value: str) -> str:
    cleaned = value.strip()
    cleaned = KEYWORD_GROUP.sub("", cleaned)
    cleaned = FEATURING_GROUP.sub("", cleaned)
    cleaned = SQUARE_GROUP.sub("", cleaned)
    cleaned = TITLE_DISALLOWED.sub(" ", cleaned)
    return _collapse(cleaned)


def normalize_title(title: object) -> str:
    """Strip release decorations and punctuation from a track or release title.

    >>> normalize_title("Love Me Do (Remastered 2009)")
    'Love Me Do'
    """
    current = _as_text(title)
    if not current:
        return ""
    # Removing a featuring group can expose another one; stop at the fixed point.
    while True:
        cleaned = _clean_title_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def normalize_artist(artist: object) -> str:
    value = _as_text(artist).strip()
    if not value:
        return ""
    value = AMPERSAND.sub(" ", value)
    value = AND_WORD.sub(" ", value)
    value = FEATURING_MARKER.sub(" ", value)
    value = LEADING_THE.sub("", value.strip(), count=1)
    value = ARTIST_DISALLOWED.sub(" ", value)
    return _collapse(value)


def extract_primary_artist(artists: object) -> str:
    value = _as_text(artists)
    if not value:
        return ""
    primary = PRIMARY_SPLIT.split(value, maxsplit=1)[0]
    return normalize_artist(primary)


def extract_featuring_artists(text: object) -> List[str]:
    value = _as_text(text)
    if not value:
        return []
    featuring: List[str] = []
    for match in FEATURING_CAPTURE.finditer(value):
        group = match.group(1)
        if not group:
            continue
        for name in NAME_SPLIT.split(group):
            normalized = normalize_artist(name)
            if normalized:
                featuring.append(normalized)
    return featuring


def build_search_query(title: object, artists: object, release_title: Optional[str] = None) -> str:
    parts = [
        normalize_title(title),
        extract_primary_artist(artists),
        normalize_title(release_title) if release_title else "",
    ]
    parts.extend(extract_featuring_artists(title)[:MAX_FEATURING_IN_QUERY])
    return _collapse(" ".join(part for part in parts if part))


def build_query_strategies(
    title: object, artists: object, release_title: Optional[str] = None
) -> List[str]:
    """Return search queries ordered from most to least specific.

    The order is title+artist+album, title+artist, title+album, title. A
    strategy is only produced when all of its parts are non-empty.
    """
    track = normalize_title(title)
    artist = extract_primary_artist(artists)
    release = normalize_title(release_title) if release_title else ""
    combinations = (
        (track, artist, release),
        (track, artist),
        (track, release),
        (track,),
    )
    queries = [" ".join(parts) for parts in combinations if all(parts)]
    return _dedupe(_collapse(query) for query in queries)


def _dedupe(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def match_key(title: object) -> str:
    """Cache key for a catalog track title within one owner."""
    normalized = normalize_title(title)
    if not normalized:
        normalized = _collapse(_as_text(title))
    return normalized.casefold()
