"""Catalog exports: the releases whose tracks should be resolved.

The file is YAML::

    releases:
      - id: 4711
        title: Abbey Road
        artists: The Beatles
        tracks:
          - title: Come Together
            duration: "4:20"
          - title: Something
            artists: The Beatles feat. Billy Preston
            duration: 182000
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import CatalogError
from .models import TrackDescriptor

logger = logging.getLogger(__name__)


def parse_duration(value: Any) -> Optional[int]:
    """Milliseconds from ``182000``, ``"182000"``, ``"3:02"`` or ``"1:03:02"``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text) or None
    parts = text.split(":")
    if len(parts) not in (2, 3) or not all(part.strip().isdigit() for part in parts):
        raise ValueError(f"unrecognised duration {value!r}")
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return seconds * 1000 or None


def _join_artists(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item).strip() for item in value if str(item).strip())
    return str(value).strip()


class CatalogTrack(BaseModel):
    title: str = Field(min_length=1)
    artists: Optional[str] = None
    duration: Optional[int] = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @field_validator("artists", mode="before")
    @classmethod
    def _artists(cls, value: Any) -> Optional[str]:
        return _join_artists(value) or None

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, value: Any) -> Optional[int]:
        return parse_duration(value)


class CatalogReleaseEntry(BaseModel):
    id: str = Field(min_length=1)
    title: str = ""
    artists: str = ""
    tracks: List[CatalogTrack] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @field_validator("artists", mode="before")
    @classmethod
    def _artists(cls, value: Any) -> str:
        return _join_artists(value)


class CatalogFile(BaseModel):
    releases: List[CatalogReleaseEntry] = Field(default_factory=list)


@dataclass(slots=True)
class CatalogRelease:
    owner_id: str
    title: str
    artists: str
    tracks: List[TrackDescriptor] = field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: CatalogReleaseEntry) -> "CatalogRelease":
        tracks = [
            TrackDescriptor(
                title=track.title,
                artists=track.artists or entry.artists,
                release_title=entry.title or None,
                duration_ms=track.duration,
            )
            for track in entry.tracks
        ]
        return cls(owner_id=entry.id, title=entry.title, artists=entry.artists, tracks=tracks)


def parse_catalog(raw: Any) -> List[CatalogRelease]:
    try:
        catalog = CatalogFile.model_validate(raw or {})
    except ValidationError as exc:
        raise CatalogError(f"invalid catalog: {exc}") from exc
    releases = [CatalogRelease.from_entry(entry) for entry in catalog.releases]
    seen: set[str] = set()
    for release in releases:
        if release.owner_id in seen:
            logger.warning("Release id %s appears more than once in the catalog", release.owner_id)
        seen.add(release.owner_id)
    return releases


def load_catalog(path: Union[Path, str]) -> List[CatalogRelease]:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        raise CatalogError(f"cannot read catalog {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"catalog {path} is not valid YAML: {exc}") from exc
    releases = parse_catalog(raw)
    logger.debug(
        "Loaded %d releases (%d tracks) from %s",
        len(releases),
        sum(len(release.tracks) for release in releases),
        path,
    )
    return releases


def select_releases(releases: List[CatalogRelease], release_id: Optional[str]) -> List[CatalogRelease]:
    if release_id is None:
        return releases
    wanted = str(release_id).strip()
    return [release for release in releases if release.owner_id == wanted]
