from __future__ import annotations

from typing import Optional

from ..config import ProviderSettings
from ..throttle import RequestBudget
from .base import SearchProvider
from .musicbrainz import MusicBrainzSearch
from .soundcloud import DEFAULT_RETRY_AFTER, SoundCloudSearch

__all__ = ["MusicBrainzSearch", "SearchProvider", "SoundCloudSearch", "create_provider"]


def create_provider(
    settings: ProviderSettings,
    *,
    budget: Optional[RequestBudget] = None,
    default_retry_after: float = DEFAULT_RETRY_AFTER,
) -> SearchProvider:
    if settings.search_provider == "musicbrainz":
        return MusicBrainzSearch(settings)
    return SoundCloudSearch(settings, budget=budget, default_retry_after=default_retry_after)
