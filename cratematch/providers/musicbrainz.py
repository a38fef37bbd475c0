from __future__ import annotations

import logging
import re
import time
from threading import Lock
from typing import Any, Callable, List, Optional

import musicbrainzngs

from ..config import ProviderSettings
from ..errors import SearchTransportError, ThrottledError
from ..models import Candidate
from .base import TRANSIENT_ERRORS, run_with_retries

logger = logging.getLogger(__name__)

_RECORDING_ID = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


class MusicBrainzSearch:
    """Recording search against the MusicBrainz web service.

    MusicBrainz allows roughly one request per second per client, so calls
    are spaced by ``min_interval_seconds`` across all worker threads.
    """

    name = "musicbrainz"

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.musicbrainz = settings.musicbrainz
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._last_request = float("-inf")
        useragent = self.musicbrainz.useragent
        app, _, rest = useragent.partition("/")
        version, _, contact = rest.partition(" ")
        musicbrainzngs.set_useragent(app or "cratematch", version or "0.1", contact.strip("() ") or None)

    def search(self, query: str) -> List[Candidate]:
        query = (query or "").strip()
        if not query:
            return []

        def _search() -> Any:
            self._respect_rate_limit()
            return musicbrainzngs.search_recordings(query=query, limit=self.musicbrainz.search_limit)

        try:
            payload = run_with_retries(
                _search,
                settings=self.settings,
                label=f"MusicBrainz search {query!r}",
                is_transient=_is_transient,
                sleep=self._sleep,
            )
        except musicbrainzngs.ResponseError as exc:
            if _status_code(exc) == 503:
                raise ThrottledError("MusicBrainz is rate limiting requests") from exc
            raise SearchTransportError(f"MusicBrainz search {query!r} failed: {exc}") from exc
        except musicbrainzngs.WebServiceError as exc:
            raise SearchTransportError(f"MusicBrainz search {query!r} failed: {exc}") from exc
        recordings = (payload or {}).get("recording-list") or []
        candidates = [c for c in (_candidate(item) for item in recordings) if c]
        logger.debug("MusicBrainz returned %d candidates for %r", len(candidates), query)
        return candidates

    def parse_external_id(self, text: str) -> Optional[str]:
        if not text:
            return None
        match = _RECORDING_ID.search(text)
        return match.group(0).lower() if match else None

    def _respect_rate_limit(self) -> None:
        with self._lock:
            elapsed = self._clock() - self._last_request
            wait = self.musicbrainz.min_interval_seconds - elapsed
            if wait > 0:
                logger.debug("Rate limiting: sleeping %.2fs", wait)
                self._sleep(wait)
            self._last_request = self._clock()


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, musicbrainzngs.NetworkError):
        return True
    return isinstance(exc, TRANSIENT_ERRORS)


def _status_code(exc: BaseException) -> Optional[int]:
    cause = getattr(exc, "cause", None)
    code = getattr(cause, "code", None)
    return code if isinstance(code, int) else None


def _candidate(item: Any) -> Optional[Candidate]:
    if not isinstance(item, dict):
        return None
    recording_id = item.get("id")
    title = item.get("title")
    if not recording_id or not title:
        return None
    length = item.get("length")
    try:
        duration = int(length) if length is not None else None
    except (TypeError, ValueError):
        duration = None
    return Candidate(
        external_id=str(recording_id),
        title=str(title),
        owner_handle=item.get("artist-credit-phrase") or None,
        duration_ms=duration,
    )
