from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional

from ..config import ProviderSettings
from ..errors import SearchTransportError, ThrottledError
from ..models import Candidate
from ..throttle import RequestBudget
from .base import TRANSIENT_ERRORS, run_with_retries

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60.0

_PLAIN_ID = re.compile(r"^\s*(\d+)\s*$")
_TRACK_REF = re.compile(r"tracks(?:/|:|%3A)(\d+)", re.IGNORECASE)


class SoundCloudSearch:
    name = "soundcloud"

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        budget: Optional[RequestBudget] = None,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
    ) -> None:
        self.settings = settings
        self.soundcloud = settings.soundcloud
        if not (self.soundcloud.access_token or self.soundcloud.client_id):
            raise ValueError("SoundCloud access_token or client_id required")
        self.budget = budget
        self.default_retry_after = default_retry_after

    def search(self, query: str) -> List[Candidate]:
        query = (query or "").strip()
        if not query:
            return []
        url = self._search_url(query)
        try:
            payload = run_with_retries(
                lambda: self._request(url),
                settings=self.settings,
                label=f"SoundCloud search {query!r}",
                is_transient=_is_transient,
            )
        except urllib.error.HTTPError as exc:
            if exc.code == 429:
                retry_after = _retry_after(exc, self.default_retry_after)
                if self.budget is not None:
                    self.budget.exhaust(retry_after)
                raise ThrottledError("SoundCloud rate limit reached", retry_after=retry_after) from exc
            raise SearchTransportError(f"SoundCloud search {query!r} failed: HTTP {exc.code}") from exc
        candidates = [c for c in (_candidate(item) for item in _collection(payload)) if c]
        logger.debug("SoundCloud returned %d candidates for %r", len(candidates), query)
        return candidates

    def parse_external_id(self, text: str) -> Optional[str]:
        if not text:
            return None
        match = _PLAIN_ID.match(text) or _TRACK_REF.search(text)
        return match.group(1) if match else None

    def _search_url(self, query: str) -> str:
        params: Dict[str, Any] = {"q": query, "limit": self.soundcloud.search_limit}
        if not self.soundcloud.access_token and self.soundcloud.client_id:
            params["client_id"] = self.soundcloud.client_id
        return f"{self.soundcloud.api_base}/tracks?{urllib.parse.urlencode(params)}"

    def _request(self, url: str) -> Any:
        headers = {"User-Agent": self.soundcloud.useragent, "Accept": "application/json"}
        if self.soundcloud.access_token:
            headers["Authorization"] = f"OAuth {self.soundcloud.access_token}"
        req = urllib.request.Request(url, headers=headers)
        with urllib.request.urlopen(req, timeout=self.settings.timeout_seconds) as resp:
            try:
                return json.load(resp)
            except ValueError as exc:
                raise SearchTransportError(f"SoundCloud returned an unreadable body: {exc}") from exc


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, urllib.error.HTTPError):
        return exc.code >= 500
    return isinstance(exc, TRANSIENT_ERRORS)


def _retry_after(exc: urllib.error.HTTPError, default: float) -> float:
    value = exc.headers.get("Retry-After") if exc.headers else None
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _collection(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        items = payload.get("collection")
        if isinstance(items, list):
            return items
    return []


def _candidate(item: Any) -> Optional[Candidate]:
    if not isinstance(item, dict):
        return None
    track_id = item.get("id") or item.get("track_id")
    title = item.get("title")
    if track_id is None or not title:
        return None
    user = item.get("user") or {}
    duration = item.get("duration") or item.get("full_duration")
    return Candidate(
        external_id=str(track_id),
        title=str(title),
        owner_handle=user.get("username") if isinstance(user, dict) else None,
        duration_ms=int(duration) if isinstance(duration, (int, float)) and duration > 0 else None,
    )
