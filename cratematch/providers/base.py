from __future__ import annotations

import http.client
import logging
import socket
import time
import urllib.error
from typing import Callable, List, Optional, Protocol, Tuple, Type, TypeVar

from ..config import ProviderSettings
from ..errors import SearchTransportError
from ..models import Candidate

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    socket.gaierror,
    socket.timeout,
    urllib.error.URLError,
    TimeoutError,
    ConnectionError,
    http.client.HTTPException,
)


class SearchProvider(Protocol):
    """Full-text search over the external index.

    ``search`` returns candidates in the provider's relevance order. It raises
    ``ThrottledError`` when the provider refuses requests for now and
    ``SearchTransportError`` once its own retry policy gives up.
    """

    name: str

    def search(self, query: str) -> List[Candidate]: ...

    def parse_external_id(self, text: str) -> Optional[str]: ...


def run_with_retries(
    fn: Callable[[], T],
    *,
    settings: ProviderSettings,
    label: str,
    is_transient: Callable[[BaseException], bool] = lambda exc: isinstance(exc, TRANSIENT_ERRORS),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` retrying transient network errors with exponential backoff."""
    retries = int(settings.network_retries or 0)
    backoff = float(settings.network_retry_backoff_seconds or 0.0)
    attempts = max(1, 1 + retries)
    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_exc = exc
            if attempt >= attempts:
                break
            sleep_for = max(0.0, backoff) * (2 ** (attempt - 1))
            logger.debug("%s failed (%s); retrying in %.1fs", label, exc, sleep_for)
            if sleep_for:
                sleep(sleep_for)
    raise SearchTransportError(f"{label} failed after {attempts} attempt(s): {last_exc}") from last_exc
