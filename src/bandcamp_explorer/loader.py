"""Retryable unit of work that loads one release through the cache."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from bandcamp_explorer.models import Release, release_id
from bandcamp_explorer.release_cache import ReleaseCache
from bandcamp_explorer.release_parser import ReleaseLoadingError, ReleaseParser
from bandcamp_explorer.throttle import CancellationToken, PauseGate, SearchCancelledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadResult:
    """Outcome of one loader invocation: a release or the captured error."""

    loader: ReleaseLoader
    release: Release | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.release is not None

    @property
    def http_status(self) -> int | None:
        if isinstance(self.error, ReleaseLoadingError):
            return self.error.http_status
        return None


class ReleaseLoader:
    """
    Loads one release URL through the shared cache.

    A loader may be submitted several times (after 429/503 responses); it
    counts its own invocations. Calling it never raises. It returns ``None``
    when the owning search was cancelled before or during the load.
    """

    def __init__(
        self,
        url: str,
        cache: ReleaseCache,
        parser: ReleaseParser,
        cancel: CancellationToken,
        gate: PauseGate,
        poll_interval: float = 0.25,
    ):
        self.url = url
        self.id = release_id(url)
        self.cache = cache
        self.parser = parser
        self.cancel = cancel
        self.gate = gate
        self.poll_interval = poll_interval
        self._attempts = 0
        self._lock = threading.Lock()

    @property
    def attempts(self) -> int:
        with self._lock:
            return self._attempts

    def __call__(self) -> LoadResult | None:
        with self._lock:
            self._attempts += 1
            attempt = self._attempts

        if self.cancel.is_cancelled:
            return None
        if not self.gate.wait(self.cancel, self.poll_interval):
            return None

        if attempt > 1:
            logger.info(f"Loading release: {self.url} (attempt #{attempt})")
        else:
            logger.info(f"Loading release: {self.url}")

        try:
            release = self.cache.get(self.id, lambda: self.parser.load(self.url), self.cancel)
        except SearchCancelledError:
            return None
        except Exception as e:
            return LoadResult(self, error=e)
        return LoadResult(self, release=release)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReleaseLoader):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"ReleaseLoader({self.url!r}, attempts={self.attempts})"
