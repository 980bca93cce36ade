"""
Identity-keyed release cache.

Each release id maps to a ``concurrent.futures.Future``. The first caller for
an id installs the future and runs the loader on its own thread; everyone
else asking for the same id while it runs waits on that future, so a release
page is fetched once no matter how many searches want it.

Finished futures hold a weak reference to the release. The cache never keeps
a release alive on its own: once the last owner drops it, the weakref
callback queues the reference and a background thread removes the slot.
"""

from __future__ import annotations

import logging
import queue
import threading
import weakref
from collections.abc import Callable
from concurrent.futures import Future, wait

from bandcamp_explorer.models import Release
from bandcamp_explorer.throttle import CancellationToken

logger = logging.getLogger(__name__)


class CacheValue(weakref.ref):  # pyright: ignore[reportMissingTypeArgument]
    """Weak reference to a cached release that remembers its release id."""

    def __new__(cls, release: Release, callback: Callable[[CacheValue], None], identity: str):
        return super().__new__(cls, release, callback)

    def __init__(self, release: Release, callback: Callable[[CacheValue], None], identity: str):
        super().__init__(release, callback)
        self.identity = identity


class ReleaseCache:
    """
    Single-flight, weakly-held release cache.

    One instance is shared by every search of a ``SearchEngine``. Call
    ``close()`` to stop the cleanup thread.
    """

    def __init__(self, poll_interval: float = 0.25):
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._slots: dict[str, Future[CacheValue]] = {}
        self._stale: queue.SimpleQueue[CacheValue | None] = queue.SimpleQueue()
        self._cleanup = threading.Thread(
            target=self._purge_stale,
            name="Release Cache Cleanup",
            daemon=True,
        )
        self._cleanup.start()

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._slots

    def get(
        self,
        identity: str,
        loader: Callable[[], Release],
        cancel: CancellationToken | None = None,
    ) -> Release:
        """
        Return the live release for ``identity``, loading it if needed.

        Loader errors propagate to the caller that ran the loader and to every
        caller that was waiting on it; the slot is dropped so a later call
        retries from scratch.

        Raises:
            SearchCancelledError: ``cancel`` fired while waiting on another
                caller's load (the load itself carries on)
        """
        while True:
            with self._lock:
                future = self._slots.get(identity)
                owner = future is None
                if future is None:
                    future = Future()
                    self._slots[identity] = future

            if owner:
                return self._load(identity, future, loader)

            value = self._await(future, cancel)
            release = value()
            if release is not None:
                return release

            # Collected before we got to it; the cleanup thread may not have
            # seen it yet
            self._discard(identity, future)

    def _load(
        self,
        identity: str,
        future: Future[CacheValue],
        loader: Callable[[], Release],
    ) -> Release:
        try:
            release = loader()
        except BaseException as e:
            self._discard(identity, future)
            future.set_exception(e)
            raise
        future.set_result(CacheValue(release, self._stale.put, identity))
        return release

    def _await(self, future: Future[CacheValue], cancel: CancellationToken | None) -> CacheValue:
        if cancel is not None:
            while not future.done():
                cancel.raise_if_cancelled()
                wait([future], timeout=self.poll_interval)
        return future.result()

    def _discard(self, identity: str, future: Future[CacheValue]) -> None:
        with self._lock:
            if self._slots.get(identity) is future:
                del self._slots[identity]

    def _purge_stale(self) -> None:
        while True:
            value = self._stale.get()
            if value is None:
                return
            with self._lock:
                future = self._slots.get(value.identity)
                if (
                    future is not None
                    and future.done()
                    and future.exception() is None
                    and future.result() is value
                ):
                    del self._slots[value.identity]
                    logger.debug(f"Purged from cache: {value.identity}")

    def close(self, timeout: float | None = 1.0) -> None:
        """Stop the cleanup thread."""
        if self._cleanup.is_alive():
            self._stale.put(None)
            self._cleanup.join(timeout)


## Tests


def test_cache_returns_same_instance_while_alive():
    cache = ReleaseCache()
    calls: list[int] = []

    def loader() -> Release:
        calls.append(1)
        return Release(uri="https://a.bandcamp.com/album/x", artist="A", title="X")

    first = cache.get("a.bandcamp.com/album/x", loader)
    second = cache.get("a.bandcamp.com/album/x", loader)

    assert first is second
    assert len(calls) == 1
    assert "a.bandcamp.com/album/x" in cache
    cache.close()


def test_cache_does_not_keep_failures():
    import pytest

    cache = ReleaseCache()

    def failing() -> Release:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.get("a.bandcamp.com/album/x", failing)
    assert "a.bandcamp.com/album/x" not in cache
    cache.close()
