"""Tests for the single-flight release cache."""

from __future__ import annotations

import gc
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from bandcamp_explorer.throttle import CancellationToken, SearchCancelledError

IDENTITY = "artist.bandcamp.com/album/record"


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestSingleFlight:
    """Concurrent requests for one identity share a single load."""

    def test_concurrent_callers_share_one_load(self, cache, make_release):
        calls: list[int] = []
        started = threading.Event()
        proceed = threading.Event()

        def loader():
            calls.append(1)
            started.set()
            proceed.wait(2)
            return make_release()

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(cache.get, IDENTITY, loader) for _ in range(8)]
            assert started.wait(2)
            # Give the other callers time to find the pending slot
            time.sleep(0.05)
            proceed.set()
            results = [f.result(timeout=5) for f in futures]

        assert len(calls) == 1
        assert all(r is results[0] for r in results)

    def test_different_identities_load_independently(self, cache, make_release):
        first_url = "https://a.bandcamp.com/album/x"
        second_url = "https://b.bandcamp.com/album/y"
        first = cache.get("a.bandcamp.com/album/x", lambda: make_release(first_url))
        second = cache.get("b.bandcamp.com/album/y", lambda: make_release(second_url))

        assert first is not second
        assert len(cache) == 2


class TestEviction:
    """Entries live only as long as somebody holds the release."""

    def test_reload_after_release_is_collected(self, cache, make_release):
        calls: list[int] = []

        def loader():
            calls.append(1)
            return make_release()

        release = cache.get(IDENTITY, loader)
        assert cache.get(IDENTITY, loader) is release

        del release
        gc.collect()
        cache.get(IDENTITY, loader)

        assert len(calls) == 2

    def test_cleanup_thread_purges_dead_entries(self, cache, make_release):
        release = cache.get(IDENTITY, make_release)
        assert IDENTITY in cache

        del release
        gc.collect()

        assert _wait_until(lambda: IDENTITY not in cache)

    def test_live_entry_is_not_purged(self, cache, make_release):
        release = cache.get(IDENTITY, make_release)
        gc.collect()
        time.sleep(0.05)

        assert IDENTITY in cache
        assert release.id == IDENTITY


class TestFailures:
    """Loader errors reach every caller and are never cached."""

    def test_failure_is_not_cached(self, cache, make_release):
        def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            cache.get(IDENTITY, failing)

        assert IDENTITY not in cache
        assert cache.get(IDENTITY, make_release).id == IDENTITY

    def test_waiters_receive_the_owner_error(self, cache, make_release):
        started = threading.Event()
        proceed = threading.Event()

        def failing():
            started.set()
            proceed.wait(2)
            raise RuntimeError("boom")

        with ThreadPoolExecutor(max_workers=2) as pool:
            owner = pool.submit(cache.get, IDENTITY, failing)
            assert started.wait(2)
            waiter = pool.submit(cache.get, IDENTITY, make_release, CancellationToken())
            time.sleep(0.1)
            proceed.set()

            with pytest.raises(RuntimeError, match="boom"):
                owner.result(timeout=5)
            with pytest.raises(RuntimeError, match="boom"):
                waiter.result(timeout=5)

        assert IDENTITY not in cache


class TestCancellation:
    """A waiting caller can give up without disturbing the load."""

    def test_cancelled_waiter_stops_waiting(self, cache, make_release):
        started = threading.Event()
        proceed = threading.Event()

        def slow():
            started.set()
            proceed.wait(2)
            return make_release()

        token = CancellationToken()
        with ThreadPoolExecutor(max_workers=2) as pool:
            owner = pool.submit(cache.get, IDENTITY, slow)
            assert started.wait(2)
            waiter = pool.submit(cache.get, IDENTITY, make_release, token)
            token.cancel()

            with pytest.raises(SearchCancelledError):
                waiter.result(timeout=5)

            proceed.set()
            release = owner.result(timeout=5)

        assert release.id == IDENTITY
        assert cache.get(IDENTITY, make_release) is release
