"""
Search orchestration.

A ``SearchTask`` runs one search in two stages. First every resource page
is fetched on the worker pool and the release links found on them are
merged by release id. Then one ``ReleaseLoader`` per link is pushed through
a ``CompletionQueue`` and results are settled as they finish: successes are
kept, 404s count as failed, 429/503 pause the whole run for a cooldown and
the loader is resubmitted until it runs out of attempts.

``SearchEngine`` owns the worker pool, the release cache and the results
accumulated across searches, and runs one task at a time.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from bandcamp_explorer.config import Config, SearchConfig
from bandcamp_explorer.connection import ConnectionBuilder
from bandcamp_explorer.loader import LoadResult, ReleaseLoader
from bandcamp_explorer.models import DEFAULT_SORT_ORDER, Release, ReleaseSortOrder, sort_releases
from bandcamp_explorer.release_cache import ReleaseCache
from bandcamp_explorer.release_parser import ReleaseParser
from bandcamp_explorer.resource import ResourceFetcher, SearchType
from bandcamp_explorer.throttle import CancellationToken, PauseGate

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 503})

ProgressCallback = Callable[[int, int], None]
MessageCallback = Callable[[str], None]


class SearchState(StrEnum):
    PENDING = "pending"
    COLLECTING_LINKS = "collecting_links"
    FETCHING_ITEMS = "fetching_items"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class SearchParams:
    """What to search for and how to present the results."""

    query: str
    search_type: SearchType = SearchType.SEARCH
    pages: int = 1
    combine_results: bool = False
    sort_order: tuple[ReleaseSortOrder, ...] = DEFAULT_SORT_ORDER

    def __post_init__(self) -> None:
        if not self.query.strip():
            raise ValueError("Search query is empty")
        if self.pages < 1:
            raise ValueError("Page number must be > 0")
        object.__setattr__(self, "sort_order", tuple(self.sort_order))


@dataclass(frozen=True)
class SearchResult:
    """Outcome of one search run."""

    params: SearchParams
    releases: tuple[Release, ...] = ()
    failed_count: int = 0
    found_count: int = 0
    cancelled: bool = False

    @property
    def loaded_count(self) -> int:
        return len(self.releases)

    def summary(self) -> str:
        if self.cancelled:
            return "Search cancelled"
        return f"Found: {self.found_count}, loaded: {self.loaded_count}, failed: {self.failed_count}"


class CompletionQueue:
    """Submits work to an executor and hands back futures in completion order."""

    def __init__(self, executor: ThreadPoolExecutor):
        self.executor = executor
        self._done: queue.Queue[Future[Any]] = queue.Queue()

    def submit(self, fn: Callable[[], Any]) -> Future[Any]:
        future = self.executor.submit(fn)
        future.add_done_callback(self._done.put)
        return future

    def take(self, timeout: float | None = None) -> Future[Any] | None:
        """Next finished future, or None if nothing finished within ``timeout``."""
        try:
            return self._done.get(timeout=timeout)
        except queue.Empty:
            return None


@dataclass
class _Tally:
    releases: list[Release] = field(default_factory=list)
    failed: int = 0

    @property
    def processed(self) -> int:
        return len(self.releases) + self.failed


class SearchTask:
    """
    One search run.

    ``run()`` executes the search on the calling thread; ``SearchEngine.submit``
    runs it on the engine's task thread instead. Progress, message and state
    can be read from any thread while it runs.
    """

    def __init__(
        self,
        params: SearchParams,
        executor: ThreadPoolExecutor,
        fetcher: ResourceFetcher,
        parser: ReleaseParser,
        cache: ReleaseCache,
        config: SearchConfig | None = None,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
    ):
        self.params = params
        self.executor = executor
        self.fetcher = fetcher
        self.parser = parser
        self.cache = cache
        self.config = config or SearchConfig()
        self.on_progress = on_progress
        self.on_message = on_message

        self.cancel_token = CancellationToken()
        self.gate = PauseGate()
        self.state = SearchState.PENDING
        self.progress: tuple[int, int] = (0, 0)
        self.message = ""
        self.start_time: datetime | None = None

        self._finished = threading.Event()
        self._result: SearchResult | None = None
        self._error: BaseException | None = None

    def cancel(self) -> None:
        """Ask the run to stop; it returns an empty, cancelled result."""
        self.cancel_token.cancel()

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_token.is_cancelled

    @property
    def is_done(self) -> bool:
        return self._finished.is_set()

    def result(self, timeout: float | None = None) -> SearchResult:
        """Wait for the run to finish and return its result (or raise its error)."""
        if not self._finished.wait(timeout):
            raise TimeoutError(f"Search for {self.params.query!r} still running")
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    def _set_message(self, message: str) -> None:
        self.message = message
        if self.on_message is not None:
            self.on_message(message)

    def _set_progress(self, processed: int, total: int) -> None:
        self.progress = (processed, total)
        if self.on_progress is not None:
            self.on_progress(processed, total)

    def run(self) -> SearchResult:
        self.start_time = datetime.now()
        try:
            result = self._run()
        except BaseException as e:
            self.state = SearchState.FAILED
            self._error = e
            logger.error(f"Search for {self.params.query!r} failed: {e}")
            self._set_message(f"Search failed: {e}")
            raise
        else:
            self._result = result
            return result
        finally:
            self._finished.set()

    def _run(self) -> SearchResult:
        params = self.params
        self.state = SearchState.COLLECTING_LINKS
        self._set_message("Requesting data...")

        urls = params.search_type.strategy.page_urls(params.query, params.pages)
        pages = [self.executor.submit(self.fetcher.fetch, url, self.cancel_token) for url in urls]

        links: dict[str, str] = {}
        for page in pages:
            while not page.done():
                if self.is_cancelled:
                    return self._cancelled()
                wait([page], timeout=self.config.poll_interval_s)
            for identity, link in page.result().items():
                links.setdefault(identity, link)

        if self.is_cancelled:
            return self._cancelled()

        total = len(links)
        logger.info(f"Found {total} releases for {params.query!r}")
        self.state = SearchState.FETCHING_ITEMS
        self._set_progress(0, total)
        self._set_message("Loading releases...")

        completion = CompletionQueue(self.executor)
        for link in links.values():
            completion.submit(
                ReleaseLoader(
                    link,
                    self.cache,
                    self.parser,
                    self.cancel_token,
                    self.gate,
                    self.config.poll_interval_s,
                )
            )

        tally = _Tally()
        while tally.processed < total:
            if self.is_cancelled:
                return self._cancelled()
            future = completion.take(timeout=self.config.poll_interval_s)
            if future is None:
                continue
            outcome: LoadResult | None = future.result()
            if outcome is None:
                continue
            if self._settle(outcome, tally, completion):
                self._set_progress(tally.processed, total)

        if self.is_cancelled:
            return self._cancelled()

        result = SearchResult(
            params=params,
            releases=tuple(sort_releases(tally.releases, params.sort_order)),
            failed_count=tally.failed,
            found_count=total,
        )
        self.state = SearchState.DONE
        self._set_message(result.summary())
        return result

    def _settle(self, outcome: LoadResult, tally: _Tally, completion: CompletionQueue) -> bool:
        """Record one loader outcome; False if the loader was resubmitted instead."""
        if outcome.release is not None:
            tally.releases.append(outcome.release)
            return True

        loader = outcome.loader
        status = outcome.http_status
        if status == 404:
            logger.warning(f"Release not found (404): {loader.url}")
        elif status in RETRY_STATUSES:
            cooldown = self.config.cooldown_s
            logger.warning(
                f"Server responded with {status} for {loader.url}, pausing for {cooldown:g}s"
            )
            self.gate.pause_for(cooldown)
            if loader.attempts <= self.config.max_attempts:
                completion.submit(loader)
                return False
            logger.warning(f"Giving up on {loader.url} after {loader.attempts} attempts")
        else:
            logger.warning(f"Failed to load release {loader.url}: {outcome.error}")

        tally.failed += 1
        return True

    def _cancelled(self) -> SearchResult:
        self.state = SearchState.CANCELLED
        self._set_message("Search cancelled")
        return SearchResult(params=self.params, cancelled=True)


class SearchEngine:
    """
    Runs searches against a shared worker pool and release cache.

    Searches run one at a time. Results accumulate across searches when a
    search asks to combine them, otherwise each search replaces them.
    """

    def __init__(self, config: Config | None = None, connection: ConnectionBuilder | None = None):
        self.config = config or Config()
        self.connection = connection or ConnectionBuilder(self.config.http)
        self.cache = ReleaseCache(self.config.search.poll_interval_s)
        self.parser = ReleaseParser(self.connection)
        self.fetcher = ResourceFetcher(self.connection)

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.search.workers,
            thread_name_prefix="release-worker",
        )
        self._task_runner = ThreadPoolExecutor(max_workers=1, thread_name_prefix="search-task")
        self._serial = threading.Lock()
        self._results_lock = threading.Lock()
        self._running: SearchTask | None = None
        self._results: dict[str, Release] = {}

    def create_task(
        self,
        params: SearchParams,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> SearchTask:
        return SearchTask(
            params,
            self._executor,
            self.fetcher,
            self.parser,
            self.cache,
            self.config.search,
            on_progress=on_progress,
            on_message=on_message,
        )

    def submit(
        self,
        params: SearchParams,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> SearchTask:
        """Start a search in the background and return its handle."""
        task = self.create_task(params, on_progress, on_message)
        self._task_runner.submit(self._run_task, task)
        return task

    def search(
        self,
        params: SearchParams,
        on_progress: ProgressCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> SearchResult:
        """Run a search on the calling thread."""
        return self._run_task(self.create_task(params, on_progress, on_message))

    def _run_task(self, task: SearchTask) -> SearchResult:
        with self._serial:
            self._running = task
            try:
                result = task.run()
            finally:
                self._running = None
        if not result.cancelled:
            self._store(result)
        return result

    def _store(self, result: SearchResult) -> None:
        with self._results_lock:
            if not result.params.combine_results:
                self._results.clear()
            for release in result.releases:
                self._results.setdefault(release.id, release)

    @property
    def running_task(self) -> SearchTask | None:
        return self._running

    @property
    def is_task_running(self) -> bool:
        return self._running is not None

    def cancel_task(self) -> bool:
        """Cancel the running search, if any."""
        task = self._running
        if task is None:
            return False
        task.cancel()
        return True

    def results(self, sort_order: Sequence[ReleaseSortOrder] = DEFAULT_SORT_ORDER) -> list[Release]:
        """Releases accumulated by finished searches."""
        with self._results_lock:
            releases = list(self._results.values())
        return sort_releases(releases, sort_order)

    def clear_results(self) -> None:
        with self._results_lock:
            self._results.clear()

    def close(self) -> None:
        self.cancel_task()
        self._task_runner.shutdown(wait=False, cancel_futures=True)
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.cache.close()
        self.connection.close()

    def __enter__(self) -> SearchEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # pyright: ignore[reportMissingParameterType, reportUnknownParameterType]
        self.close()
