__all__ = (
    "Config",
    "ConnectionBuilder",
    "UnsupportedProtocolError",
    # Data model
    "Release",
    "Track",
    "Time",
    "Price",
    "DownloadType",
    "ReleaseSortOrder",
    "release_id",
    "sort_releases",
    # Loading
    "ReleaseParser",
    "ReleaseLoadingError",
    "ReleaseCache",
    "ReleaseLoader",
    "LoadResult",
    "ResourceFetcher",
    "SearchType",
    # Searching
    "SearchEngine",
    "SearchTask",
    "SearchParams",
    "SearchResult",
    "SearchState",
    "CancellationToken",
    "PauseGate",
    "SearchCancelledError",
)

from bandcamp_explorer.config import Config
from bandcamp_explorer.connection import ConnectionBuilder, UnsupportedProtocolError
from bandcamp_explorer.loader import LoadResult, ReleaseLoader
from bandcamp_explorer.models import (
    DownloadType,
    Price,
    Release,
    ReleaseSortOrder,
    Time,
    Track,
    release_id,
    sort_releases,
)
from bandcamp_explorer.release_cache import ReleaseCache
from bandcamp_explorer.release_parser import ReleaseLoadingError, ReleaseParser
from bandcamp_explorer.resource import ResourceFetcher, SearchType
from bandcamp_explorer.search import (
    SearchEngine,
    SearchParams,
    SearchResult,
    SearchState,
    SearchTask,
)
from bandcamp_explorer.throttle import CancellationToken, PauseGate, SearchCancelledError
