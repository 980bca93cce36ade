"""
Search strategies and release link discovery.

A search strategy turns a query and a page number into the URL of a
resource (search results, a tag listing, or any page or local file given
directly). ``ResourceFetcher`` downloads one such resource and pulls every
album/track link out of it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

import httpx

from bandcamp_explorer.connection import (
    ConnectionBuilder,
    UnsupportedProtocolError,
    file_url_to_path,
    url_scheme,
)
from bandcamp_explorer.models import release_id
from bandcamp_explorer.throttle import CancellationToken

logger = logging.getLogger(__name__)

RELEASE_LINK_PATTERN = re.compile(r"((https?://)?[a-z0-9\-.]+)?/(album|track)/[a-z0-9\-]+", re.I)

SEARCH_URL = "https://bandcamp.com/search?q={query}&page={page}"
TAG_URL = "https://bandcamp.com/tag/{tag}?page={page}&sort_field=date"


def _check_page(page: int) -> None:
    if page < 1:
        raise ValueError("Page number must be > 0")


def search_url(query: str, page: int) -> str:
    _check_page(page)
    return SEARCH_URL.format(query=query.lower().replace(" ", "+"), page=page)


def tag_url(query: str, page: int) -> str:
    _check_page(page)
    return TAG_URL.format(tag=query.lower().replace(" ", "-"), page=page)


def direct_url(query: str, page: int = 1) -> str:
    """
    Use the query itself as the resource location.

    Raises:
        UnsupportedProtocolError: scheme other than http, https or file
        FileNotFoundError: ``file:`` target does not exist
        ValueError: ``file:`` target is empty or a directory
    """
    _check_page(page)
    query = query.strip()
    scheme = url_scheme(query) if ":" in query else ""

    if scheme in ("http", "https"):
        return query.lower()
    if scheme == "file":
        path = file_url_to_path(query)
        if not str(path) or str(path) == ".":
            raise ValueError("File path is empty")
        if not path.exists():
            raise FileNotFoundError(f"File does not exist: {path}")
        if path.is_dir():
            raise ValueError(f"File path is a directory: {path}")
        return query
    if not scheme:
        return f"http://{query}"
    raise UnsupportedProtocolError(f'"{scheme}" protocol is not supported')


@dataclass(frozen=True)
class SearchStrategy:
    """How a query maps to resource URLs."""

    build_url: Callable[[str, int], str]
    multi_page: bool
    max_pages: int | None = None

    def page_urls(self, query: str, pages: int) -> list[str]:
        count = pages if self.multi_page else 1
        if self.max_pages is not None:
            count = min(count, self.max_pages)
        return [self.build_url(query, page) for page in range(1, count + 1)]


class SearchType(StrEnum):
    SEARCH = "search"
    TAG = "tag"
    DIRECT = "direct"

    @property
    def strategy(self) -> SearchStrategy:
        return STRATEGIES[self]

    @property
    def is_multi_page(self) -> bool:
        return self.strategy.multi_page


STRATEGIES: dict[SearchType, SearchStrategy] = {
    SearchType.SEARCH: SearchStrategy(search_url, multi_page=True),
    # Tag listings stop returning results after about 10 pages
    SearchType.TAG: SearchStrategy(tag_url, multi_page=True, max_pages=10),
    SearchType.DIRECT: SearchStrategy(direct_url, multi_page=False),
}


def normalize_link(link: str, resource_url: str) -> str | None:
    """
    Turn a matched link into an absolute, lowercased release URL.

    Returns None for links that cannot be used from this resource.
    """
    link = link.lower()
    if link.startswith(("/album", "/track")):
        resource = urlsplit(resource_url)
        if resource.scheme.lower() == "file" or not resource.hostname:
            return None
        link = f"{resource.scheme.lower()}://{resource.hostname}{link}"
    elif not link.startswith(("http://", "https://")):
        link = f"http://{link}"

    try:
        url = httpx.URL(link)
    except httpx.InvalidURL as e:
        logger.debug(f"Release URL is not valid: {link} ({e})")
        return None
    if not url.host:
        logger.debug(f"Release URL is not valid: {link} (no host)")
        return None
    return link


def extract_links(text: str, resource_url: str) -> dict[str, str]:
    """Release links in page text, keyed by release id, in order of appearance."""
    links: dict[str, str] = {}
    for match in RELEASE_LINK_PATTERN.finditer(text):
        link = normalize_link(match.group(0), resource_url)
        if link is not None:
            links.setdefault(release_id(link), link)
    return links


class ResourceFetcher:
    """Downloads search resources and collects release links from them."""

    def __init__(self, connection: ConnectionBuilder):
        self.connection = connection

    def fetch(self, url: str, cancel: CancellationToken | None = None) -> dict[str, str]:
        """
        Fetch one resource and return the release links found on it.

        The result maps release id to link. Nothing is fetched if the search
        is already cancelled.

        Raises:
            httpx.HTTPStatusError: the resource answered with an error status
            httpx.HTTPError, OSError: the resource could not be read
        """
        if cancel is not None and cancel.is_cancelled:
            return {}

        logger.info(f"Requesting resource: {url}")
        response = self.connection.open(url)
        response.raise_for_status()

        links = extract_links(response.text, url)
        logger.debug(f"Found {len(links)} release links on {url}")
        return links


## Tests


def test_search_and_tag_urls():
    assert search_url("Dark Ambient", 2) == "https://bandcamp.com/search?q=dark+ambient&page=2"
    assert tag_url("Dark Ambient", 1) == "https://bandcamp.com/tag/dark-ambient?page=1&sort_field=date"


def test_page_number_must_be_positive():
    import pytest

    with pytest.raises(ValueError, match="Page number"):
        search_url("x", 0)
    with pytest.raises(ValueError, match="Page number"):
        tag_url("x", -1)


def test_direct_url():
    import pytest

    assert direct_url("HTTPS://Artist.Bandcamp.com/Album/X") == "https://artist.bandcamp.com/album/x"
    assert direct_url("artist.bandcamp.com") == "http://artist.bandcamp.com"
    with pytest.raises(UnsupportedProtocolError):
        direct_url("ftp://example.com/list")


def test_strategy_pages():
    assert len(SearchType.SEARCH.strategy.page_urls("x", 3)) == 3
    assert SearchType.DIRECT.strategy.page_urls("http://a.com", 5) == ["http://a.com"]
    assert len(SearchType.TAG.strategy.page_urls("x", 25)) == 10
    assert not SearchType.DIRECT.is_multi_page


def test_extract_links():
    text = """
    <a href="https://one.bandcamp.com/album/first-album?from=search">x</a>
    <a href="/track/Some-Track">y</a>
    <a href="HTTPS://ONE.bandcamp.com/album/first-album">dup</a>
    two.bandcamp.com/album/second
    """
    links = extract_links(text, "https://other.bandcamp.com/music")
    assert list(links.values()) == [
        "https://one.bandcamp.com/album/first-album",
        "https://other.bandcamp.com/track/some-track",
        "http://two.bandcamp.com/album/second",
    ]


def test_extract_links_from_file_skips_relative_links():
    text = '<a href="/album/local">x</a> <a href="https://a.bandcamp.com/album/y">y</a>'
    links = extract_links(text, "file:///tmp/saved.html")
    assert list(links.values()) == ["https://a.bandcamp.com/album/y"]
