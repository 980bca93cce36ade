"""Pytest configuration and shared fixtures for bandcamp-explorer tests."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

# =============================================================================
# Fixture Paths
# =============================================================================

FIXTURES_DIR = Path(__file__).parent / "fixtures"
PAGES_DIR = FIXTURES_DIR / "pages"


def load_fixture(fixture_name: str) -> str:
    """Load a page fixture as text."""
    fixture_path = PAGES_DIR / fixture_name
    if not fixture_path.exists():
        raise FileNotFoundError(f"Fixture not found: {fixture_path}")
    return fixture_path.read_text(encoding="utf-8")


def _make_release(
    url: str = "https://artist.bandcamp.com/album/record",
    artist: str = "Artist",
    title: str = "Record",
    publish_date: date = date(2020, 1, 1),
    release_date: date = date(2020, 1, 1),
    tags: tuple[str, ...] = (),
):
    """Build a minimal release for tests that don't care about parsing."""
    from bandcamp_explorer.models import Release

    return Release(
        uri=url,
        artist=artist,
        title=title,
        publish_date=publish_date,
        release_date=release_date,
        tags=tags,
    )


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def make_release():
    """Provide a factory for minimal releases."""
    return _make_release


# =============================================================================
# Connection & Parser Fixtures
# =============================================================================


@pytest.fixture
def connection():
    """Provide a ConnectionBuilder with default settings, closed afterwards."""
    from bandcamp_explorer.connection import ConnectionBuilder

    builder = ConnectionBuilder()
    yield builder
    builder.close()


@pytest.fixture
def parser(connection):
    """Provide a ReleaseParser bound to the test connection."""
    from bandcamp_explorer.release_parser import ReleaseParser

    return ReleaseParser(connection)


@pytest.fixture
def cache():
    """Provide a ReleaseCache with a short poll interval."""
    from bandcamp_explorer.release_cache import ReleaseCache

    release_cache = ReleaseCache(poll_interval=0.01)
    yield release_cache
    release_cache.close()


# =============================================================================
# Fixture Loading Helpers
# =============================================================================


@pytest.fixture
def page_fixture():
    """Load an HTML page fixture by file name."""

    def _load(fixture_name: str) -> str:
        return load_fixture(fixture_name)

    return _load
