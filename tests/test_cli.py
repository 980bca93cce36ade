"""Tests for the Typer command line interface."""

from __future__ import annotations

import json
import logging
import os

import pytest
from rich.logging import RichHandler
from typer.testing import CliRunner

from bandcamp_explorer.cli import ExitCode, app

ALBUM_URL = "https://soloartist.bandcamp.com/album/night-drive"
DISCOGRAPHY = "https://soloartist.bandcamp.com/music"

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep user environment overrides out of CLI runs and drop the CLI log handler after."""
    for name in [n for n in os.environ if n.startswith("BANDCAMP_EXPLORER_")]:
        monkeypatch.delenv(name)  # pyright: ignore[reportUnknownMemberType]
    root_logger = logging.getLogger()
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if isinstance(handler, RichHandler):
            root_logger.removeHandler(handler)
    root_logger.setLevel(level)


@pytest.fixture
def discography(httpx_mock, page_fixture):
    """Serve a discography page with one album on it."""
    httpx_mock.add_response(url=DISCOGRAPHY, html='<a href="/album/night-drive">Night Drive</a>')
    httpx_mock.add_response(url=ALBUM_URL, html=page_fixture("album_legacy.html"))


class TestReleaseCommand:
    """``bandcamp-explorer release URL``"""

    def test_release_json(self, httpx_mock, page_fixture):
        httpx_mock.add_response(url=ALBUM_URL, html=page_fixture("album_legacy.html"))

        result = runner.invoke(app, ["--output", "json", "release", ALBUM_URL])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        data = json.loads(result.output)
        assert data["artist"] == "Solo Artist"
        assert data["price"] == "$7.00"
        assert data["download_type"] == "paid"
        assert data["release_date"] == "2019-03-01"
        assert [t["title"] for t in data["tracks"]] == ["Intro - Outro", "Highway", "Lights"]

    def test_release_text(self, httpx_mock, page_fixture):
        httpx_mock.add_response(url=ALBUM_URL, html=page_fixture("album_legacy.html"))

        result = runner.invoke(app, ["release", ALBUM_URL])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Solo Artist - Night Drive" in result.output
        assert "Highway" in result.output

    def test_release_not_found(self, httpx_mock):
        httpx_mock.add_response(url=ALBUM_URL, status_code=404)

        result = runner.invoke(app, ["release", ALBUM_URL])

        assert result.exit_code == ExitCode.ERROR
        assert "404" in result.output

    def test_unsupported_protocol(self):
        result = runner.invoke(app, ["release", "ftp://example.com/album/x"])

        assert result.exit_code == ExitCode.ERROR


class TestSearchCommand:
    """``bandcamp-explorer search QUERY``"""

    def test_direct_search_json(self, discography):
        result = runner.invoke(
            app,
            ["-o", "json", "search", DISCOGRAPHY, "--type", "direct", "--no-progress"],
        )

        assert result.exit_code == ExitCode.SUCCESS, result.output
        data = json.loads(result.output)
        assert data["found"] == 1
        assert data["failed"] == 0
        assert [r["title"] for r in data["releases"]] == ["Night Drive"]
        assert data["releases"][0]["tags"] == ["synthwave", "drum & bass", "café"]

    def test_direct_search_text(self, discography):
        result = runner.invoke(app, ["search", DISCOGRAPHY, "--type", "direct", "--no-progress"])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Found: 1, loaded: 1, failed: 0, shown: 1" in result.output

    def test_filters_can_remove_everything(self, discography):
        result = runner.invoke(
            app,
            [
                "search",
                DISCOGRAPHY,
                "--type",
                "direct",
                "--no-progress",
                "--exclude-tag",
                "synthwave",
            ],
        )

        assert result.exit_code == ExitCode.NO_RESULTS
        assert "shown: 0" in result.output

    def test_invalid_date_option(self):
        result = runner.invoke(
            app,
            ["search", "ambient", "--no-progress", "--released-from", "yesterday"],
        )

        assert result.exit_code == ExitCode.ERROR
        assert "--released-from" in result.output

    def test_resource_failure(self, httpx_mock):
        httpx_mock.add_response(url=DISCOGRAPHY, status_code=500)

        result = runner.invoke(app, ["search", DISCOGRAPHY, "--type", "direct", "--no-progress"])

        assert result.exit_code == ExitCode.ERROR
        assert "Search failed" in result.output
