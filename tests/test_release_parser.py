"""Tests for release page parsing."""

from __future__ import annotations

import logging
from datetime import date

import pytest

from bandcamp_explorer.models import UNKNOWN_DATE, DownloadType, Price, Time
from bandcamp_explorer.release_parser import (
    ReleaseLoadingError,
    normalize_file_link,
    read_tags,
    split_track_title,
)

ALBUM_URL = "https://soloartist.bandcamp.com/album/night-drive"
COMPILATION_URL = "https://compilations.bandcamp.com/album/summer-sampler-2020"


def _legacy_page(**current_overrides: str) -> str:
    current = {
        "title": '"Record"',
        "publish_date": '"05 Mar 2019 14:12:00 GMT"',
        "download_pref": "null",
        "minimum_price": "null",
        "is_set_price": "null",
    }
    current.update(current_overrides)
    fields = ",".join(f'"{key}":{value}' for key, value in current.items())
    return (
        "<script>var TralbumData = {\n"
        f"    current: {{{fields}}},\n"
        '    artist: "Artist",\n'
        "    trackinfo: []\n"
        "};</script>"
    )


class TestLegacyPage:
    """Releases embedded as a ``var TralbumData = {...};`` script block."""

    def test_release_fields(self, parser, page_fixture):
        release = parser.parse_page(ALBUM_URL, page_fixture("album_legacy.html"))

        assert release.id == "soloartist.bandcamp.com/album/night-drive"
        assert release.uri == ALBUM_URL
        assert release.artist == "Solo Artist"
        assert release.title == "Night Drive"
        assert release.download_type == DownloadType.PAID
        assert release.price == Price.of("7")
        assert str(release.price) == "$7.00"
        assert release.release_date == date(2019, 3, 1)
        assert release.publish_date == date(2019, 3, 5)
        assert release.information == "Recorded at home over one winter."
        assert release.credits == "Mastered by A. Engineer."
        assert release.download_link is None
        assert release.parent_release_link is None
        assert release.discography_uri == "https://soloartist.bandcamp.com/music"

    def test_tags_are_unescaped_lowercased_and_unique(self, parser, page_fixture):
        release = parser.parse_page(ALBUM_URL, page_fixture("album_legacy.html"))

        assert release.tags == ("synthwave", "drum & bass", "café")
        assert release.tags_string == "synthwave, drum & bass, café"

    def test_artwork_points_at_medium_variant(self, parser, page_fixture):
        release = parser.parse_page(ALBUM_URL, page_fixture("album_legacy.html"))

        assert release.artwork_link == "https://f4.bcbits.com/img/a0987654321_2.jpg"

    def test_tracks(self, parser, page_fixture):
        release = parser.parse_page(ALBUM_URL, page_fixture("album_legacy.html"))

        assert [(t.number, t.artist, t.title) for t in release.tracks] == [
            (1, "Solo Artist", "Intro - Outro"),
            (2, "Solo Artist", "Highway"),
            (3, "Guest Singer", "Lights"),
        ]
        assert [t.time for t in release.tracks] == [Time(61), Time(246), Time(180)]
        assert release.time == Time(487)
        assert str(release.time) == "08:07"

    def test_track_links(self, parser, page_fixture):
        release = parser.parse_page(ALBUM_URL, page_fixture("album_legacy.html"))
        first, second, third = release.tracks

        assert first.link == "https://soloartist.bandcamp.com/track/intro-outro"
        assert first.file_link == "http://t4.bcbits.com/stream/abc/mp3-128/111?p=0"
        assert second.file_link == "http://t4.bcbits.com/stream/def/mp3-128/222"
        assert third.file_link is None
        assert not third.is_playable


class TestDataAttributePage:
    """Releases embedded in an HTML-escaped ``data-tralbum`` attribute."""

    def test_compilation(self, parser, page_fixture):
        release = parser.parse_page(COMPILATION_URL, page_fixture("album_compilation.html"))

        assert release.artist == "Various Artists"
        assert release.title == "Summer Sampler 2020"
        assert release.download_type == DownloadType.NAME_YOUR_PRICE
        assert release.price == Price.ZERO
        assert release.release_date == UNKNOWN_DATE
        assert not release.has_release_date
        assert release.publish_date == date(2020, 1, 1)
        assert release.tags == ("compilation", "house")
        assert release.artwork_link is None

    def test_compilation_tracks_are_always_split(self, parser, page_fixture):
        release = parser.parse_page(COMPILATION_URL, page_fixture("album_compilation.html"))

        assert [(t.artist, t.title) for t in release.tracks] == [
            ("Artist A", "Song One"),
            ("Artist B", "Song Two"),
        ]

    def test_bad_track_values(self, parser, page_fixture):
        release = parser.parse_page(COMPILATION_URL, page_fixture("album_compilation.html"))
        second = release.tracks[1]

        assert second.time == Time(0)
        assert second.file_link is None


class TestPlusSignTitles:
    """A string whose whole value is ``+`` is data, not concatenation."""

    def test_data_attribute_page(self, parser):
        data = (
            "{&quot;artist&quot;:&quot;Ed&quot;,"
            "&quot;current&quot;:{&quot;title&quot;:&quot;+&quot;},"
            "&quot;trackinfo&quot;:[{&quot;title&quot;:&quot; + &quot;,&quot;duration&quot;:60}]}"
        )
        page = f'<script data-tralbum="{data}"></script>'

        release = parser.parse_page("https://ed.bandcamp.com/album/x", page)

        assert release.title == "+"
        assert [t.title for t in release.tracks] == ["+"]

    def test_legacy_page(self, parser):
        page = (
            "<script>var TralbumData = {\n"
            '    current: {"title":"+", "publish_date":"05 Mar 2019 14:12:00 GMT"},\n'
            '    artist: "Ed" + "die",\n'
            '    trackinfo: [{"title":"+","duration":60}]\n'
            "};</script>"
        )

        release = parser.parse_page("https://ed.bandcamp.com/album/x", page)

        assert release.artist == "Eddie"
        assert release.title == "+"
        assert [t.title for t in release.tracks] == ["+"]


class TestMissingOrBrokenData:
    """Pages that do not carry usable release data."""

    def test_no_release_data(self, parser):
        with pytest.raises(ReleaseLoadingError, match="Release data not found") as exc_info:
            parser.parse_page(ALBUM_URL, "<html><body>Nothing here</body></html>")

        assert exc_info.value.http_status is None

    def test_unparsable_date_falls_back_to_unknown(self, parser, caplog):
        page = _legacy_page(publish_date='"sometime in spring"')

        with caplog.at_level(logging.WARNING, logger="bandcamp_explorer.release_parser"):
            release = parser.parse_page(ALBUM_URL, page)

        assert release.publish_date == UNKNOWN_DATE
        assert "Error processing release data" in caplog.text


class TestDownloadType:
    """Download availability derived from purchase settings."""

    @pytest.mark.parametrize(
        ("overrides", "expected"),
        [
            ({"download_pref": "1"}, DownloadType.FREE),
            ({"download_pref": "2", "minimum_price": "0.0"}, DownloadType.NAME_YOUR_PRICE),
            ({"download_pref": "2", "minimum_price": "1.5"}, DownloadType.PAID),
            (
                {"download_pref": "2", "minimum_price": "0.0", "is_set_price": "1"},
                DownloadType.PAID,
            ),
            ({"download_pref": "null"}, DownloadType.UNAVAILABLE),
            ({"download_pref": "3"}, DownloadType.UNAVAILABLE),
        ],
    )
    def test_download_type(self, parser, overrides, expected):
        release = parser.parse_page(ALBUM_URL, _legacy_page(**overrides))
        assert release.download_type == expected

    def test_price_rounds_half_up(self, parser):
        release = parser.parse_page(
            ALBUM_URL, _legacy_page(download_pref="2", minimum_price="2.345")
        )
        assert str(release.price) == "$2.35"


class TestTrackTitleSplitting:
    """Artist/title splitting for track titles with a separator."""

    def test_compilation_splits_on_separator(self):
        assert split_track_title("X - Y", "/track/y", "Various Artists", True) == ("X", "Y")

    def test_no_separator_keeps_title(self):
        assert split_track_title("Just A Title", "/track/just-a-title", "Band", True) == (
            "Band",
            "Just A Title",
        )

    def test_hyphen_without_spaces_is_not_a_separator(self):
        assert split_track_title("Re-Entry", "/track/re-entry", "Band", False) == (
            "Band",
            "Re-Entry",
        )

    def test_candidate_naming_release_artist_splits(self):
        assert split_track_title("Band - Song", "/track/band-song", "The Band", False) == (
            "Band",
            "Song",
        )

    def test_link_stored_without_leading_part_splits(self):
        assert split_track_title("A - B", "/track/b", "Z", False) == ("A", "B")

    def test_link_matching_whole_title_keeps_title(self):
        assert split_track_title("A - B", "/track/a-b", "Z", False) == ("Z", "A - B")

    def test_link_trailing_index_is_ignored(self):
        assert split_track_title("A - B", "/track/a-b-2", "Z", False) == ("Z", "A - B")

    def test_empty_candidate_uses_release_artist(self):
        assert split_track_title("?? - Song", "/track/song", "Band", False) == ("Band", "Song")

    @pytest.mark.parametrize("dash", ["-", "‐", "‒", "–", "—", "―", "--"])
    def test_dash_variants(self, dash):
        assert split_track_title(f"X {dash} Y", None, "Various Artists", True) == ("X", "Y")


class TestLoad:
    """Fetching release pages over HTTP."""

    def test_load_page(self, parser, page_fixture, httpx_mock):
        httpx_mock.add_response(url=ALBUM_URL, html=page_fixture("album_legacy.html"))

        release = parser.load(ALBUM_URL)

        assert release.title == "Night Drive"
        assert len(release.tracks) == 3

    def test_not_found_carries_status(self, parser, httpx_mock):
        httpx_mock.add_response(url=ALBUM_URL, status_code=404)

        with pytest.raises(ReleaseLoadingError) as exc_info:
            parser.load(ALBUM_URL)

        assert exc_info.value.http_status == 404
        assert "404" in str(exc_info.value)

    def test_too_many_requests_carries_status(self, parser, httpx_mock):
        httpx_mock.add_response(url=ALBUM_URL, status_code=429)

        with pytest.raises(ReleaseLoadingError) as exc_info:
            parser.load(ALBUM_URL)

        assert exc_info.value.http_status == 429

    def test_transport_failure_has_no_status(self, parser, httpx_mock):
        import httpx

        httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=ALBUM_URL)

        with pytest.raises(ReleaseLoadingError) as exc_info:
            parser.load(ALBUM_URL)

        assert exc_info.value.http_status is None
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)

    def test_load_from_file(self, parser, tmp_path, page_fixture):
        page = tmp_path / "album.html"
        page.write_text(page_fixture("album_legacy.html"), encoding="utf-8")

        release = parser.load(page.as_uri())

        assert release.artist == "Solo Artist"
        assert release.uri.startswith("file:")


class TestHelpers:
    """Small parsing helpers."""

    def test_read_tags_starts_after_offset(self):
        page = '<a class="tag" href="/a">early</a> DATA <a class="tag" href="/b">late</a>'
        assert read_tags(page, page.index("DATA")) == ("late",)

    def test_normalize_file_link(self):
        assert normalize_file_link("https://host/x.mp3") == "http://host/x.mp3"
        assert normalize_file_link("//host/x.mp3") == "http://host/x.mp3"
        assert normalize_file_link("http://host/x.mp3") == "http://host/x.mp3"
        assert normalize_file_link("not a url") is None
