"""Tests for release models and result ordering."""

from __future__ import annotations

from datetime import date

import pytest

from bandcamp_explorer.models import (
    UNKNOWN_DATE,
    Price,
    ReleaseSortOrder,
    Time,
    Track,
    sort_releases,
)


class TestSortReleases:
    """Multi-key, stable ordering of releases."""

    def test_default_order_is_newest_first_then_artist(self, make_release):
        older, newer = date(2020, 1, 1), date(2022, 1, 1)
        releases = [
            make_release("https://a.bandcamp.com/album/1", artist="beta", publish_date=older),
            make_release("https://b.bandcamp.com/album/2", artist="Alpha", publish_date=older),
            make_release("https://c.bandcamp.com/album/3", artist="gamma", publish_date=newer),
        ]

        assert [r.artist for r in sort_releases(releases)] == ["gamma", "Alpha", "beta"]

    def test_equal_keys_keep_input_order(self, make_release):
        releases = [
            make_release(f"https://x.bandcamp.com/album/{i}", artist="Same", title="Same")
            for i in range(5)
        ]

        result = sort_releases(releases, [ReleaseSortOrder.PUBLISH_DATE_DESC])

        assert result == releases

    def test_descending_sort_is_stable(self, make_release):
        first = make_release("https://x.bandcamp.com/album/1", release_date=date(2019, 1, 1))
        second = make_release("https://x.bandcamp.com/album/2", release_date=date(2019, 1, 1))
        newer = make_release("https://x.bandcamp.com/album/3", release_date=date(2021, 1, 1))

        result = sort_releases([first, second, newer], [ReleaseSortOrder.RELEASE_DATE_DESC])

        assert result == [newer, first, second]

    def test_unknown_dates_sort_first_ascending(self, make_release):
        known = make_release("https://x.bandcamp.com/album/1", release_date=date(2019, 1, 1))
        unknown = make_release("https://x.bandcamp.com/album/2", release_date=UNKNOWN_DATE)

        result = sort_releases([known, unknown], [ReleaseSortOrder.RELEASE_DATE_ASC])

        assert result == [unknown, known]

    def test_input_is_not_modified(self, make_release):
        releases = [
            make_release("https://x.bandcamp.com/album/1", artist="b"),
            make_release("https://x.bandcamp.com/album/2", artist="a"),
        ]
        snapshot = list(releases)

        sort_releases(releases, [ReleaseSortOrder.ARTIST_AND_TITLE])

        assert releases == snapshot


class TestRelease:
    """Derived release properties."""

    def test_identity_and_string(self, make_release):
        release = make_release(
            "https://Artist.Bandcamp.com:443/album/Record?from=search",
            tags=("ambient", "drone"),
            release_date=UNKNOWN_DATE,
        )

        assert release.id == "artist.bandcamp.com/album/record"
        assert not release.has_release_date
        assert str(release).startswith("Artist - Record (00:00) [-, 2020-01-01, unavailable]")
        assert "[ambient, drone]" in str(release)

    def test_time_sums_tracks(self, make_release):
        from dataclasses import replace

        tracks = tuple(Track(i, "A", f"T{i}", Time(s)) for i, s in enumerate([59, 61, 3600], 1))
        release = replace(make_release(), tracks=tracks)

        assert release.time == Time(3720)
        assert str(release.time) == "01:02:00"
        assert release.id == "artist.bandcamp.com/album/record"


class TestValueTypes:
    """Time and Price value objects."""

    def test_negative_time_rejected(self):
        with pytest.raises(ValueError):
            Time(-1)

    def test_time_rounds_half_up(self):
        assert Time.of_seconds(0.5) == Time(1)
        assert Time.of_seconds(1.49) == Time(1)

    @pytest.mark.parametrize("text", ["abc", "$", "-1", "1.2.3"])
    def test_invalid_price_text(self, text):
        with pytest.raises(ValueError):
            Price.parse(text)

    def test_price_ordering(self):
        assert Price.parse("$0.99") < Price.parse("1") < Price.of(1.005)
        assert str(Price.of(1.005)) == "$1.01"
