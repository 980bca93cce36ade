"""Release data model.

Everything here is immutable once built. ``Release`` equality is object
identity: the release cache keeps at most one live instance per release id,
so two equal-looking releases loaded at different times are distinct objects.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import ClassVar
from urllib.parse import urlsplit

# Sentinel for release/publish dates that are absent or unparsable
UNKNOWN_DATE = date.min


def release_id(url: str) -> str:
    """Identity of a release URL: lowercased host and path.

    Scheme, port, query, fragment and letter case do not take part.
    """
    parts = urlsplit(url)
    return f"{parts.hostname or ''}{parts.path}".lower()


def domain_of(url: str) -> str:
    """Scheme and authority of a URL, e.g. ``https://artist.bandcamp.com``."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class DownloadType(StrEnum):
    """How a release can be obtained."""

    FREE = "free"
    NAME_YOUR_PRICE = "name_your_price"
    PAID = "paid"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True, order=True)
class Time:
    """Track or release duration in whole seconds."""

    seconds: int

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"Time value is negative: {self.seconds}")

    @classmethod
    def of_seconds(cls, seconds: float) -> Time:
        """Round a possibly fractional duration to whole seconds (half up)."""
        return cls(int(Decimal(str(seconds)).quantize(Decimal(1), rounding=ROUND_HALF_UP)))

    def __add__(self, other: Time) -> Time:
        if not isinstance(other, Time):
            return NotImplemented
        return Time(self.seconds + other.seconds)

    def __str__(self) -> str:
        hours, rest = divmod(self.seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
        return f"{minutes:02d}:{seconds:02d}"


PRICE_PATTERN = re.compile(r"\$?\d+(\.\d+)?")


@dataclass(frozen=True, order=True)
class Price:
    """Non-negative amount in dollars, always scaled to 2 decimals."""

    value: Decimal

    SCALE: ClassVar[Decimal] = Decimal("0.01")
    ZERO: ClassVar[Price]

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"Price value is negative: {self.value}")
        if self.value.as_tuple().exponent != -2:
            object.__setattr__(self, "value", self.value.quantize(self.SCALE, rounding=ROUND_HALF_UP))

    @classmethod
    def of(cls, value: Decimal | float | int | str, rounding: str = ROUND_HALF_UP) -> Price:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Invalid price value: {value!r}") from e
        if amount < 0:
            raise ValueError(f"Price value is negative: {amount}")
        return cls(amount.quantize(cls.SCALE, rounding=rounding))

    @classmethod
    def parse(cls, text: str, rounding: str = ROUND_HALF_UP) -> Price:
        """Parse ``"$1.5"`` or ``"1.50"`` style text."""
        if not PRICE_PATTERN.fullmatch(text):
            raise ValueError(f"Invalid string representation of price: {text}")
        return cls.of(text.removeprefix("$"), rounding)

    def __str__(self) -> str:
        return f"${self.value}"


Price.ZERO = Price(Decimal("0.00"))


@dataclass(frozen=True)
class Track:
    number: int
    artist: str
    title: str
    time: Time
    link: str | None = None
    file_link: str | None = None

    @property
    def is_playable(self) -> bool:
        return self.file_link is not None

    def __str__(self) -> str:
        return f"{self.number}. {self.artist} - {self.title} ({self.time})"


@dataclass(frozen=True, eq=False)
class Release:
    """A single album or track page, parsed.

    Total ``time`` is always the sum of track times.
    """

    uri: str
    artist: str
    title: str
    download_type: DownloadType = DownloadType.UNAVAILABLE
    price: Price = Price.ZERO
    release_date: date = UNKNOWN_DATE
    publish_date: date = UNKNOWN_DATE
    tags: tuple[str, ...] = ()
    tracks: tuple[Track, ...] = ()
    artwork_link: str | None = None
    download_link: str | None = None
    parent_release_link: str | None = None
    information: str = ""
    credits: str = ""
    id: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", release_id(self.uri))

    @property
    def time(self) -> Time:
        return sum((track.time for track in self.tracks), Time(0))

    @property
    def tags_string(self) -> str:
        return ", ".join(self.tags)

    @property
    def discography_uri(self) -> str:
        return f"{domain_of(self.uri)}/music"

    @property
    def has_release_date(self) -> bool:
        return self.release_date != UNKNOWN_DATE

    def __str__(self) -> str:
        release_date = self.release_date.isoformat() if self.has_release_date else "-"
        return (
            f"{self.artist} - {self.title} ({self.time}) "
            f"[{release_date}, {self.publish_date.isoformat()}, {self.download_type}] "
            f"[{self.tags_string}] ({self.uri})"
        )


class ReleaseSortOrder(StrEnum):
    """Orderings available for search results."""

    PUBLISH_DATE_ASC = "publish_date_asc"
    PUBLISH_DATE_DESC = "publish_date_desc"
    RELEASE_DATE_ASC = "release_date_asc"
    RELEASE_DATE_DESC = "release_date_desc"
    ARTIST_AND_TITLE = "artist_and_title"

    @property
    def descending(self) -> bool:
        return self.value.endswith("_desc")

    def key(self, release: Release) -> date | tuple[str, str]:
        if self in (ReleaseSortOrder.PUBLISH_DATE_ASC, ReleaseSortOrder.PUBLISH_DATE_DESC):
            return release.publish_date
        if self in (ReleaseSortOrder.RELEASE_DATE_ASC, ReleaseSortOrder.RELEASE_DATE_DESC):
            return release.release_date
        return (release.artist.lower(), release.title.lower())


DEFAULT_SORT_ORDER: tuple[ReleaseSortOrder, ...] = (
    ReleaseSortOrder.PUBLISH_DATE_DESC,
    ReleaseSortOrder.ARTIST_AND_TITLE,
)


def sort_releases(
    releases: Iterable[Release],
    sort_order: Sequence[ReleaseSortOrder] = DEFAULT_SORT_ORDER,
) -> list[Release]:
    """Stable multi-key sort; the first order in ``sort_order`` is the primary key."""
    result = list(releases)
    # Least significant key first; each pass is stable, including reversed ones
    for order in reversed(sort_order):
        result.sort(key=order.key, reverse=order.descending)  # pyright: ignore[reportArgumentType, reportCallIssue]
    return result


## Tests


def test_release_id_ignores_scheme_port_query_and_case():
    a = release_id("https://Artist.Bandcamp.com:443/album/Some-Album?from=search#top")
    b = release_id("http://artist.bandcamp.com/album/some-album")
    assert a == b == "artist.bandcamp.com/album/some-album"


def test_time_formatting():
    assert str(Time(0)) == "00:00"
    assert str(Time(754)) == "12:34"
    assert str(Time(3600)) == "01:00:00"
    assert str(Time(3 * 3600 + 62)) == "03:01:02"
    assert Time.of_seconds(214.5) == Time(215)
    assert Time(1) + Time(2) == Time(3)


def test_price_parse_and_scale():
    assert str(Price.parse("$1.5")) == "$1.50"
    assert Price.parse("7") == Price.of(7)
    assert Price.of("2.005") == Price.parse("2.01")
    assert Price.of(0) == Price.ZERO
    assert Price.parse("1.00") < Price.parse("$1.01")


def test_release_time_is_sum_of_tracks():
    release = Release(
        uri="https://a.bandcamp.com/album/x",
        artist="A",
        title="X",
        tracks=(
            Track(1, "A", "One", Time(61)),
            Track(2, "A", "Two", Time(120)),
        ),
    )
    assert release.time == Time(181)
    assert release.id == "a.bandcamp.com/album/x"
    assert release.discography_uri == "https://a.bandcamp.com/music"
