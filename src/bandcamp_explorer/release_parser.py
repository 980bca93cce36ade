"""
Release page parser.

Turns one album or track page into an immutable ``Release``. Most fields come
from the embedded release data literal (see ``script_data``); tags and the
artwork link are taken from the raw page text with targeted patterns.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date
from email.utils import parsedate_to_datetime
from html.entities import name2codepoint

import httpx

from bandcamp_explorer.connection import ConnectionBuilder
from bandcamp_explorer.models import (
    UNKNOWN_DATE,
    DownloadType,
    Price,
    Release,
    Time,
    Track,
    domain_of,
)
from bandcamp_explorer.script_data import DataTree, ScriptDataError, find_release_data

logger = logging.getLogger(__name__)

VA_ARTIST_PATTERN = re.compile(
    r"various(\sartists?)?"  # "Various", "Various Artist", "Various Artists"
    r"|.+\s(rec(ord)?s|rec(ordings|\.)?|music|prod(uctions|\.)?"
    r"|(net)?label(\sgroup)?|sounds|comp(ilation|\.)?|sampler)\)?"  # "<Name> Records", "<Name> Netlabel"
    r"|v(/|-|\\|\.)?a\.?"  # "V/A", "V\A", "VA", "V-A", "V.A."
    r"|beatspace(-|\.).+|.+(\.|-)beatspace"
    r"|vv\.?aa\.?|aa\.?vv\.?",  # "VV.AA.", "AA.VV."
    re.I,
)
VA_TITLE_PATTERN = re.compile(r"(?:.+\s)*(split|comp(ilation|\.)?|sampler)", re.I)
COMPILATION_TAGS = frozenset(
    {"compilation", "various artists", "various artist", "various", "va", "split", "sampler"}
)

# Artist/title separator: one or more dash variants surrounded by whitespace
TRACK_TITLE_SEPARATOR = re.compile(r"\s+[-‐‑‒–—―]+\s+")

TAG_PATTERN = re.compile(r'<a class="tag".+?>.+?(?=</a>)', re.S)
ENTITY_PATTERN = re.compile(r"&(?:#(\d+)|#[xX]([0-9a-fA-F]+)|([A-Za-z][A-Za-z0-9]*));")


class ReleaseLoadingError(Exception):
    """Release could not be fetched or its page is not usable.

    ``http_status`` is the response code when the failure came from an HTTP
    error response, ``None`` otherwise.
    """

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


## Text helpers


def minimize_title(title: str) -> str:
    """Reduce a title to the slug form used in track page links.

    ``"Hello, World! (2.0 Mix)"`` becomes ``"hello-world-20-mix"``. An
    empty result is represented by ``"-"``.
    """
    if not title:
        return "-"
    out: list[str] = []
    last = len(title) - 1
    for i, c in enumerate(title):
        if "a" <= c <= "z" or "0" <= c <= "9":
            out.append(c)
        elif "A" <= c <= "Z":
            out.append(c.lower())
        elif out and out[-1] == "-":
            continue
        elif c == ".":
            # A dot between two digits is dropped
            if i == 0 or not title[i - 1].isascii() or not title[i - 1].isdigit():
                out.append("-")
            elif i == last or not title[i + 1].isascii() or not title[i + 1].isdigit():
                out.append("-")
        elif c != "'":
            out.append("-")

    result = "".join(out)
    if result in ("", "-"):
        return "-"
    return result.removeprefix("-").removesuffix("-")


def remove_trailing_index(title: str) -> str:
    """Strip a numeric disambiguator such as ``-2`` from the end of a slug."""
    if len(title) < 2:
        return title
    h = title.rfind("-")
    if h == -1 or h == len(title) - 1:
        return title
    if not all("0" <= c <= "9" for c in title[h + 1 :]):
        return title
    for i in range(len(title) - 1, 0, -1):
        if title[i] == "-" and not ("0" <= title[i - 1] <= "9"):
            return title[:i]
    # Only digits and hyphens
    h1 = title.find("-")
    return "-" if h1 == 0 else title[:h1]


def unescape_html(text: str) -> str:
    """Replace named and numeric character references.

    Numeric references beyond the 16-bit range and unknown names are left
    unchanged.
    """
    if ";" not in text:
        return text

    def replace(match: re.Match[str]) -> str:
        decimal, hexadecimal, name = match.groups()
        if name is not None:
            codepoint = name2codepoint.get(name)
            return chr(codepoint) if codepoint is not None else match.group(0)
        codepoint = int(decimal) if decimal is not None else int(hexadecimal, 16)
        return chr(codepoint) if codepoint <= 0xFFFF else match.group(0)

    return ENTITY_PATTERN.sub(replace, text)


def parse_date(value: str | None) -> date | None:
    """Parse an RFC 1123 style date such as ``"01 Jan 2020 00:00:00 GMT"``."""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).date()
    except (TypeError, ValueError):
        return None


## Heuristics


def is_multi_artist(artist: str, title: str, tags: tuple[str, ...] | set[str]) -> bool:
    """Guess whether a release is a compilation with per-track artists."""
    return (
        VA_ARTIST_PATTERN.fullmatch(artist) is not None
        or VA_TITLE_PATTERN.fullmatch(title) is not None
        or not COMPILATION_TAGS.isdisjoint(tags)
    )


def split_track_title(
    raw_title: str,
    title_link: str | None,
    release_artist: str,
    multi_artist: bool,
) -> tuple[str, str]:
    """Work out (artist, title) for one track.

    Titles are only split on a separator. Compilations are always split.
    Other releases are split when the leading part names the release artist
    (or is empty), or when the track link slug shows that the site stored
    the title without the leading part.
    """
    parts = TRACK_TITLE_SEPARATOR.split(raw_title, maxsplit=1)
    if len(parts) < 2:
        return release_artist.strip(), raw_title.strip()

    candidate, title = parts[0].strip(), parts[1].strip()
    if multi_artist:
        return candidate, title

    if minimize_title(candidate) == "-":
        return release_artist.strip(), title
    if candidate.lower() in release_artist.lower():
        return candidate, title

    if title_link:
        link_token = remove_trailing_index(title_link[title_link.rfind("/") + 1 :].lower())
        if link_token != remove_trailing_index(minimize_title(raw_title)):
            return candidate, title

    return release_artist.strip(), raw_title.strip()


def read_download_type(data: DataTree) -> DownloadType:
    download_pref = data.get_number("current.download_pref")
    if download_pref == 1:
        return DownloadType.FREE
    if download_pref == 2:
        minimum_price = data.get_number("current.minimum_price") or 0.0
        if minimum_price > 0 or data.get_number("current.is_set_price") == 1:
            return DownloadType.PAID
        return DownloadType.NAME_YOUR_PRICE
    return DownloadType.UNAVAILABLE


def read_price(data: DataTree) -> Price:
    minimum_price = data.get_number("current.minimum_price") or 0.0
    if math.isnan(minimum_price) or minimum_price <= 0:
        return Price.ZERO
    return Price.of(minimum_price)


def read_tags(page: str, start: int = 0) -> tuple[str, ...]:
    """Collect tag anchor texts found after ``start``, in order, without repeats."""
    tags: dict[str, None] = {}
    for match in TAG_PATTERN.finditer(page, start):
        fragment = match.group(0)
        text = unescape_html(fragment[fragment.rfind(">") + 1 :].strip()).lower()
        if text:
            tags[text] = None
    return tuple(tags)


def read_artwork_link(page: str, art_id: str | None, start: int = 0) -> str | None:
    """Find the cover image URL and point it at the 350x350 variant."""
    if not art_id:
        return None
    pattern = re.compile(rf"https?://[^\s\"'<>]+?/a0*{re.escape(art_id)}_\d{{1,2}}\.jpe?g")
    match = pattern.search(page, start)
    if match is None:
        return None
    link = match.group(0)
    return f"{link[: link.rfind('_') + 1]}2{link[link.rfind('.') :]}"


def normalize_file_link(link: str) -> str | None:
    """Force an audio link onto plain http; ``None`` if it is not a usable URL."""
    if link.startswith("https:"):
        link = "http:" + link.removeprefix("https:")
    elif not link.startswith("http:"):
        link = "http:" + link
    try:
        url = httpx.URL(link)
    except httpx.InvalidURL as e:
        logger.warning(f"Invalid audio link {link!r}: {e}")
        return None
    if not url.host:
        logger.warning(f"Invalid audio link {link!r}: no host")
        return None
    return link


def read_duration(data: DataTree, path: str) -> Time:
    seconds = data.get_number(path) or 0.0
    if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
        seconds = 0.0
    return Time.of_seconds(seconds)


## Parser


class ReleaseParser:
    """Fetches release pages and builds ``Release`` objects from them."""

    def __init__(self, connection: ConnectionBuilder):
        self.connection = connection

    def load(self, url: str) -> Release:
        """
        Download and parse one release page.

        Raises:
            ReleaseLoadingError: on fetch failure, HTTP error status or missing data
        """
        try:
            response = self.connection.open(url)
        except (httpx.HTTPError, OSError, ValueError) as e:
            raise ReleaseLoadingError(f"{type(e).__name__}: {e}") from e

        if response.is_error:
            raise ReleaseLoadingError(
                f"Server returned HTTP response code: {response.status_code} for URL: {url}",
                http_status=response.status_code,
            )

        try:
            text = response.text
        except (httpx.HTTPError, UnicodeDecodeError) as e:
            raise ReleaseLoadingError(f"{type(e).__name__}: {e}") from e

        return self.parse_page(url, text)

    def parse_page(self, url: str, page: str) -> Release:
        """Build a release from page text already in memory."""
        try:
            found = find_release_data(page)
        except ScriptDataError as e:
            raise ReleaseLoadingError(str(e)) from e

        data = found.tree
        domain = domain_of(url)
        artist = (data.get_str("artist") or "").strip()
        title = (data.get_str("current.title") or "").strip()
        tags = read_tags(page, found.end)
        multi_artist = is_multi_artist(artist, title, tags)

        parent = data.get_str("album_url")
        release = Release(
            uri=url,
            artist=artist,
            title=title,
            download_type=read_download_type(data),
            price=read_price(data),
            release_date=self._read_date(url, data, "album_release_date"),
            publish_date=self._read_date(url, data, "current.publish_date"),
            tags=tags,
            tracks=self._read_tracks(data, artist, domain, multi_artist),
            artwork_link=read_artwork_link(page, data.get_str("art_id"), found.end),
            download_link=data.get_str("freeDownloadPage"),
            parent_release_link=f"{domain}{parent}" if parent else None,
            information=data.get_str("current.about") or "",
            credits=data.get_str("current.credits") or "",
        )
        logger.debug(f"Parsed release {release.id}: {len(release.tracks)} tracks")
        return release

    def _read_date(self, url: str, data: DataTree, path: str) -> date:
        value = data.get_str(path)
        if value is None:
            return UNKNOWN_DATE
        parsed = parse_date(value)
        if parsed is None:
            logger.warning(f"Error processing release data: {url} (unparsable {path}: {value!r})")
            return UNKNOWN_DATE
        return parsed

    def _read_tracks(
        self,
        data: DataTree,
        release_artist: str,
        domain: str,
        multi_artist: bool,
    ) -> tuple[Track, ...]:
        tracks: list[Track] = []
        for i, _ in enumerate(data.get_list("trackinfo")):
            prefix = f"trackinfo[{i}]"
            raw_title = data.get_str(f"{prefix}.title") or ""
            title_link = data.get_str(f"{prefix}.title_link")
            artist, title = split_track_title(raw_title, title_link, release_artist, multi_artist)

            file_link = data.get_str(f"{prefix}.file['mp3-128']")
            tracks.append(
                Track(
                    number=i + 1,
                    artist=artist,
                    title=title,
                    time=read_duration(data, f"{prefix}.duration"),
                    link=f"{domain}{title_link}" if title_link else None,
                    file_link=normalize_file_link(file_link) if file_link else None,
                )
            )
        return tuple(tracks)


## Tests


def test_minimize_title():
    assert minimize_title("") == "-"
    assert minimize_title("!!!") == "-"
    assert minimize_title("Hello, World!") == "hello-world"
    assert minimize_title("Don't Stop") == "dont-stop"
    assert minimize_title("Version 2.0") == "version-20"
    assert minimize_title("End.") == "end"


def test_remove_trailing_index():
    assert remove_trailing_index("song-2") == "song"
    assert remove_trailing_index("song-12-3") == "song"
    assert remove_trailing_index("song") == "song"
    assert remove_trailing_index("song-") == "song-"
    assert remove_trailing_index("song-b2") == "song-b2"
    assert remove_trailing_index("2-3") == "2"
    assert remove_trailing_index("-3") == "-"
    assert remove_trailing_index("x") == "x"


def test_unescape_html():
    assert unescape_html("drum &amp; bass") == "drum & bass"
    assert unescape_html("caf&#233;") == "café"
    assert unescape_html("&#x263A;") == "☺"
    assert unescape_html("&#128512;") == "&#128512;"
    assert unescape_html("&bogus;") == "&bogus;"


def test_is_multi_artist():
    assert is_multi_artist("Various Artists", "Anything", ())
    assert is_multi_artist("V/A", "Anything", ())
    assert is_multi_artist("Hyperdub Records", "Anything", ())
    assert is_multi_artist("Someone", "Summer Sampler", ())
    assert is_multi_artist("Someone", "Anything", ("electronic", "compilation"))
    assert not is_multi_artist("Solo Artist", "Debut", ("ambient",))


def test_parse_date():
    assert parse_date("01 Jan 2020 00:00:00 GMT") == date(2020, 1, 1)
    assert parse_date("Wed, 05 Jun 2019 12:00:00 GMT") == date(2019, 6, 5)
    assert parse_date("yesterday") is None
    assert parse_date(None) is None


def test_read_artwork_link():
    page = '<a class="popupImage" href="https://f4.bcbits.com/img/a0123456789_10.jpg">'
    assert read_artwork_link(page, "123456789") == "https://f4.bcbits.com/img/a0123456789_2.jpg"
    assert read_artwork_link(page, "999") is None
    assert read_artwork_link(page, None) is None
