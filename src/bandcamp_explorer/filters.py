"""Release predicates for narrowing search results.

Every factory returns a ``ReleaseFilter`` (a plain callable), so filters
combine with ``all_of``/``any_of`` or any other function taking a release.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable
from datetime import date

from bandcamp_explorer.models import DownloadType, Release

ReleaseFilter = Callable[[Release], bool]


def any_release() -> ReleaseFilter:
    return lambda release: True


def _contains(value: str, needle: str | None) -> bool:
    if not needle:
        return True
    return needle.lower() in value.lower()


def artist_contains(text: str | None) -> ReleaseFilter:
    """Case-insensitive substring match on the artist; empty text matches all."""
    return lambda release: _contains(release.artist, text)


def title_contains(text: str | None) -> ReleaseFilter:
    return lambda release: _contains(release.title, text)


def url_contains(text: str | None) -> ReleaseFilter:
    return lambda release: _contains(release.uri, text)


def by_download_type(download_types: Collection[DownloadType]) -> ReleaseFilter:
    allowed = frozenset(download_types)
    return lambda release: release.download_type in allowed


def _within(value: date, start: date | None, end: date | None) -> bool:
    return (start is None or start <= value) and (end is None or value <= end)


def by_release_date(start: date | None = None, end: date | None = None) -> ReleaseFilter:
    """Release date within the inclusive range; open ends are unbounded."""
    return lambda release: _within(release.release_date, start, end)


def by_publish_date(start: date | None = None, end: date | None = None) -> ReleaseFilter:
    return lambda release: _within(release.publish_date, start, end)


def by_tags(
    include: Collection[str] | None,
    exclude: Collection[str] | None = None,
) -> ReleaseFilter:
    """
    Release carries every tag in ``include`` and none in ``exclude``.

    Tags are compared lowercased. ``include=None`` matches every release.
    """
    if include is None:
        return any_release()
    wanted = {tag.lower() for tag in include}
    unwanted = {tag.lower() for tag in exclude or ()}

    def matches(release: Release) -> bool:
        tags = set(release.tags)
        return wanted <= tags and tags.isdisjoint(unwanted)

    return matches


def all_of(*filters: ReleaseFilter) -> ReleaseFilter:
    return lambda release: all(f(release) for f in filters)


def any_of(*filters: ReleaseFilter) -> ReleaseFilter:
    return lambda release: any(f(release) for f in filters)


def apply_filters(releases: Iterable[Release], *filters: ReleaseFilter) -> list[Release]:
    combined = all_of(*filters)
    return [release for release in releases if combined(release)]


## Tests


def _release(**kwargs) -> Release:  # pyright: ignore[reportMissingParameterType, reportUnknownParameterType]
    fields = {"uri": "https://a.bandcamp.com/album/x", "artist": "Artist", "title": "Title"}
    fields.update(kwargs)  # pyright: ignore[reportUnknownMemberType]
    return Release(**fields)  # pyright: ignore[reportArgumentType]


def test_text_filters():
    release = _release(artist="Boards of Canada", title="Geogaddi")
    assert artist_contains("of can")(release)
    assert not title_contains("music has")(release)
    assert url_contains("")(release)
    assert url_contains("A.BANDCAMP")(release)


def test_date_and_type_filters():
    release = _release(
        release_date=date(2020, 5, 1),
        publish_date=date(2020, 6, 1),
        download_type=DownloadType.FREE,
    )
    assert by_release_date(date(2020, 1, 1), date(2020, 5, 1))(release)
    assert not by_publish_date(end=date(2020, 5, 31))(release)
    assert by_download_type({DownloadType.FREE, DownloadType.NAME_YOUR_PRICE})(release)


def test_tag_filters():
    release = _release(tags=("ambient", "drone", "berlin"))
    assert by_tags(["Ambient", "drone"])(release)
    assert not by_tags(["ambient"], exclude=["berlin"])(release)
    assert by_tags(None, exclude=["ambient"])(release)
    assert any_of(by_tags(["techno"]), artist_contains("art"))(release)
    assert apply_filters([release], by_tags(["techno"])) == []
