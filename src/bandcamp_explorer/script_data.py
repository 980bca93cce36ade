"""Embedded release data extraction.

Item pages carry their release data as a JavaScript literal, either in the
``data-tralbum`` attribute (HTML-escaped JSON) of a script tag or, on older
pages, as a ``var TralbumData = {...};`` assignment with unquoted keys,
comments and string concatenation. Both are decoded with demjson3 in
non-strict mode into a ``DataTree`` that is addressed with JavaScript-style
paths such as ``trackinfo[0].file['mp3-128']``.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import demjson3

logger = logging.getLogger(__name__)

DATA_ATTRIBUTE_PATTERN = re.compile(r'data-tralbum\s*=\s*"([^"]*)"', re.I)
DATA_ASSIGNMENT_PATTERN = re.compile(r"var\s+TralbumData\s*=\s*(\{.+?\});", re.S)
CONCAT_CONTINUATION_PATTERN = re.compile(r"""\s*\+\s*(?P<quote>["'])""")

PATH_TOKEN_PATTERN = re.compile(
    r"""
    \.?(?P<name>[A-Za-z_$][\w$]*)        # plain or dotted property
    | \[\s*(?P<index>\d+)\s*\]           # list index
    | \[\s*(?P<quote>['"])(?P<key>.*?)(?P=quote)\s*\]   # quoted property
    """,
    re.X,
)


class ScriptDataError(ValueError):
    """Release data literal is missing or cannot be decoded."""


@dataclass(frozen=True)
class DataMatch:
    """Decoded literal plus the offset where the page text continues after it."""

    tree: DataTree
    end: int


def _parse_path(path: str) -> Iterator[str | int]:
    pos = 0
    while pos < len(path):
        match = PATH_TOKEN_PATTERN.match(path, pos)
        if match is None:
            raise ValueError(f"Invalid data path: {path!r}")
        if match.group("name") is not None:
            yield match.group("name")
        elif match.group("index") is not None:
            yield int(match.group("index"))
        else:
            yield match.group("key")
        pos = match.end()


def _strip_undefined(value: Any) -> Any:
    if value is demjson3.undefined:
        return None
    if isinstance(value, dict):
        return {key: _strip_undefined(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_strip_undefined(item) for item in value]
    return value


class DataTree:
    """Read-only view over a decoded data literal."""

    def __init__(self, root: dict[str, Any]):
        self.root = root

    def get(self, path: str, default: Any = None) -> Any:
        """Resolve a path; missing steps yield ``default``.

        ``length`` on a list or string yields its length, as it would in
        JavaScript.
        """
        node: Any = self.root
        for step in _parse_path(path):
            if isinstance(step, int):
                if isinstance(node, list) and 0 <= step < len(node):
                    node = node[step]
                    continue
                return default
            if isinstance(node, dict) and step in node:
                node = node[step]
            elif step == "length" and isinstance(node, list | str):
                node = len(node)
            else:
                return default
        return default if node is None else node

    def get_str(self, path: str, default: str | None = None) -> str | None:
        value = self.get(path)
        if value is None or isinstance(value, dict | list):
            return default
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    def get_number(self, path: str, default: float | None = None) -> float | None:
        value = self.get(path)
        if isinstance(value, bool):
            return float(value)
        if isinstance(value, int | float | Decimal):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                logger.warning(f"Non-numeric value at {path}: {value!r}")
        return default

    def get_list(self, path: str) -> list[Any]:
        value = self.get(path)
        return value if isinstance(value, list) else []


def join_string_concatenations(text: str) -> str:
    """Fold ``"a" + "b"`` into ``"ab"`` in JavaScript source.

    Only a ``+`` between the closing quote of one string literal and the
    opening quote of the next is removed; string contents and comments
    are copied as they are.
    """
    out: list[str] = []
    pos, size = 0, len(text)
    quote = ""
    while pos < size:
        char = text[pos]
        if quote:
            if char == "\\":
                out.append(text[pos : pos + 2])
                pos += 2
                continue
            if char == quote:
                match = CONCAT_CONTINUATION_PATTERN.match(text, pos + 1)
                if match is not None and match.group("quote") == quote:
                    pos = match.end()
                    continue
                quote = ""
            out.append(char)
            pos += 1
            continue
        if char in "\"'":
            quote = char
            end = pos + 1
        elif text.startswith("//", pos):
            end = text.find("\n", pos)
            end = size if end < 0 else end
        elif text.startswith("/*", pos):
            end = text.find("*/", pos + 2)
            end = size if end < 0 else end + 2
        else:
            end = pos + 1
        out.append(text[pos:end])
        pos = end
    return "".join(out)


def decode_literal(text: str) -> DataTree:
    """Decode a JSON or JavaScript object literal."""
    try:
        decoded = demjson3.decode(text, strict=False)
    except demjson3.JSONDecodeError as e:
        raise ScriptDataError("Release data is not valid") from e
    if not isinstance(decoded, dict):
        raise ScriptDataError("Release data is not an object")
    return DataTree(_strip_undefined(decoded))


def find_release_data(page: str) -> DataMatch:
    """Locate and decode the release data literal in page text.

    Raises:
        ScriptDataError: no literal found, or it cannot be decoded
    """
    if match := DATA_ATTRIBUTE_PATTERN.search(page):
        return DataMatch(decode_literal(html.unescape(match.group(1))), match.end())
    if match := DATA_ASSIGNMENT_PATTERN.search(page):
        return DataMatch(decode_literal(join_string_concatenations(match.group(1))), match.end())
    raise ScriptDataError("Release data not found")


## Tests


def test_data_tree_paths():
    tree = DataTree(
        {
            "artist": "Someone",
            "current": {"title": "Album", "minimum_price": 7.0},
            "trackinfo": [{"title": "One", "file": {"mp3-128": "//t4.bcbits.com/x"}}],
        }
    )
    assert tree.get("artist") == "Someone"
    assert tree.get("current.title") == "Album"
    assert tree.get_number("current.minimum_price") == 7.0
    assert tree.get("trackinfo.length") == 1
    assert tree.get("trackinfo[0].file['mp3-128']") == "//t4.bcbits.com/x"
    assert tree.get("trackinfo[3].title") is None
    assert tree.get("current.missing.deeper", "x") == "x"


def test_find_legacy_assignment():
    page = """
    <script>
    var TralbumData = {
        // For the curious: http://bandcamp.com/help/selling
        artist: "Some Band",
        current: {title: "First", download_pref: 2, minimum_price: 0.0},
        url: "http://someband.bandcamp.com" + "/album/first",
        is_preorder: null
    };
    </script>
    """
    found = find_release_data(page)
    assert found.tree.get("artist") == "Some Band"
    assert found.tree.get("current.download_pref") == 2
    assert found.tree.get("url") == "http://someband.bandcamp.com/album/first"
    assert page[found.end :].lstrip().startswith("</script>")


def test_find_data_attribute():
    page = '<script data-tralbum="{&quot;artist&quot;:&quot;A &amp; B&quot;}"></script>'
    assert find_release_data(page).tree.get("artist") == "A & B"


def test_join_string_concatenations():
    assert join_string_concatenations('{u: "a" + "b" +\n "c"}') == '{u: "abc"}'
    assert join_string_concatenations('{t: "+", s: " + "}') == '{t: "+", s: " + "}'
    assert join_string_concatenations('{t: "say \\"hi\\"" + "!"}') == '{t: "say \\"hi\\"!"}'
    assert join_string_concatenations('{n: 1 + 2, // "x" + "y"\n}') == '{n: 1 + 2, // "x" + "y"\n}'


def test_missing_release_data():
    import pytest

    with pytest.raises(ScriptDataError, match="not found"):
        find_release_data("<html><body>nothing here</body></html>")
