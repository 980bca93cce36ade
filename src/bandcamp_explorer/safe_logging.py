"""Path-safe logging utilities for bandcamp-explorer.

Direct searches may point at local files, and their URLs end up in log
messages. These helpers keep local paths out of the logs:
- File path hashing/relativization
- ``file:`` URL rewriting inside messages
- Rich console handler setup for the CLI
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

from rich.console import Console
from rich.logging import RichHandler

FILE_URL_PATTERN = re.compile(r"file:(?://)?[^\s'\"<>]+", re.I)


def hash_path(file_path: Path | str, length: int = 12) -> str:
    """Hash a file path for logging.

    Creates a deterministic, non-reversible hash of the full path.

    Args:
        file_path: Path to hash
        length: Length of hash to return

    Returns:
        Truncated SHA256 hash of the path
    """
    path_str = str(file_path)
    return hashlib.sha256(path_str.encode()).hexdigest()[:length]


def relativize_path(file_path: Path | str) -> str:
    """Reduce a path to ``parent/name`` for safe logging."""
    path = Path(file_path)
    if path.parent.name:
        return f"{path.parent.name}/{path.name}"
    return path.name


def safe_path(file_path: Path | str, use_hash: bool = False) -> str:
    """Get a safe representation of a path for logging.

    Args:
        file_path: Path to represent
        use_hash: If True, return hash instead of relative path

    Returns:
        Safe path representation
    """
    if use_hash:
        return f"file:{hash_path(file_path)}"
    return relativize_path(file_path)


def safe_file_url(url: str, use_hash: bool = False) -> str:
    """Rewrite a ``file:`` URL so that only the trailing path components remain."""
    path = unquote(urlsplit(url).path)
    if not path:
        return url
    if use_hash:
        return safe_path(path, use_hash=True)
    return f"file:{relativize_path(path)}"


def sanitize_message(message: str, hash_paths: bool = False) -> str:
    """Replace every ``file:`` URL in a log message with its safe form."""
    return FILE_URL_PATTERN.sub(lambda m: safe_file_url(m.group(0), hash_paths), message)


class SafeLogFormatter(logging.Formatter):
    """Log formatter that keeps local file paths out of log output."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        sanitize_messages: bool = True,
        hash_paths: bool = False,
    ):
        super().__init__(fmt, datefmt)
        self.sanitize_messages = sanitize_messages
        self.hash_paths = hash_paths

    def format(self, record: logging.LogRecord) -> str:
        # Copy the record so other handlers see the original
        record = logging.makeLogRecord(record.__dict__)

        if self.sanitize_messages:
            record.msg = sanitize_message(str(record.msg), self.hash_paths)

        if record.args:
            record.args = self._sanitize_args(record.args)

        return super().format(record)

    def _sanitize_args(
        self, args: tuple[Any, ...] | Mapping[str, Any]
    ) -> tuple[Any, ...] | dict[str, Any]:
        if isinstance(args, Mapping):
            return {key: self._sanitize_value(value) for key, value in args.items()}
        return tuple(self._sanitize_value(arg) for arg in args)

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, Path):
            return safe_path(value, use_hash=self.hash_paths)
        if isinstance(value, str) and value.lower().startswith("file:"):
            return safe_file_url(value, self.hash_paths)
        return value


def configure_rich_logging(
    level: int = logging.WARNING,
    hash_paths: bool = False,
    show_time: bool = True,
    show_path: bool = False,
    console: Console | None = None,
) -> Console:
    """Route logging through a Rich handler and return the console it writes to.

    The CLI prints its own output on the same console so that progress bars
    and log lines do not garble each other.

    Args:
        level: Logging level for the root logger
        hash_paths: Whether to hash file paths
        show_time: Show timestamps in log lines
        show_path: Show the emitting source file and line
        console: Console to use (a new one is created when omitted)
    """
    console = console or Console()
    handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(SafeLogFormatter(fmt="%(message)s", hash_paths=hash_paths))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if isinstance(existing, RichHandler):
            root_logger.removeHandler(existing)
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    return console


## Tests


def test_hash_path():
    path1 = Path("/home/user/music/page.html")
    path2 = Path("/home/user/music/page.html")
    path3 = Path("/home/user/music/other.html")

    assert len(hash_path(path1)) == 12
    assert hash_path(path1) == hash_path(path2)
    assert hash_path(path1) != hash_path(path3)


def test_safe_file_url():
    assert safe_file_url("file:///home/user/saved/page.html") == "file:saved/page.html"
    hashed = safe_file_url("file:///home/user/saved/page.html", use_hash=True)
    assert hashed.startswith("file:")
    assert "page.html" not in hashed


def test_sanitize_message_rewrites_file_urls():
    msg = "Loading release: file:///home/user/saved/album.html (attempt #1)"
    sanitized = sanitize_message(msg)

    assert "/home/user" not in sanitized
    assert "file:saved/album.html" in sanitized
    assert sanitized.endswith("(attempt #1)")


def test_sanitize_message_keeps_http_urls():
    msg = "Loading release: https://artist.bandcamp.com/album/x"
    assert sanitize_message(msg) == msg


def test_safe_log_formatter():
    formatter = SafeLogFormatter(fmt="%(message)s")

    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg="Fetching %s",
        args=("file:///home/user/saved/page.html",),
        exc_info=None,
    )

    formatted = formatter.format(record)
    assert formatted == "Fetching file:saved/page.html"


def test_safe_log_formatter_mapping_args():
    formatter = SafeLogFormatter(fmt="%(message)s")

    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg="Fetching %(page)s (%(count)d links)",
        args=({"page": "file:///home/user/saved/page.html", "count": 3},),
        exc_info=None,
    )

    formatted = formatter.format(record)
    assert formatted == "Fetching file:saved/page.html (3 links)"
    assert record.args == {"page": "file:///home/user/saved/page.html", "count": 3}
