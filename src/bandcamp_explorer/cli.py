"""CLI for bandcamp-explorer using Typer and Rich."""

from __future__ import annotations

import json
import logging
from datetime import date
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

import httpx
import typer
from rich.markup import escape
from rich.table import Table

from bandcamp_explorer.config import Config
from bandcamp_explorer.console import (
    make_progress,
    print_error,
    print_success,
    print_warning,
    set_console,
    status,
)
from bandcamp_explorer.console import print as cprint
from bandcamp_explorer.filters import (
    ReleaseFilter,
    apply_filters,
    artist_contains,
    by_download_type,
    by_publish_date,
    by_release_date,
    by_tags,
    title_contains,
)
from bandcamp_explorer.models import DEFAULT_SORT_ORDER, DownloadType, Release, ReleaseSortOrder
from bandcamp_explorer.release_parser import ReleaseLoadingError
from bandcamp_explorer.resource import SearchType, direct_url
from bandcamp_explorer.safe_logging import configure_rich_logging
from bandcamp_explorer.search import SearchEngine, SearchParams, SearchResult


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    TEXT = "text"
    JSON = "json"


class ExitCode:
    """Standard exit codes for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    NO_RESULTS = 2
    CANCELLED = 130


app = typer.Typer(
    name="bandcamp-explorer",
    help="Bandcamp Explorer: search Bandcamp and list releases with their tracks, prices and tags",
    no_args_is_help=True,
    add_completion=False,
)


class AppState:
    """Global application state passed between commands."""

    config: Config
    output_format: OutputFormat
    verbose: int


state = AppState()


def _date_str(value: date) -> str | None:
    return None if value == date.min else value.isoformat()


def release_to_dict(release: Release, with_tracks: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {
        "artist": release.artist,
        "title": release.title,
        "url": release.uri,
        "time": str(release.time),
        "download_type": release.download_type.value,
        "price": str(release.price),
        "release_date": _date_str(release.release_date),
        "publish_date": _date_str(release.publish_date),
        "tags": list(release.tags),
        "artwork": release.artwork_link,
        "download_link": release.download_link,
        "parent_release": release.parent_release_link,
    }
    if with_tracks:
        result["information"] = release.information
        result["credits"] = release.credits
        result["tracks"] = [
            {
                "number": track.number,
                "artist": track.artist,
                "title": track.title,
                "time": str(track.time),
                "link": track.link,
                "file": track.file_link,
            }
            for track in release.tracks
        ]
    return result


def _print_json(data: Any) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    cprint(text, markup=False, highlight=False, soft_wrap=True)


def _releases_table(releases: list[Release]) -> Table:
    table = Table(show_lines=False)
    table.add_column("Artist", overflow="fold")
    table.add_column("Title", overflow="fold")
    table.add_column("Time", justify="right")
    table.add_column("Download")
    table.add_column("Released")
    table.add_column("Published")
    table.add_column("Tags", overflow="fold")
    for release in releases:
        table.add_row(
            escape(release.artist),
            escape(release.title),
            str(release.time),
            release.download_type.value.replace("_", " "),
            _date_str(release.release_date) or "-",
            _date_str(release.publish_date) or "-",
            escape(release.tags_string),
        )
    return table


def _parse_date(value: str | None, option: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        print_error(f"{option} must be a date in YYYY-MM-DD form, got {value!r}")
        raise typer.Exit(code=ExitCode.ERROR)


@app.callback()
def main(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to configuration TOML file", exists=True),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", help="Output format"),
    ] = OutputFormat.TEXT,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    workers: Annotated[int | None, typer.Option(help="Number of download workers")] = None,
    cooldown: Annotated[
        float | None,
        typer.Option(help="Seconds to pause after the server throttles requests"),
    ] = None,
    max_redirects: Annotated[int | None, typer.Option(help="Redirect limit per request")] = None,
    insecure_retry: Annotated[
        bool | None,
        typer.Option(
            "--insecure-retry/--no-insecure-retry",
            help="Retry without certificate checks when the certificate chain is untrusted",
        ),
    ] = None,
) -> None:
    """Bandcamp Explorer: discover releases on Bandcamp."""
    logger = logging.getLogger(__name__)

    # Load config (TOML + env vars)
    cfg = Config.load(config_path)

    # CLI > Env > Config File > Defaults
    if workers is not None:
        cfg.search.workers = workers
    if cooldown is not None:
        cfg.search.cooldown_s = cooldown
    if max_redirects is not None:
        cfg.http.max_redirects = max_redirects
    if insecure_retry is not None:
        cfg.http.allow_insecure_retry = insecure_retry

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        level_str = cfg.logging.level.upper()
        log_level = getattr(logging, level_str, logging.WARNING)

    console = configure_rich_logging(
        level=log_level,
        hash_paths=cfg.logging.hash_paths,
        show_time=True,
        show_path=False,
    )
    set_console(console)

    # Suppress external library logging unless very verbose (-vvv)
    if verbose < 3:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if config_path:
        logger.info(f"Loaded config from {config_path}")
    logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}")

    state.config = cfg
    state.output_format = output
    state.verbose = verbose


def _run_search(engine: SearchEngine, params: SearchParams, show_progress: bool) -> SearchResult:
    if not show_progress:
        task = engine.submit(params)
        try:
            return task.result()
        except KeyboardInterrupt:
            task.cancel()
            return task.result()

    with make_progress(transient=True) as progress:
        bar = progress.add_task("Starting...", total=None)
        task = engine.submit(
            params,
            on_progress=lambda done, total: progress.update(bar, completed=done, total=total),
            on_message=lambda message: progress.update(bar, description=message),
        )
        try:
            return task.result()
        except KeyboardInterrupt:
            task.cancel()
            return task.result()


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search text, tag name, or URL/file for --type direct")],
    search_type: Annotated[
        SearchType,
        typer.Option("--type", "-t", help="How to interpret QUERY"),
    ] = SearchType.SEARCH,
    pages: Annotated[
        int | None,
        typer.Option("--pages", "-p", min=1, help="Result pages to scan (search and tag only)"),
    ] = None,
    sort: Annotated[
        list[ReleaseSortOrder] | None,
        typer.Option("--sort", "-s", help="Sort order; repeat for secondary keys"),
    ] = None,
    artist: Annotated[str | None, typer.Option("--filter-artist", help="Artist contains")] = None,
    title: Annotated[str | None, typer.Option("--filter-title", help="Title contains")] = None,
    tags: Annotated[
        list[str] | None,
        typer.Option("--filter-tag", help="Required tag; repeat for more"),
    ] = None,
    exclude_tags: Annotated[
        list[str] | None,
        typer.Option("--exclude-tag", help="Excluded tag; repeat for more"),
    ] = None,
    download_types: Annotated[
        list[DownloadType] | None,
        typer.Option("--filter-download", help="Allowed download type; repeat for more"),
    ] = None,
    released_from: Annotated[str | None, typer.Option(help="Released on or after (YYYY-MM-DD)")] = None,
    released_to: Annotated[str | None, typer.Option(help="Released on or before (YYYY-MM-DD)")] = None,
    published_from: Annotated[str | None, typer.Option(help="Published on or after (YYYY-MM-DD)")] = None,
    published_to: Annotated[str | None, typer.Option(help="Published on or before (YYYY-MM-DD)")] = None,
    limit: Annotated[int | None, typer.Option(min=1, help="Show at most N releases")] = None,
    no_progress: Annotated[bool, typer.Option(help="Disable progress display")] = False,
) -> None:
    """Search Bandcamp and list the releases found.

    Examples:
        bandcamp-explorer search "dark ambient" --pages 3
        bandcamp-explorer search drone --type tag --sort release_date_desc
        bandcamp-explorer search https://artist.bandcamp.com/music --type direct
    """
    config = state.config
    output_format = state.output_format

    try:
        params = SearchParams(
            query=query,
            search_type=search_type,
            pages=pages or config.search.default_pages,
            sort_order=tuple(sort) if sort else DEFAULT_SORT_ORDER,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR)

    filters: list[ReleaseFilter] = [
        artist_contains(artist),
        title_contains(title),
        by_release_date(
            _parse_date(released_from, "--released-from"),
            _parse_date(released_to, "--released-to"),
        ),
        by_publish_date(
            _parse_date(published_from, "--published-from"),
            _parse_date(published_to, "--published-to"),
        ),
    ]
    if tags or exclude_tags:
        filters.append(by_tags(tags or [], exclude_tags))
    if download_types:
        filters.append(by_download_type(download_types))

    with SearchEngine(config) as engine:
        try:
            result = _run_search(engine, params, show_progress=not no_progress)
        except (httpx.HTTPError, OSError, ValueError) as e:
            print_error(f"Search failed: {e}")
            raise typer.Exit(code=ExitCode.ERROR)

    if result.cancelled:
        print_warning("Search cancelled")
        raise typer.Exit(code=ExitCode.CANCELLED)

    releases = apply_filters(result.releases, *filters)
    if limit is not None:
        releases = releases[:limit]

    if output_format == OutputFormat.JSON:
        _print_json(
            {
                "query": params.query,
                "type": params.search_type.value,
                "found": result.found_count,
                "loaded": result.loaded_count,
                "failed": result.failed_count,
                "releases": [release_to_dict(release) for release in releases],
            }
        )
    else:
        if releases:
            cprint(_releases_table(releases))
        summary = f"{result.summary()}, shown: {len(releases)}"
        if result.failed_count:
            print_warning(summary)
        else:
            print_success(summary)

    if not releases:
        raise typer.Exit(code=ExitCode.NO_RESULTS)
    raise typer.Exit(code=ExitCode.SUCCESS)


@app.command()
def release(
    url: Annotated[str, typer.Argument(help="Release page URL or saved page file")],
) -> None:
    """Load one release and show its details and track list."""
    config = state.config
    output_format = state.output_format

    with SearchEngine(config) as engine:
        try:
            target = direct_url(url)
            with status(f"Loading {target}..."):
                loaded = engine.parser.load(target)
        except (ReleaseLoadingError, OSError, ValueError) as e:
            print_error(str(e))
            raise typer.Exit(code=ExitCode.ERROR)

    if output_format == OutputFormat.JSON:
        _print_json(release_to_dict(loaded, with_tracks=True))
        raise typer.Exit(code=ExitCode.SUCCESS)

    heading = f"[bold]{escape(loaded.artist)} - {escape(loaded.title)}[/bold] ({loaded.time})"
    cprint(heading, highlight=False)
    cprint(f"  URL: {loaded.uri}", markup=False)
    download = loaded.download_type.value.replace("_", " ")
    cprint(f"  Download: {download} ({loaded.price})", markup=False)
    cprint(f"  Released: {_date_str(loaded.release_date) or '-'}", markup=False)
    cprint(f"  Published: {_date_str(loaded.publish_date) or '-'}", markup=False)
    if loaded.tags:
        cprint(f"  Tags: {loaded.tags_string}", markup=False)
    if loaded.artwork_link:
        cprint(f"  Artwork: {loaded.artwork_link}", markup=False)

    table = Table(show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Artist", overflow="fold")
    table.add_column("Title", overflow="fold")
    table.add_column("Time", justify="right")
    table.add_column("Playable")
    for track in loaded.tracks:
        table.add_row(
            str(track.number),
            escape(track.artist),
            escape(track.title),
            str(track.time),
            "yes" if track.is_playable else "no",
        )
    cprint(table)
    raise typer.Exit(code=ExitCode.SUCCESS)


# ====================================================================
# ENTRY POINT
# ====================================================================


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
