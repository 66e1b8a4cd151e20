from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from altsource_browse import __version__
from altsource_browse.aggregation import DEFAULT_MAX_PARALLEL, DEFAULT_TIMEOUT_SECONDS
from altsource_browse.config import SOURCES_FILE_ENVVAR, BrowseConfig, load_config
from altsource_browse.errors import ConfigError
from altsource_browse.logs import configure_logging
from altsource_browse.models import App, Catalog
from altsource_browse.rendering import build_results_table
from altsource_browse.session import SearchSession
from altsource_browse.tui import SourceSearchTui

__all__ = [
    "App",
    "Catalog",
    "SearchSession",
    "SourceSearchTui",
    "cli",
    "run",
]


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"altsource-browse {__version__}")
    raise typer.Exit()


cli = typer.Typer(
    add_completion=False,
    help="Search apps across several AltStore-style sources in a Textual TUI.",
)


def print_results(config: BrowseConfig, query: str, console: Console) -> None:
    session = SearchSession(
        max_parallel=config.max_parallel,
        timeout_seconds=config.timeout_seconds,
        include_empty_sections=False,
    )
    asyncio.run(session.refresh(config.sources))
    session.on_query_changed(query)

    if session.section_count():
        console.print(
            build_results_table(session.sections(), endpoint_for=session.endpoint_for)
        )
    elif session.has_active_query():
        console.print(f"No apps match {query.strip()!r}.")
    else:
        console.print("No apps available from the configured sources.")

    failures = session.result.failures
    for failure in failures:
        console.print(f"[yellow]Failed:[/yellow] {escape(str(failure.error))}")
    console.print(
        f"{session.match_count():,} apps across {session.section_count()} source(s)."
    )


@cli.callback(invoke_without_command=True)
def run(
    source: list[str] | None = typer.Option(
        None,
        "--source",
        "-s",
        help="Source manifest URL. Repeat the flag to pass multiple sources.",
    ),
    sources_file: Path | None = typer.Option(
        None,
        "--sources-file",
        envvar=SOURCES_FILE_ENVVAR,
        help="JSON file listing source URLs.",
    ),
    query: str = typer.Option(
        "",
        "--query",
        "-q",
        help="Initial search query.",
    ),
    timeout: float = typer.Option(
        DEFAULT_TIMEOUT_SECONDS,
        "--timeout",
        help="Per-source fetch timeout in seconds.",
    ),
    max_parallel: int = typer.Option(
        DEFAULT_MAX_PARALLEL,
        "--max-parallel",
        help="Maximum number of sources fetched at once.",
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
    print_only: bool = typer.Option(
        False,
        "--print",
        help="Print matching apps and exit instead of starting the TUI.",
    ),
    _version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    try:
        config = load_config(
            sources=source or [],
            sources_file=sources_file,
            timeout_seconds=timeout,
            max_parallel=max_parallel,
        )
        configure_logging(log_level, tui=not print_only)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    if print_only:
        if not config.sources:
            typer.echo(
                "No sources configured. Pass --source or --sources-file.", err=True
            )
            raise typer.Exit(code=1)
        print_results(config, query, Console())
        return

    SourceSearchTui(
        sources=config.sources,
        timeout_seconds=config.timeout_seconds,
        max_parallel=config.max_parallel,
        initial_query=query,
    ).run()


if __name__ == "__main__":
    cli()
