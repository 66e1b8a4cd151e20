from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from functools import partial

from altsource_browse.decoding import decode_catalog
from altsource_browse.errors import DecodeError, FetchError
from altsource_browse.fetching import fetch_source
from altsource_browse.models import (
    AggregatedIndex,
    AggregationResult,
    Catalog,
    ReverseLookup,
    SourceEndpoint,
    SourceFailure,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 12
DEFAULT_TIMEOUT_SECONDS = 30.0

SourceFetcher = Callable[[SourceEndpoint], Awaitable[bytes]]


@dataclass(frozen=True)
class _SourceOutcome:
    endpoint: SourceEndpoint
    catalog: Catalog | None = None
    error: FetchError | DecodeError | None = None


def catalog_sort_key(
    catalog: Catalog, endpoint: SourceEndpoint | None = None
) -> tuple[str, str, str]:
    name = catalog.display_name
    return (name.casefold(), name, endpoint or "")


def normalize_endpoints(endpoints: Iterable[SourceEndpoint]) -> list[SourceEndpoint]:
    return sorted({endpoint.strip() for endpoint in endpoints if endpoint.strip()})


async def _load_source(
    endpoint: SourceEndpoint,
    *,
    fetcher: SourceFetcher,
    semaphore: asyncio.Semaphore,
) -> _SourceOutcome:
    async with semaphore:
        try:
            data = await fetcher(endpoint)
        except FetchError as exc:
            return _SourceOutcome(endpoint=endpoint, error=exc)
        except Exception as exc:
            logger.debug("Fetcher raised for %s", endpoint, exc_info=True)
            error = FetchError(str(exc) or type(exc).__name__, endpoint=endpoint)
            error.__cause__ = exc
            return _SourceOutcome(endpoint=endpoint, error=error)

    try:
        catalog = decode_catalog(data)
    except DecodeError as exc:
        exc.endpoint = endpoint
        return _SourceOutcome(endpoint=endpoint, error=exc)

    return _SourceOutcome(endpoint=endpoint, catalog=catalog)


def _merge_outcomes(outcomes: Iterable[_SourceOutcome]) -> AggregationResult:
    reverse_lookup: ReverseLookup = {}
    failures: list[SourceFailure] = []

    for outcome in sorted(outcomes, key=lambda item: item.endpoint):
        if outcome.error is not None:
            logger.warning("Skipping source %s: %s", outcome.endpoint, outcome.error)
            failures.append(
                SourceFailure(endpoint=outcome.endpoint, error=outcome.error)
            )
            continue
        if outcome.catalog is not None:
            # Equal catalogs from several endpoints keep the first endpoint.
            reverse_lookup.setdefault(outcome.catalog, outcome.endpoint)

    ordered_catalogs = sorted(
        reverse_lookup,
        key=lambda catalog: catalog_sort_key(catalog, reverse_lookup[catalog]),
    )
    index: AggregatedIndex = {
        catalog: list(catalog.apps) for catalog in ordered_catalogs
    }
    return AggregationResult(
        index=index,
        reverse_lookup={
            catalog: reverse_lookup[catalog] for catalog in ordered_catalogs
        },
        failures=tuple(failures),
    )


async def refresh_sources(
    endpoints: Iterable[SourceEndpoint],
    *,
    fetcher: SourceFetcher | None = None,
    max_parallel: int = DEFAULT_MAX_PARALLEL,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> AggregationResult:
    """Fetch and decode every endpoint concurrently and join the results.

    Each source is loaded by its own task into a private outcome; the shared
    index and reverse lookup are only built once every task has finished,
    so the result does not depend on completion order. Sources that fail to
    fetch or decode are logged and reported in ``failures``.
    """
    unique_endpoints = normalize_endpoints(endpoints)
    if not unique_endpoints:
        return AggregationResult()

    if fetcher is None:
        fetcher = partial(fetch_source, timeout_seconds=timeout_seconds)
    semaphore = asyncio.Semaphore(max(1, max_parallel))

    logger.info("Refreshing %d source(s)", len(unique_endpoints))
    outcomes = await asyncio.gather(
        *(
            _load_source(endpoint, fetcher=fetcher, semaphore=semaphore)
            for endpoint in unique_endpoints
        )
    )
    result = _merge_outcomes(outcomes)
    logger.info(
        "Loaded %d catalog(s) with %d app(s); %d source(s) failed",
        len(result.index),
        result.app_count,
        len(result.failures),
    )
    return result
