from __future__ import annotations

from collections.abc import Mapping, Sequence

from altsource_browse.models import App, Catalog, FilteredIndex


def normalize_query(query: str) -> str:
    return query.strip()


def matches_query(query: str, candidate: str) -> bool:
    """Case-insensitive substring match of an already normalized query."""
    return query.casefold() in candidate.casefold()


def filter_index(index: Mapping[Catalog, Sequence[App]], query: str) -> FilteredIndex:
    """Restrict every catalog to the apps whose name contains ``query``.

    Catalogs without matches stay in the result with an empty list, and an
    empty query returns every app.
    """
    query = normalize_query(query)
    if not query:
        return {catalog: list(apps) for catalog, apps in index.items()}

    return {
        catalog: [app for app in apps if matches_query(query, app.name)]
        for catalog, apps in index.items()
    }
