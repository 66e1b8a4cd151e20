from __future__ import annotations

import logging
from collections.abc import Iterable

from altsource_browse.aggregation import (
    DEFAULT_MAX_PARALLEL,
    DEFAULT_TIMEOUT_SECONDS,
    SourceFetcher,
    catalog_sort_key,
    refresh_sources,
)
from altsource_browse.models import (
    AggregationResult,
    App,
    Catalog,
    FilteredIndex,
    SourceEndpoint,
)
from altsource_browse.search import filter_index, normalize_query

logger = logging.getLogger(__name__)


class SearchSession:
    """Published search state shared by the presentation layers.

    The aggregation result is replaced as a whole when a refresh finishes and
    the filtered view is recomputed from it on every query change. Sections
    are ordered by catalog name so that row positions are stable between
    renders.
    """

    def __init__(
        self,
        *,
        fetcher: SourceFetcher | None = None,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        include_empty_sections: bool = True,
    ) -> None:
        self._fetcher = fetcher
        self._max_parallel = max_parallel
        self._timeout_seconds = timeout_seconds
        self._include_empty_sections = include_empty_sections
        self._result = AggregationResult()
        self._query = ""
        self._filtered: FilteredIndex = {}
        self._sections: list[tuple[Catalog, list[App]]] = []
        self._refresh_generation = 0
        self._refreshes_in_flight = 0

    @property
    def result(self) -> AggregationResult:
        return self._result

    @property
    def query(self) -> str:
        return self._query

    @property
    def filtered_index(self) -> FilteredIndex:
        return self._filtered

    @property
    def is_refreshing(self) -> bool:
        return self._refreshes_in_flight > 0

    async def refresh(self, endpoints: Iterable[SourceEndpoint]) -> bool:
        """Reload every endpoint and publish the result.

        Returns ``False`` when a newer refresh was triggered while this one
        was in flight; its result is then discarded.
        """
        self._refresh_generation += 1
        generation = self._refresh_generation
        self._refreshes_in_flight += 1
        try:
            result = await refresh_sources(
                endpoints,
                fetcher=self._fetcher,
                max_parallel=self._max_parallel,
                timeout_seconds=self._timeout_seconds,
            )
        finally:
            self._refreshes_in_flight -= 1

        if generation != self._refresh_generation:
            logger.info("Discarding results of superseded refresh #%d", generation)
            return False

        self.publish(result)
        return True

    def publish(self, result: AggregationResult) -> None:
        self._result = result
        self._apply_filter()

    def on_query_changed(self, text: str) -> None:
        self._query = text
        self._apply_filter()

    def _apply_filter(self) -> None:
        self._filtered = filter_index(self._result.index, self._query)
        reverse_lookup = self._result.reverse_lookup
        # Empty sections are only hidden while a query narrows the list.
        keep_empty = self._include_empty_sections or not self.has_active_query()
        self._sections = sorted(
            (
                (catalog, apps)
                for catalog, apps in self._filtered.items()
                if apps or keep_empty
            ),
            key=lambda item: catalog_sort_key(item[0], reverse_lookup.get(item[0])),
        )

    def has_active_query(self) -> bool:
        return bool(normalize_query(self._query))

    def sections(self) -> list[tuple[Catalog, list[App]]]:
        return list(self._sections)

    def section_count(self) -> int:
        return len(self._sections)

    def row_count(self, section_index: int) -> int:
        return len(self._sections[section_index][1])

    def entry_at(self, section_index: int, row_index: int) -> tuple[Catalog, App]:
        catalog, apps = self._sections[section_index]
        return catalog, apps[row_index]

    def endpoint_for(self, catalog: Catalog) -> SourceEndpoint | None:
        return self._result.reverse_lookup.get(catalog)

    def match_count(self) -> int:
        return sum(len(apps) for _, apps in self._sections)
