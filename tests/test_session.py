import asyncio

import pytest
from manifests import manifest_bytes

from altsource_browse.errors import FetchError
from altsource_browse.models import AggregationResult, App, Catalog
from altsource_browse.session import SearchSession

ENDPOINT_A = "https://a.example.invalid/source.json"
ENDPOINT_B = "https://b.example.invalid/source.json"


def _session_with(result: AggregationResult, **kwargs) -> SearchSession:
    session = SearchSession(**kwargs)
    session.publish(result)
    return session


def _catalog(name: str, *app_names: str) -> Catalog:
    return Catalog(
        name=name,
        apps=tuple(
            App(name=app_name, bundle_identifier=f"com.x.{app_name.lower()}")
            for app_name in app_names
        ),
    )


def _result(*catalogs: Catalog) -> AggregationResult:
    return AggregationResult(
        index={catalog: list(catalog.apps) for catalog in catalogs},
        reverse_lookup={
            catalog: f"https://{catalog.display_name.lower()}.example.invalid"
            for catalog in catalogs
        },
    )


def test_sections_are_sorted_by_catalog_name() -> None:
    zeta = _catalog("zeta", "Z1")
    alpha = _catalog("Alpha", "A1", "A2")
    unnamed = _catalog(None, "U1")  # type: ignore[arg-type]
    session = _session_with(_result(zeta, unnamed, alpha))

    assert [catalog.display_name for catalog, _ in session.sections()] == [
        "Alpha",
        "Unknown",
        "zeta",
    ]
    assert session.section_count() == 3
    assert session.row_count(0) == 2
    assert session.entry_at(0, 1) == (alpha, alpha.apps[1])


def test_endpoint_for_uses_reverse_lookup() -> None:
    repo = _catalog("Repo1", "Alpha")
    session = _session_with(_result(repo))

    assert session.endpoint_for(repo) == "https://repo1.example.invalid"
    assert session.endpoint_for(_catalog("Other")) is None


def test_query_change_recomputes_sections() -> None:
    repo1 = _catalog("Repo1", "Alpha", "Beta")
    repo2 = _catalog("Repo2", "Gamma")
    session = _session_with(_result(repo1, repo2))

    session.on_query_changed("alp")

    assert session.filtered_index == {repo1: [repo1.apps[0]], repo2: []}
    assert session.section_count() == 2
    assert session.row_count(1) == 0
    assert session.match_count() == 1
    assert session.has_active_query() is True

    session.on_query_changed("  ")

    assert session.match_count() == 3
    assert session.has_active_query() is False


def test_empty_sections_can_be_omitted() -> None:
    repo1 = _catalog("Repo1", "Alpha")
    repo2 = _catalog("Repo2", "Gamma")
    session = _session_with(_result(repo1, repo2), include_empty_sections=False)

    session.on_query_changed("gam")

    assert session.sections() == [(repo2, [repo2.apps[0]])]
    assert session.filtered_index[repo1] == []


def test_empty_catalogs_are_listed_while_no_query_is_active() -> None:
    empty = _catalog("Empty")
    repo1 = _catalog("Repo1", "Alpha")
    session = _session_with(_result(empty, repo1), include_empty_sections=False)

    assert session.sections() == [(empty, []), (repo1, [repo1.apps[0]])]

    session.on_query_changed("alp")
    assert session.sections() == [(repo1, [repo1.apps[0]])]

    session.on_query_changed("   ")
    assert session.section_count() == 2
    assert session.row_count(0) == 0


def test_publish_replaces_previous_result_and_keeps_query() -> None:
    old = _catalog("Old", "Alpha")
    new = _catalog("New", "Alpine", "Other")
    session = _session_with(_result(old))
    session.on_query_changed("alp")

    session.publish(_result(new))

    assert list(session.filtered_index) == [new]
    assert session.filtered_index[new] == [new.apps[0]]
    assert session.endpoint_for(old) is None


def test_refresh_publishes_aggregated_sources() -> None:
    async def _fetch(endpoint: str) -> bytes:
        if endpoint == ENDPOINT_B:
            raise FetchError("unreachable", endpoint=endpoint)
        return manifest_bytes(
            "Repo1", [{"name": "Alpha", "bundleIdentifier": "com.x.alphaBeta"}]
        )

    session = SearchSession(fetcher=_fetch)
    session.on_query_changed("zzz")

    applied = asyncio.run(session.refresh([ENDPOINT_A, ENDPOINT_B]))

    assert applied is True
    assert session.section_count() == 1
    catalog, apps = session.sections()[0]
    assert catalog.name == "Repo1"
    assert apps == []
    assert session.endpoint_for(catalog) == ENDPOINT_A
    assert len(session.result.failures) == 1

    session.on_query_changed("alp")
    assert session.entry_at(0, 0)[1].display_name == "Alpha (Beta)"


def test_superseded_refresh_is_discarded() -> None:
    started: dict[str, asyncio.Event] = {}
    release: dict[str, asyncio.Event] = {}

    async def _fetch(endpoint: str) -> bytes:
        started[endpoint].set()
        await release[endpoint].wait()
        return manifest_bytes(endpoint, [])

    async def _scenario(session: SearchSession) -> tuple[bool, bool]:
        for endpoint in (ENDPOINT_A, ENDPOINT_B):
            started[endpoint] = asyncio.Event()
            release[endpoint] = asyncio.Event()

        first = asyncio.create_task(session.refresh([ENDPOINT_A]))
        await started[ENDPOINT_A].wait()
        second = asyncio.create_task(session.refresh([ENDPOINT_B]))
        await started[ENDPOINT_B].wait()
        assert session.is_refreshing is True

        release[ENDPOINT_B].set()
        second_applied = await second
        release[ENDPOINT_A].set()
        first_applied = await first
        return first_applied, second_applied

    session = SearchSession(fetcher=_fetch)
    first_applied, second_applied = asyncio.run(_scenario(session))

    assert (first_applied, second_applied) == (False, True)
    assert [catalog.name for catalog in session.result.index] == [ENDPOINT_B]
    assert session.is_refreshing is False


def test_entry_at_out_of_range_raises() -> None:
    session = _session_with(_result(_catalog("Repo1", "Alpha")))

    with pytest.raises(IndexError):
        session.entry_at(0, 5)
