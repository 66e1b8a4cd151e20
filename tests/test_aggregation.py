import asyncio
import logging

from altsource_browse.aggregation import refresh_sources
from altsource_browse.errors import DecodeError, FetchError
from altsource_browse.models import App, Catalog
from manifests import manifest_bytes

ENDPOINT_A = "https://a.example.invalid/source.json"
ENDPOINT_B = "https://b.example.invalid/source.json"
ENDPOINT_C = "https://c.example.invalid/source.json"


def _fake_fetcher(
    responses: dict[str, bytes | Exception],
    *,
    delays: dict[str, float] | None = None,
    calls: list[str] | None = None,
):
    async def _fetch(endpoint: str) -> bytes:
        if calls is not None:
            calls.append(endpoint)
        await asyncio.sleep((delays or {}).get(endpoint, 0))
        response = responses[endpoint]
        if isinstance(response, Exception):
            raise response
        return response

    return _fetch


def test_refresh_with_one_failing_source_keeps_the_other(repo1_manifest) -> None:
    fetcher = _fake_fetcher(
        {
            ENDPOINT_A: repo1_manifest,
            ENDPOINT_B: FetchError("connection refused", endpoint=ENDPOINT_B),
        }
    )

    result = asyncio.run(refresh_sources({ENDPOINT_A, ENDPOINT_B}, fetcher=fetcher))

    assert len(result.index) == 1
    (catalog,) = result.index
    assert catalog.name == "Repo1"
    assert result.index[catalog] == [
        App(name="Alpha", bundle_identifier="com.x.alphaBeta")
    ]
    assert result.reverse_lookup == {catalog: ENDPOINT_A}
    assert [failure.endpoint for failure in result.failures] == [ENDPOINT_B]
    assert isinstance(result.failures[0].error, FetchError)


def test_refresh_result_does_not_depend_on_completion_order() -> None:
    responses: dict[str, bytes | Exception] = {
        ENDPOINT_A: manifest_bytes("Zeta", [{"name": "Z1", "bundleIdentifier": "z"}]),
        ENDPOINT_B: manifest_bytes("alpha", [{"name": "A1", "bundleIdentifier": "a"}]),
        ENDPOINT_C: manifest_bytes("Mid", [{"name": "M1", "bundleIdentifier": "m"}]),
    }
    fast_first = _fake_fetcher(
        responses, delays={ENDPOINT_A: 0.0, ENDPOINT_B: 0.02, ENDPOINT_C: 0.04}
    )
    slow_first = _fake_fetcher(
        responses, delays={ENDPOINT_A: 0.04, ENDPOINT_B: 0.02, ENDPOINT_C: 0.0}
    )

    first = asyncio.run(refresh_sources(list(responses), fetcher=fast_first))
    second = asyncio.run(refresh_sources(reversed(list(responses)), fetcher=slow_first))

    assert first.index == second.index
    assert first.reverse_lookup == second.reverse_lookup
    assert list(first.index) == list(second.index)
    assert [catalog.name for catalog in first.index] == ["alpha", "Mid", "Zeta"]


def test_refresh_completes_when_every_source_fails() -> None:
    fetcher = _fake_fetcher(
        {
            ENDPOINT_A: FetchError("timed out", endpoint=ENDPOINT_A),
            ENDPOINT_B: b"<html>not a manifest</html>",
        }
    )

    result = asyncio.run(refresh_sources([ENDPOINT_A, ENDPOINT_B], fetcher=fetcher))

    assert result.index == {}
    assert result.reverse_lookup == {}
    assert [type(failure.error) for failure in result.failures] == [
        FetchError,
        DecodeError,
    ]
    assert result.failures[1].error.endpoint == ENDPOINT_B


def test_refresh_isolates_unexpected_fetcher_errors(repo1_manifest) -> None:
    fetcher = _fake_fetcher(
        {
            ENDPOINT_A: repo1_manifest,
            ENDPOINT_B: RuntimeError("protocol violation"),
        }
    )

    result = asyncio.run(refresh_sources([ENDPOINT_A, ENDPOINT_B], fetcher=fetcher))

    assert [catalog.name for catalog in result.index] == ["Repo1"]
    (failure,) = result.failures
    assert failure.endpoint == ENDPOINT_B
    assert isinstance(failure.error, FetchError)
    assert failure.error.endpoint == ENDPOINT_B
    assert isinstance(failure.error.__cause__, RuntimeError)


def test_refresh_isolates_deeply_nested_manifest(repo1_manifest) -> None:
    fetcher = _fake_fetcher(
        {
            ENDPOINT_A: repo1_manifest,
            ENDPOINT_B: b"[" * 200_000 + b"]" * 200_000,
        }
    )

    result = asyncio.run(refresh_sources([ENDPOINT_A, ENDPOINT_B], fetcher=fetcher))

    assert [catalog.name for catalog in result.index] == ["Repo1"]
    assert [type(failure.error) for failure in result.failures] == [DecodeError]


def test_refresh_with_no_endpoints_returns_empty_result() -> None:
    calls: list[str] = []
    fetcher = _fake_fetcher({}, calls=calls)

    result = asyncio.run(refresh_sources([], fetcher=fetcher))

    assert result.index == {}
    assert result.reverse_lookup == {}
    assert result.failures == ()
    assert calls == []


def test_refresh_excludes_source_with_invalid_app(repo1_manifest) -> None:
    broken = manifest_bytes(
        "Broken",
        [
            {"name": "Good", "bundleIdentifier": "com.x.good"},
            {"name": "Missing identifier"},
        ],
    )
    fetcher = _fake_fetcher({ENDPOINT_A: repo1_manifest, ENDPOINT_B: broken})

    result = asyncio.run(refresh_sources([ENDPOINT_A, ENDPOINT_B], fetcher=fetcher))

    assert [catalog.name for catalog in result.index] == ["Repo1"]
    assert [failure.endpoint for failure in result.failures] == [ENDPOINT_B]


def test_refresh_deduplicates_endpoints_and_ignores_blanks(repo1_manifest) -> None:
    calls: list[str] = []
    fetcher = _fake_fetcher({ENDPOINT_A: repo1_manifest}, calls=calls)

    asyncio.run(
        refresh_sources([ENDPOINT_A, f" {ENDPOINT_A} ", "", "  "], fetcher=fetcher)
    )

    assert calls == [ENDPOINT_A]


def test_identical_catalogs_from_two_endpoints_collapse(repo1_manifest) -> None:
    fetcher = _fake_fetcher({ENDPOINT_B: repo1_manifest, ENDPOINT_A: repo1_manifest})

    result = asyncio.run(refresh_sources([ENDPOINT_B, ENDPOINT_A], fetcher=fetcher))

    assert len(result.index) == 1
    assert list(result.reverse_lookup.values()) == [ENDPOINT_A]


def test_refresh_limits_parallel_fetches() -> None:
    active = 0
    peak = 0

    async def _fetch(endpoint: str) -> bytes:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return manifest_bytes(endpoint, [])

    endpoints = [f"https://{index}.example.invalid/source.json" for index in range(6)]
    result = asyncio.run(refresh_sources(endpoints, fetcher=_fetch, max_parallel=2))

    assert len(result.index) == 6
    assert peak == 2


def test_refresh_logs_failed_sources(caplog) -> None:
    fetcher = _fake_fetcher(
        {ENDPOINT_A: FetchError("HTTP 404 Not Found", endpoint=ENDPOINT_A)}
    )

    with caplog.at_level(logging.WARNING, logger="altsource_browse.aggregation"):
        asyncio.run(refresh_sources([ENDPOINT_A], fetcher=fetcher))

    assert any(
        "Skipping source" in record.getMessage() and ENDPOINT_A in record.getMessage()
        for record in caplog.records
    )


def test_refreshed_source_with_changed_content_is_a_new_key() -> None:
    first = _fake_fetcher(
        {ENDPOINT_A: manifest_bytes("R", [{"name": "A", "bundleIdentifier": "a"}])}
    )
    second = _fake_fetcher(
        {ENDPOINT_A: manifest_bytes("R", [{"name": "A2", "bundleIdentifier": "a"}])}
    )

    before = asyncio.run(refresh_sources([ENDPOINT_A], fetcher=first))
    after = asyncio.run(refresh_sources([ENDPOINT_A], fetcher=second))

    assert set(before.index).isdisjoint(after.index)
    assert all(isinstance(catalog, Catalog) for catalog in after.index)
