from __future__ import annotations

import asyncio
import http.client
import shutil
import urllib.error
import urllib.request
from pathlib import Path

from altsource_browse import __version__
from altsource_browse.errors import FetchError

USER_AGENT = f"altsource-browse/{__version__}"


def _build_request(url: str) -> urllib.request.Request:
    return urllib.request.Request(url, headers={"User-Agent": USER_AGENT})


def fetch_url_bytes(url: str, *, timeout_seconds: float) -> bytes:
    try:
        with urllib.request.urlopen(  # noqa: S310
            _build_request(url),
            timeout=timeout_seconds,
        ) as response:
            status = getattr(response, "status", 200)
            if status is not None and not 200 <= status < 300:
                raise FetchError(f"unexpected HTTP status {status}", endpoint=url)
            return response.read()
    except urllib.error.HTTPError as exc:
        raise FetchError(f"HTTP {exc.code} {exc.reason}", endpoint=url) from exc
    except urllib.error.URLError as exc:
        raise FetchError(f"unreachable: {exc.reason}", endpoint=url) from exc
    except http.client.HTTPException as exc:
        raise FetchError(
            f"invalid HTTP response: {exc!s} ({type(exc).__name__})", endpoint=url
        ) from exc
    except TimeoutError as exc:
        raise FetchError(
            f"timed out after {timeout_seconds:g}s", endpoint=url
        ) from exc
    except (OSError, ValueError) as exc:
        raise FetchError(str(exc) or type(exc).__name__, endpoint=url) from exc


async def fetch_source(endpoint: str, *, timeout_seconds: float) -> bytes:
    return await asyncio.to_thread(
        fetch_url_bytes,
        endpoint,
        timeout_seconds=timeout_seconds,
    )


def download_url_to_path(
    url: str, destination: Path, *, timeout_seconds: float
) -> None:
    with (
        urllib.request.urlopen(  # noqa: S310
            _build_request(url),
            timeout=timeout_seconds,
        ) as response,
        destination.open("wb") as handle,
    ):
        shutil.copyfileobj(response, handle)
