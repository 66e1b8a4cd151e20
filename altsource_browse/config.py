from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from altsource_browse.aggregation import (
    DEFAULT_MAX_PARALLEL,
    DEFAULT_TIMEOUT_SECONDS,
    normalize_endpoints,
)
from altsource_browse.errors import ConfigError
from altsource_browse.models import SourceEndpoint

SOURCES_FILE_ENVVAR = "ALTSOURCE_BROWSE_SOURCES_FILE"


def default_sources_path() -> Path:
    return Path.home() / ".config" / "altsource-browse" / "sources.json"


@dataclass(frozen=True)
class BrowseConfig:
    sources: tuple[SourceEndpoint, ...] = ()
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_parallel: int = DEFAULT_MAX_PARALLEL


def read_sources_file(path: Path) -> list[SourceEndpoint]:
    """Read endpoints from ``{"sources": [...]}`` or a bare JSON list."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read sources file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in sources file {path}: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("sources", [])
    if not isinstance(payload, list) or not all(
        isinstance(item, str) for item in payload
    ):
        raise ConfigError(
            f"Sources file {path} must contain a list of URLs "
            'or an object with a "sources" list.'
        )
    return payload


def load_config(
    *,
    sources: Iterable[SourceEndpoint] = (),
    sources_file: Path | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_parallel: int = DEFAULT_MAX_PARALLEL,
) -> BrowseConfig:
    if timeout_seconds <= 0:
        raise ConfigError("Timeout must be a positive number of seconds.")
    if max_parallel < 1:
        raise ConfigError("Max parallel fetches must be at least 1.")

    endpoints = list(sources)
    if sources_file is not None:
        endpoints.extend(read_sources_file(sources_file))
    else:
        default_path = default_sources_path()
        if default_path.is_file():
            endpoints.extend(read_sources_file(default_path))

    return BrowseConfig(
        sources=tuple(normalize_endpoints(endpoints)),
        timeout_seconds=timeout_seconds,
        max_parallel=max_parallel,
    )
