from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

BETA_BUNDLE_SUFFIX = "Beta"
UNKNOWN_NAME = "Unknown"

SourceEndpoint = str
ResultRowKind = Literal["section", "entry", "empty"]


@dataclass(frozen=True)
class AppVersion:
    version: str
    date: str | None = None
    download_url: str | None = None
    size: int | None = None
    localized_description: str | None = None


@dataclass(frozen=True)
class App:
    name: str
    bundle_identifier: str
    developer_name: str | None = None
    subtitle: str | None = None
    localized_description: str | None = None
    version: str | None = None
    versions: tuple[AppVersion, ...] = ()
    icon_url: str | None = None
    download_url: str | None = None
    size: int | None = None

    @property
    def is_beta(self) -> bool:
        return self.bundle_identifier.endswith(BETA_BUNDLE_SUFFIX)

    @property
    def display_name(self) -> str:
        if self.is_beta:
            return f"{self.name} (Beta)"
        return self.name

    @property
    def current_version(self) -> AppVersion | None:
        return self.versions[0] if self.versions else None

    @property
    def display_version(self) -> str | None:
        """Version shown next to the app; ``versions[0]`` wins over ``version``."""
        current = self.current_version
        if current is not None:
            return current.version
        return self.version

    @property
    def resolved_download_url(self) -> str | None:
        current = self.current_version
        if current is not None and current.download_url:
            return current.download_url
        return self.download_url


@dataclass(frozen=True)
class Catalog:
    """A decoded source manifest.

    Catalogs compare and hash by value, nested apps included, so two
    byte-identical manifests collapse to the same mapping key while any
    difference in content yields a distinct one.
    """

    name: str | None = None
    identifier: str | None = None
    icon_url: str | None = None
    website: str | None = None
    apps: tuple[App, ...] = field(default=())

    @property
    def display_name(self) -> str:
        return self.name or UNKNOWN_NAME

    @property
    def resolved_icon_url(self) -> str | None:
        if self.icon_url:
            return self.icon_url
        if self.apps:
            return self.apps[0].icon_url
        return None


AggregatedIndex = dict[Catalog, list[App]]
ReverseLookup = dict[Catalog, SourceEndpoint]
FilteredIndex = dict[Catalog, list[App]]


@dataclass(frozen=True)
class SourceFailure:
    endpoint: SourceEndpoint
    error: Exception


@dataclass(frozen=True)
class AggregationResult:
    index: AggregatedIndex = field(default_factory=dict)
    reverse_lookup: ReverseLookup = field(default_factory=dict)
    failures: tuple[SourceFailure, ...] = ()

    @property
    def app_count(self) -> int:
        return sum(len(apps) for apps in self.index.values())


@dataclass(frozen=True)
class ResultRow:
    kind: ResultRowKind
    catalog: Catalog | None = None
    app: App | None = None
