from __future__ import annotations

import json
from typing import Any

from altsource_browse.errors import DecodeError
from altsource_browse.models import App, AppVersion, Catalog


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _required_str(data: dict[str, Any], key: str, *, context: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise DecodeError(f"{context} is missing required field {key!r}")
    return value


def decode_app_version(data: Any) -> AppVersion | None:
    if isinstance(data, str):
        return AppVersion(version=data)
    if not isinstance(data, dict):
        return None
    version = _optional_str(data, "version")
    if version is None:
        return None
    return AppVersion(
        version=version,
        date=_optional_str(data, "date"),
        download_url=_optional_str(data, "downloadURL"),
        size=_optional_int(data, "size"),
        localized_description=_optional_str(data, "localizedDescription"),
    )


def decode_app(data: Any, *, position: int) -> App:
    context = f"app #{position}"
    if not isinstance(data, dict):
        raise DecodeError(f"{context} is not an object")

    raw_versions = data.get("versions")
    if raw_versions is None:
        raw_versions = []
    if not isinstance(raw_versions, list):
        raise DecodeError(f"{context} has a non-list 'versions' field")
    versions = tuple(
        version
        for version in (decode_app_version(item) for item in raw_versions)
        if version is not None
    )

    return App(
        name=_required_str(data, "name", context=context),
        bundle_identifier=_required_str(data, "bundleIdentifier", context=context),
        developer_name=_optional_str(data, "developerName"),
        subtitle=_optional_str(data, "subtitle"),
        localized_description=_optional_str(data, "localizedDescription"),
        version=_optional_str(data, "version"),
        versions=versions,
        icon_url=_optional_str(data, "iconURL"),
        download_url=_optional_str(data, "downloadURL"),
        size=_optional_int(data, "size"),
    )


def decode_catalog(data: bytes) -> Catalog:
    """Decode a source manifest, raising ``DecodeError`` on invalid content.

    Optional fields fall back to ``None`` (or an empty version list); a
    single malformed app invalidates the whole manifest.
    """
    try:
        payload = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
        raise DecodeError(f"invalid manifest: {exc}") from exc

    if not isinstance(payload, dict):
        raise DecodeError("manifest root is not an object")

    raw_apps = payload.get("apps")
    if raw_apps is None:
        raw_apps = []
    if not isinstance(raw_apps, list):
        raise DecodeError("manifest 'apps' field is not a list")

    return Catalog(
        name=_optional_str(payload, "name"),
        identifier=_optional_str(payload, "identifier"),
        icon_url=_optional_str(payload, "iconURL"),
        website=_optional_str(payload, "website"),
        apps=tuple(
            decode_app(item, position=position)
            for position, item in enumerate(raw_apps)
        ),
    )
