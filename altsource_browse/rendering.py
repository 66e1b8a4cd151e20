from __future__ import annotations

import textwrap
from collections.abc import Callable, Sequence
from typing import Any

from rich.markup import escape
from rich.table import Table

from altsource_browse.models import App, Catalog, SourceEndpoint

OTHER_VERSIONS_PREVIEW_COUNT = 4


def format_detail_row(label: str, value: str) -> str:
    return f"{label:<20}{value}"


def format_value(value: Any) -> str:
    if value is None:
        return "not available"
    return escape(str(value))


def format_byte_size(value: Any) -> str:
    if value is None:
        return "not available"
    if not isinstance(value, int) or value < 0:
        return format_value(value)

    units = ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]
    size = float(value)
    unit = units[0]
    for candidate in units:
        unit = candidate
        if size < 1024.0 or candidate == units[-1]:
            break
        size /= 1024.0

    if unit == "B":
        return f"{value:,} B"
    return f"{size:.1f} {unit} ({value:,} bytes)"


def render_kv_box(rows: list[tuple[str, str]], width: int) -> list[str]:
    if not rows:
        return []
    label_width = max(len(label) for label, _ in rows)
    inner_width = max(30, width - 2)
    value_width = max(10, inner_width - label_width - 3)

    lines = ["╭" + ("─" * inner_width) + "╮"]
    for label, value in rows:
        wrapped = textwrap.wrap(value, width=value_width) or [""]
        lines.append(f"│ {label:<{label_width}} {wrapped[0]:<{value_width}} │")
        for continuation in wrapped[1:]:
            lines.append(f"│ {'':<{label_width}} {continuation:<{value_width}} │")
    lines.append("╰" + ("─" * inner_width) + "╯")
    return lines


def format_app_label(app: App, row_width: int) -> str:
    left = app.display_name
    right = app.display_version or ""
    if not right:
        return left
    if row_width <= len(left) + len(right) + 1:
        return f"{left} {right}"
    gap = row_width - len(left) - len(right)
    return f"{left}{' ' * gap}{right}"


def format_section_label(catalog: Catalog, match_count: int, *, collapsed: bool) -> str:
    marker = "▸" if collapsed else "▾"
    return f"{marker} {catalog.display_name} ({match_count})"


def render_catalog_preview(
    catalog: Catalog,
    endpoint: SourceEndpoint | None,
    *,
    match_count: int,
) -> str:
    total = len(catalog.apps)
    lines = [
        f"# {escape(catalog.display_name)}",
        "",
        format_detail_row("Identifier", format_value(catalog.identifier)),
        format_detail_row("Source", format_value(endpoint)),
        format_detail_row("Website", format_value(catalog.website)),
        format_detail_row("Icon", format_value(catalog.resolved_icon_url)),
        format_detail_row("Apps", f"{match_count:,} of {total:,} shown"),
        "",
        "Press Enter to collapse or expand.",
    ]
    return "\n".join(lines)


def render_app_details(
    catalog: Catalog,
    app: App,
    endpoint: SourceEndpoint | None,
    *,
    content_width: int,
) -> str:
    current = app.current_version
    size = app.size
    if current is not None and current.size is not None:
        size = current.size
    table_rows: list[tuple[str, str]] = [
        ("Name", format_value(app.name)),
        ("Bundle Identifier", format_value(app.bundle_identifier)),
        ("Channel", "beta" if app.is_beta else "stable"),
        ("Developer", format_value(app.developer_name)),
        ("Version", format_value(app.display_version)),
        ("Released", format_value(current.date if current is not None else None)),
        ("Size", format_byte_size(size)),
        ("Icon", format_value(app.icon_url)),
        ("Source", format_value(catalog.display_name)),
    ]

    description = (
        current.localized_description
        if current is not None and current.localized_description
        else None
    )
    lines = [f"# {escape(app.display_name)}"]
    if app.subtitle:
        lines.extend(["", escape(app.subtitle)])
    lines.extend(["", "App metadata:"])
    lines.extend(render_kv_box(table_rows, content_width))

    download_url = app.resolved_download_url
    lines.extend(["", "Download:"])
    if download_url:
        escaped_url = escape(download_url)
        link_target = escaped_url.replace('"', '\\"')
        lines.append(f'[link="{link_target}"]{escaped_url}[/link]')
    else:
        lines.append(" - not available")

    lines.extend(["", "Source URL:", format_value(endpoint)])

    if app.localized_description:
        lines.extend(["", "Description:", escape(app.localized_description)])
    if description:
        lines.extend(["", "What's new:", escape(description)])

    other_versions = app.versions[1:]
    lines.extend(["", f"Other Versions ({len(other_versions)}):"])
    for version in other_versions[:OTHER_VERSIONS_PREVIEW_COUNT]:
        date_text = f"  {version.date}" if version.date else ""
        lines.append(f" - {escape(version.version)}{escape(date_text)}")
    remaining = len(other_versions) - OTHER_VERSIONS_PREVIEW_COUNT
    if remaining > 0:
        lines.append(f"... and {remaining} more")

    return "\n".join(lines)


def build_results_table(
    sections: Sequence[tuple[Catalog, Sequence[App]]],
    *,
    endpoint_for: Callable[[Catalog], SourceEndpoint | None],
) -> Table:
    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("Source")
    table.add_column("App")
    table.add_column("Version")
    table.add_column("Developer")
    table.add_column("Bundle Identifier", style="dim")

    for catalog, apps in sections:
        endpoint = endpoint_for(catalog) or ""
        table.add_section()
        table.add_row(
            f"[bold]{escape(catalog.display_name)}[/bold]",
            f"[dim]{escape(endpoint)}[/dim]",
            "",
            "",
            "",
        )
        for app in apps:
            table.add_row(
                "",
                escape(app.display_name),
                escape(app.display_version or ""),
                escape(app.developer_name or ""),
                escape(app.bundle_identifier),
            )
    return table
