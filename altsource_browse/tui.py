from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import unquote, urlparse

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import Key, Paste, Resize
from textual.widgets import OptionList, Static

from altsource_browse.aggregation import DEFAULT_MAX_PARALLEL, DEFAULT_TIMEOUT_SECONDS
from altsource_browse.fetching import download_url_to_path
from altsource_browse.models import App as CatalogApp
from altsource_browse.models import Catalog, ResultRow, SourceEndpoint
from altsource_browse.rendering import (
    format_app_label,
    format_section_label,
    render_app_details,
    render_catalog_preview,
)
from altsource_browse.session import SearchSession

logger = logging.getLogger(__name__)


class SourceSearchTui(App[None]):
    CSS_PATH = "source_search.tcss"
    ENABLE_COMMAND_PALETTE = False
    DOWNLOAD_TIMEOUT_SECONDS = 120.0
    BINDINGS = [
        Binding("f", "filter_key_f", "Filter"),
        Binding("r", "refresh_key_r", "Refresh"),
        Binding("d", "download_key_d", "Download"),
        Binding("slash", "filter_key_slash", show=False),
        Binding("escape", "escape", "Back", show=False),
        Binding("q", "quit_or_type_q", "Quit"),
        Binding("ctrl+c", "quit", show=False),
    ]

    def __init__(
        self,
        *,
        sources: Iterable[SourceEndpoint] = (),
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        initial_query: str = "",
        session: SearchSession | None = None,
    ) -> None:
        super().__init__()
        self.theme = "rose-pine"
        self._source_endpoints: list[SourceEndpoint] = list(sources)
        self._search_session = session or SearchSession(
            max_parallel=max_parallel,
            timeout_seconds=timeout_seconds,
            include_empty_sections=False,
        )
        self._search_query = initial_query
        self._filter_mode = bool(initial_query.strip())
        self._result_rows: list[ResultRow] = []
        self._collapsed_catalogs: set[Catalog] = set()
        self._source_refresh_active = False
        self._download_indicator_override: str | None = None
        self._download_in_progress = False

    def compose(self) -> ComposeResult:
        with Horizontal(id="body"):
            with Vertical(id="sidebar"):
                yield Static("Sources", id="sidebar-title")
                yield OptionList(id="sidebar-list")
                yield Static("Loading sources...", id="status")
            with Vertical(id="main-panel"):
                yield Static(
                    "Main panel placeholder.\n\nSelect an app in the sidebar.",
                    id="main-placeholder",
                )

    async def on_mount(self) -> None:
        result_list = self.query_one("#sidebar-list", OptionList)
        result_list.disabled = True
        result_list.focus()
        self._update_filter_indicator()
        self._request_refresh()

    def _request_refresh(self) -> None:
        self.run_worker(
            self._refresh_sources(),
            group="source-refresh",
            exclusive=False,
            exit_on_error=False,
        )

    async def _refresh_sources(self) -> bool:
        status = self.query_one("#status", Static)
        if not self._source_endpoints:
            status.update("No sources configured. Pass --source or --sources-file.")
            return False

        self._source_refresh_active = True
        self._update_filter_indicator()
        status.update(f"Fetching {len(self._source_endpoints)} source(s)...")
        try:
            applied = await self._search_session.refresh(self._source_endpoints)
        finally:
            self._source_refresh_active = self._search_session.is_refreshing
            self._update_filter_indicator()

        if not applied:
            return False

        self._search_session.on_query_changed(self._active_query())
        present = set(self._search_session.result.index)
        self._collapsed_catalogs &= present
        self._render_result_options()

        result_list = self.query_one("#sidebar-list", OptionList)
        result_list.disabled = False
        result_list.focus()
        self._update_results_status()
        self._show_highlighted_preview()

        failures = self._search_session.result.failures
        if failures:
            self.notify(
                "\n".join(str(failure.error) for failure in failures),
                title=f"{len(failures)} source(s) failed",
                severity="warning",
            )
        return True

    def _active_query(self) -> str:
        return self._search_query if self._filter_mode else ""

    def _row_width(self) -> int:
        result_list = self.query_one("#sidebar-list", OptionList)
        return max(16, result_list.size.width - 4)

    def _build_rows(self) -> list[ResultRow]:
        rows: list[ResultRow] = []
        for catalog, apps in self._search_session.sections():
            rows.append(ResultRow(kind="section", catalog=catalog))
            if catalog in self._collapsed_catalogs:
                continue
            rows.extend(
                ResultRow(kind="entry", catalog=catalog, app=app) for app in apps
            )
        return rows

    def _section_match_count(self, catalog: Catalog) -> int:
        return len(self._search_session.filtered_index.get(catalog, []))

    def _row_label(self, row: ResultRow, row_width: int) -> str:
        if row.kind == "section" and row.catalog is not None:
            return format_section_label(
                row.catalog,
                self._section_match_count(row.catalog),
                collapsed=row.catalog in self._collapsed_catalogs,
            )
        if row.kind == "entry" and row.app is not None:
            return format_app_label(row.app, row_width)
        return "No apps found"

    def _render_result_options(self, *, preserve_position: bool = False) -> None:
        result_list = self.query_one("#sidebar-list", OptionList)
        previous_highlight = result_list.highlighted
        previous_scroll_y = result_list.scroll_y
        result_list.clear_options()

        self._result_rows = self._build_rows()
        if not self._result_rows:
            self._result_rows = [ResultRow(kind="empty")]

        row_width = self._row_width()
        result_list.add_options(
            [self._row_label(row, row_width) for row in self._result_rows]
        )
        if preserve_position and previous_highlight is not None:
            result_list.highlighted = min(
                previous_highlight, len(self._result_rows) - 1
            )
            result_list.scroll_to(y=previous_scroll_y, animate=False)
        else:
            result_list.action_first()

    def _find_section_index(self, catalog: Catalog) -> int | None:
        for index, row in enumerate(self._result_rows):
            if row.kind == "section" and row.catalog == catalog:
                return index
        return None

    def _toggle_section(self, catalog: Catalog) -> None:
        if catalog in self._collapsed_catalogs:
            self._collapsed_catalogs.remove(catalog)
        else:
            self._collapsed_catalogs.add(catalog)

        result_list = self.query_one("#sidebar-list", OptionList)
        previous_scroll_y = result_list.scroll_y
        self._render_result_options()
        section_index = self._find_section_index(catalog)
        if section_index is not None:
            result_list.highlighted = section_index
            result_list.scroll_to(y=previous_scroll_y, animate=False)

    def _update_results_status(self) -> None:
        message = (
            f"{self._search_session.match_count():,} apps across "
            f"{self._search_session.section_count()} source(s)."
        )
        failures = self._search_session.result.failures
        if failures:
            message += f" {len(failures)} source(s) failed."
        self.query_one("#status", Static).update(message)

    def _main_panel_content_width(self) -> int:
        main_panel = self.query_one("#main-panel", Vertical)
        if main_panel.size.width <= 0:
            return 90
        return max(50, main_panel.size.width - 6)

    def _highlighted_row(self) -> ResultRow | None:
        result_list = self.query_one("#sidebar-list", OptionList)
        highlighted = result_list.highlighted
        if (
            highlighted is None
            or highlighted < 0
            or highlighted >= len(self._result_rows)
        ):
            return None
        return self._result_rows[highlighted]

    def _render_row_preview(self, row: ResultRow) -> str:
        if row.kind == "section" and row.catalog is not None:
            return render_catalog_preview(
                row.catalog,
                self._search_session.endpoint_for(row.catalog),
                match_count=self._section_match_count(row.catalog),
            )
        if row.kind == "entry" and row.catalog is not None and row.app is not None:
            return render_app_details(
                row.catalog,
                row.app,
                self._search_session.endpoint_for(row.catalog),
                content_width=self._main_panel_content_width(),
            )
        if self._search_session.has_active_query():
            return "No apps match the current filter."
        return "No apps available from the configured sources."

    def _show_row_preview(self, row: ResultRow) -> None:
        self.query_one("#main-placeholder", Static).update(
            self._render_row_preview(row)
        )
        self._update_download_indicator()

    def _show_highlighted_preview(self) -> None:
        row = self._highlighted_row()
        if row is not None:
            self._show_row_preview(row)

    def _apply_query(self) -> None:
        self._search_session.on_query_changed(self._active_query())
        self._render_result_options()
        self._update_results_status()
        self._show_highlighted_preview()

    @staticmethod
    def _download_url_to_path(
        url: str, destination: Path, *, timeout_seconds: float
    ) -> None:
        download_url_to_path(url, destination, timeout_seconds=timeout_seconds)

    @staticmethod
    def _download_file_name(app: CatalogApp, url: str) -> str:
        file_name = Path(unquote(urlparse(url).path)).name
        if file_name:
            return file_name
        return f"{app.bundle_identifier}.ipa"

    async def _download_app(self, app: CatalogApp, url: str) -> None:
        file_name = self._download_file_name(app, url)
        self._download_in_progress = True
        self._set_download_indicator(f"Downloading {file_name}...")

        destination = (Path.cwd() / file_name).resolve()
        temporary_destination = destination.with_name(f"{destination.name}.part")
        try:
            await asyncio.to_thread(
                self._download_url_to_path,
                url,
                temporary_destination,
                timeout_seconds=self.DOWNLOAD_TIMEOUT_SECONDS,
            )
            temporary_destination.replace(destination)
        except Exception as exc:
            temporary_destination.unlink(missing_ok=True)
            logger.warning("Download of %s failed: %s", url, exc)
            self.notify(
                f"Download failed for {file_name}: {exc!s}",
                title="Download",
                severity="error",
            )
            return
        finally:
            self._download_in_progress = False
            self._set_download_indicator(None)

        self.notify(
            f"Downloaded successfully to {destination}",
            title="Download",
        )

    def _request_download_for_highlighted_entry(self) -> None:
        if self._download_in_progress:
            return

        row = self._highlighted_row()
        if row is None or row.kind != "entry" or row.app is None:
            self.notify(
                "Select a specific app to download.",
                title="Download",
                severity="warning",
            )
            return

        url = row.app.resolved_download_url
        if not url:
            self.notify(
                f"{row.app.name} has no download URL.",
                title="Download",
                severity="warning",
            )
            return

        self._download_in_progress = True
        try:
            self.run_worker(
                self._download_app(row.app, url),
                group="app-download",
                exclusive=True,
                exit_on_error=False,
            )
        except Exception:
            self._download_in_progress = False
            raise

    def _filter_indicator_text(self) -> Text:
        indicator = Text()
        if self._filter_mode:
            indicator.append("f", style="bold red")
            indicator.append(f" {self._search_query}_", style="bold white")
        else:
            indicator.append("filter", style="dim")
            indicator.stylize("bold red", 0, 1)
        return indicator

    def _refresh_indicator_text(self) -> Text:
        if self._source_refresh_active:
            return Text("refreshing...", style="bold white")
        indicator = Text("refresh", style="dim")
        indicator.stylize("bold red", 0, 1)
        return indicator

    def _sources_indicator_text(self) -> Text:
        indicator = Text("sources", style="dim")
        loaded = len(self._search_session.result.index)
        indicator.append(f" {loaded}/{len(self._source_endpoints)}", style="bold white")
        return indicator

    def _download_indicator_text(self) -> Text:
        if self._download_indicator_override is not None:
            return Text(self._download_indicator_override)

        indicator = Text("download", style="dim")
        indicator.stylize("bold red", 0, 1)
        return indicator

    def _set_download_indicator(self, value: str | None) -> None:
        self._download_indicator_override = value
        self._update_download_indicator()

    def _update_download_indicator(self) -> None:
        main_panel = self.query_one("#main-panel", Vertical)
        main_panel.styles.border_title_align = "left"
        main_panel.border_title = self._sources_indicator_text()
        main_panel.styles.border_subtitle_align = "left"
        row = self._highlighted_row()
        if self._download_in_progress or (row is not None and row.kind == "entry"):
            main_panel.border_subtitle = self._download_indicator_text()
        else:
            main_panel.border_subtitle = ""

    def _update_filter_indicator(self) -> None:
        sidebar = self.query_one("#sidebar", Vertical)
        filter_indicator = self._filter_indicator_text()
        right_indicator = self._refresh_indicator_text()

        spacing = 1
        sidebar_width = sidebar.size.width
        if sidebar_width > 0:
            title_width = max(1, sidebar_width - 2)
            spacing = max(
                1,
                title_width - len(filter_indicator.plain) - len(right_indicator.plain),
            )

        sidebar.border_title = Text.assemble(
            filter_indicator, " " * spacing, right_indicator
        )
        sidebar.border_subtitle = ""
        self._update_download_indicator()

    def _set_filter_mode(self, enabled: bool, *, reset_query: bool) -> None:
        self._filter_mode = enabled
        if reset_query:
            self._search_query = ""
        self._apply_query()
        self._update_filter_indicator()

    def _append_filter_char(self, char: str) -> None:
        self._search_query += char
        self._apply_query()
        self._update_filter_indicator()

    def _handle_command_key(self, char: str) -> bool:
        """Type ``char`` into the filter when it is active; return True if consumed."""
        if not self._filter_mode:
            return False
        self._append_filter_char(char)
        return True

    def action_filter_key_f(self) -> None:
        if not self._filter_mode:
            self._set_filter_mode(True, reset_query=True)
            return

        self._append_filter_char("f")

    def action_filter_key_slash(self) -> None:
        if not self._filter_mode:
            self._set_filter_mode(True, reset_query=True)
            return

        self._append_filter_char("/")

    def action_refresh_key_r(self) -> None:
        if self._handle_command_key("r"):
            return
        self._request_refresh()

    def action_download_key_d(self) -> None:
        if self._handle_command_key("d"):
            return
        self._request_download_for_highlighted_entry()

    def action_quit_or_type_q(self) -> None:
        if self._handle_command_key("q"):
            return
        self.exit()

    def action_escape(self) -> None:
        if self._filter_mode:
            self._set_filter_mode(False, reset_query=True)

    def on_key(self, event: Key) -> None:
        if not self._filter_mode:
            return

        # These keys are handled by explicit bindings to avoid duplicate input.
        if event.key in {"f", "r", "d", "slash", "q"}:
            return

        if event.key == "backspace":
            self._search_query = self._search_query[:-1]
            self._apply_query()
            self._update_filter_indicator()
            event.stop()
            return

        if event.key == "space":
            self._append_filter_char(" ")
            event.stop()
            return

        if event.character and event.character.isprintable():
            self._append_filter_char(event.character)
            event.stop()
            return

    def on_paste(self, event: Paste) -> None:
        if not self._filter_mode:
            return
        sanitized = event.text.replace("\r", "").replace("\n", "")
        if not sanitized:
            return
        self._append_filter_char(sanitized)
        event.stop()

    def on_resize(self, event: Resize) -> None:
        del event
        self._update_filter_indicator()
        self.call_after_refresh(self._refresh_after_resize)

    def _refresh_after_resize(self) -> None:
        self._update_filter_indicator()
        self._render_result_options(preserve_position=True)
        # App details include width-dependent formatting.
        self._show_highlighted_preview()

    def on_option_list_option_highlighted(
        self, event: OptionList.OptionHighlighted
    ) -> None:
        if event.option_list.id != "sidebar-list":
            return
        if event.option_index < 0 or event.option_index >= len(self._result_rows):
            return
        self._show_row_preview(self._result_rows[event.option_index])

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        if event.option_list.id != "sidebar-list":
            return
        if event.option_index < 0 or event.option_index >= len(self._result_rows):
            return

        row = self._result_rows[event.option_index]
        if row.kind == "section" and row.catalog is not None:
            self._toggle_section(row.catalog)
            self._update_results_status()
            return

        if row.kind == "entry":
            self._show_row_preview(row)
