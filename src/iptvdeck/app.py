"""Textual application implementing the IPTV panel console."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Sequence

try:
    from textual import on
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Horizontal, Vertical
    from textual.reactive import reactive
    from textual.screen import ModalScreen
    from textual.widgets import (
        Button,
        Footer,
        Header,
        Input,
        Label,
        ListItem,
        ListView,
        Select,
        Static,
        TabPane,
        TabbedContent,
    )
except ModuleNotFoundError as exc:  # pragma: no cover - dependency guard
    raise ModuleNotFoundError(
        "The 'textual' package is required to run iptvdeck. "
        "Install dependencies with 'pip install -e .[test]' or 'pip install iptvdeck'."
    ) from exc

from rich.markup import escape

from .api import ApiError, PanelClient, UserAccount
from .catalog import Channel
from .config import PanelConfig
from .log_viewer import LogViewer
from .logging_utils import detach_stream_handler, get_log_file_path, get_logger
from .playlist import format_grouped_listing
from .selection import SelectionError
from .session import PlaylistSession, SessionError
from .stats import StreamStatus, TelemetryPoller, TelemetrySnapshot, channel_id_for_stream

log = get_logger(__name__)


def _format_stream_line(status: StreamStatus, name: str) -> str:
    return (
        f"{escape(name)}: {status.client_count} viewer(s), "
        f"↓ {status.download_mbps:.2f} Mbps ↑ {status.upload_mbps:.2f} Mbps"
    )


class UserListItem(ListItem):
    """Render a subscriber in the user list."""

    def __init__(self, user: UserAccount) -> None:
        self.user = user
        label = f"{user.display_name} [{user.status_label()}]"
        super().__init__(Label(label, markup=False))


class GroupHeaderItem(ListItem):
    """Non-selectable header for one channel group."""

    def __init__(self, group: str, selected: int, total: int) -> None:
        self.group = group
        self._label = Label("", markup=True)
        super().__init__(self._label, disabled=True)
        self.update_counts(selected, total)

    def update_counts(self, selected: int, total: int) -> None:
        self._label.update(f"[b]{escape(self.group)}[/b]  {selected}/{total}")


class ChannelListItem(ListItem):
    """Render a channel with its selection and streaming markers."""

    def __init__(self, channel: Channel, *, selected: bool, streaming: bool) -> None:
        self.channel = channel
        self._selected = selected
        self._streaming = streaming
        self._label = Label("", markup=True)
        super().__init__(self._label)
        self._refresh_label()

    @property
    def selected(self) -> bool:
        return self._selected

    @property
    def streaming(self) -> bool:
        return self._streaming

    def set_selected(self, selected: bool) -> None:
        if self._selected == selected:
            return
        self._selected = selected
        self._refresh_label()

    def set_streaming(self, streaming: bool) -> None:
        if self._streaming == streaming:
            return
        self._streaming = streaming
        self._refresh_label()

    def _refresh_label(self) -> None:
        box = "[x]" if self._selected else "[ ]"
        live = " [green]● live[/green]" if self._streaming else ""
        self._label.update(f"{escape(box)} {escape(self.channel.name)}{live}")


class StatusBar(Static):
    """A simple status bar widget."""

    status: reactive[str] = reactive("Ready")

    def watch_status(self, status: str) -> None:
        self.update(status)


class BandwidthPanel(Static):
    """Aggregate bandwidth totals for every relayed stream."""

    def show_snapshot(self, snapshot: TelemetrySnapshot) -> None:
        labels = snapshot.summary.as_labels()
        self.update(
            "[b]Bandwidth[/b]\n"
            f"Download: {labels['download_mbps']} Mbps\n"
            f"Upload: {labels['upload_mbps']} Mbps\n"
            f"Total downloaded: {labels['download_mb']} MB\n"
            f"Total uploaded: {labels['upload_mb']} MB\n"
            f"Active streams: {snapshot.summary.active_streams}"
        )


class PlaylistListingModal(ModalScreen[None]):
    """Show the channels stored in a subscriber's generated playlist."""

    BINDINGS = [Binding("escape", "dismiss_modal", "Close")]

    def __init__(self, listing: str) -> None:
        super().__init__()
        self._listing = listing

    def compose(self) -> ComposeResult:
        with Vertical(id="listing-dialog"):
            yield Static(self._listing, id="listing-body", markup=False)
            yield Button("Close", id="listing-close", variant="primary")

    @on(Button.Pressed, "#listing-close")
    def _on_close(self, _: Button.Pressed) -> None:
        self.dismiss(None)

    def action_dismiss_modal(self) -> None:
        self.dismiss(None)


class DisabledChannelItem(ListItem):
    """A channel switched off on the backend; selecting it switches it back on."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel
        super().__init__(
            Label(f"{channel.name} ({channel.display_group})", markup=False)
        )


_INLINE_DEFAULT_CSS = """
#main-tabs {
    height: 1fr;
}

#generate-pane,
#bandwidth-pane,
#logs-pane {
    layout: vertical;
    height: 1fr;
    padding: 1;
}

#generate-browser {
    layout: horizontal;
    height: 1fr;
}

#user-column {
    width: 1fr;
    min-width: 30;
}

#channel-column {
    width: 2fr;
    min-width: 42;
}

#filters,
#selection-actions,
#generate-actions {
    layout: horizontal;
    height: auto;
}

#filters Input,
#filters Select {
    width: 1fr;
}

#user-list,
#channel-list,
#log-viewer,
#stream-list {
    height: 1fr;
}

#disabled-list {
    height: 6;
}

#user-info,
#catalog-summary,
#bandwidth-summary,
#log-file {
    padding: 0 1;
}

#bandwidth-summary,
#log-viewer {
    border: heavy $surface;
}

#listing-dialog {
    width: 80%;
    height: 80%;
    border: heavy $accent;
    padding: 1;
    overflow-y: auto;
}

StatusBar {
    padding: 0 1;
}
"""


class DeckApp(App[None]):
    """Main Textual application."""

    CSS = _INLINE_DEFAULT_CSS
    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("f1", "switch_tab('generate')", "Generate"),
        Binding("f2", "switch_tab('bandwidth')", "Bandwidth"),
        Binding("f3", "switch_tab('logs')", "Logs"),
        Binding("ctrl+r", "reload", "Reload"),
        Binding("ctrl+a", "select_visible", "Select visible"),
        Binding("ctrl+d", "deselect_all", "Deselect all"),
        Binding("ctrl+g", "select_category", "Select category"),
        Binding("ctrl+t", "toggle_channel_active", "Enable/disable channel"),
    ]

    def __init__(
        self,
        config: PanelConfig,
        *,
        client: Optional[PanelClient] = None,
        export_dir: Optional[Path] = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._client = client or PanelClient(
            config.base_url,
            timeout=config.request_timeout,
            user_agent=config.user_agent,
        )
        self._export_dir = export_dir or Path.cwd()
        self.session = PlaylistSession(self._client, display_limit=config.display_limit)
        self.poller = TelemetryPoller(
            self._client.fetch_stream_status,
            interval=config.poll_interval,
            on_update=self._apply_telemetry,
        )
        self.users: list[UserAccount] = []
        self._channel_items: dict[object, ChannelListItem] = {}
        self._group_headers: dict[str, GroupHeaderItem] = {}
        self._render_lock = asyncio.Lock()
        log.info(
            "DeckApp initialized for backend %s; exports go to %s",
            self._client.base_url,
            self._export_dir,
        )

    def compose(self) -> ComposeResult:
        yield Header()
        with TabbedContent(id="main-tabs"):
            with TabPane("Generate playlist", id="generate-tab"):
                with Vertical(id="generate-pane"):
                    with Horizontal(id="generate-browser"):
                        with Vertical(id="user-column"):
                            yield Label("Users")
                            yield ListView(id="user-list")
                            yield Static("Select a user to load channels.", id="user-info")
                        with Vertical(id="channel-column"):
                            with Horizontal(id="filters"):
                                yield Select(
                                    [], prompt="All categories", id="category-filter"
                                )
                                yield Input(placeholder="Search channels…", id="search")
                            yield Static("", id="catalog-summary")
                            yield ListView(id="channel-list")
                            with Horizontal(id="selection-actions"):
                                yield Button("Select visible", id="select-visible")
                                yield Button("Deselect all", id="deselect-all")
                                yield Button("Select category", id="select-category")
                            yield Label("Disabled channels")
                            yield ListView(id="disabled-list")
                    with Horizontal(id="generate-actions"):
                        yield Input(placeholder="Subscriber password", password=True, id="password")
                        yield Input(placeholder="playlist-<user>.m3u", id="filename")
                        yield Button("Export", id="export", variant="success")
                        yield Button("Save to server", id="publish", variant="primary")
                        yield Button("Stored playlist", id="view-stored")
            with TabPane("Bandwidth", id="bandwidth-tab"):
                with Vertical(id="bandwidth-pane"):
                    yield BandwidthPanel("", id="bandwidth-summary")
                    yield Static("No streams are currently active.", id="stream-list")
            with TabPane("Logs", id="logs-tab"):
                with Vertical(id="logs-pane"):
                    yield Static(self.log_file_label(), id="log-file", markup=False)
                    yield LogViewer(id="log-viewer")
        yield StatusBar(id="status")
        yield Footer()

    def on_mount(self) -> None:
        log.debug("Application mounted")
        detach_stream_handler()
        self.query_one(BandwidthPanel).show_snapshot(self.poller.snapshot)
        self.poller.start()
        self.run_worker(self._load_users(), name="users", exclusive=True, group="users")

    def on_unmount(self) -> None:
        self.poller.stop()
        self.session.close()

    @staticmethod
    def log_file_label() -> str:
        path = get_log_file_path()
        return f"Log file: {path}" if path is not None else "File logging is disabled"

    def _set_status(self, message: str) -> None:
        self.query_one(StatusBar).status = message

    def _report_error(self, message: str) -> None:
        log.error(message)
        self._set_status(message)
        self.notify(message, severity="error")

    # Loading

    async def _load_users(self) -> None:
        self._set_status("Loading users…")
        try:
            users = await self._client.list_users()
        except ApiError as exc:
            self._report_error(f"Failed to load users: {exc}")
            return
        self.users = users
        user_list = self.query_one("#user-list", ListView)
        await user_list.clear()
        await user_list.extend(UserListItem(user) for user in users)
        self._set_status(f"Loaded {len(users)} user(s)")

    async def _load_channels(self) -> None:
        self._set_status("Loading channels…")
        try:
            dropped = await self.session.load_channels()
        except ApiError as exc:
            self._report_error(f"Failed to load channels: {exc}")
            return
        if dropped:
            log.info("Removed %d selection(s) for deleted channels", len(dropped))
        await self._show_catalog()
        self._set_status(f"Loaded {len(self.session.catalog)} active channel(s)")

    async def _show_catalog(self) -> None:
        self._update_categories()
        await self._render_channels()
        await self._render_disabled()

    # Rendering

    def _update_categories(self) -> None:
        select = self.query_one("#category-filter", Select)
        current = select.value
        options = [
            (f"{name} ({count})", name) for name, count in self.session.catalog.categories()
        ]
        select.set_options(options)
        if isinstance(current, str) and any(value == current for _, value in options):
            select.value = current

    def _filter_values(self) -> tuple[str, str]:
        selected = self.query_one("#category-filter", Select).value
        category = selected if isinstance(selected, str) else ""
        search = self.query_one("#search", Input).value
        return category, search

    async def _render_channels(self) -> None:
        async with self._render_lock:
            category, search = self._filter_values()
            view = self.session.view(category, search)
            selection = self.session.selection
            snapshot = self.poller.snapshot
            items: list[ListItem] = []
            self._channel_items = {}
            self._group_headers = {}
            for group, members in view.groups:
                header = GroupHeaderItem(
                    group,
                    sum(1 for channel in members if channel.id in selection),
                    len(members),
                )
                self._group_headers[group] = header
                items.append(header)
                for channel in members:
                    item = ChannelListItem(
                        channel,
                        selected=channel.id in selection,
                        streaming=snapshot.is_streaming(channel.id),
                    )
                    self._channel_items[channel.id] = item
                    items.append(item)
            channel_list = self.query_one("#channel-list", ListView)
            await channel_list.clear()
            await channel_list.extend(items)
            self._refresh_summary(len(view), truncated=view.truncated)

    async def _render_disabled(self) -> None:
        disabled_list = self.query_one("#disabled-list", ListView)
        await disabled_list.clear()
        await disabled_list.extend(
            DisabledChannelItem(channel) for channel in self.session.disabled
        )

    def _refresh_summary(self, matched: Optional[int] = None, *, truncated: bool = False) -> None:
        catalog = self.session.catalog
        selected = self.session.selection.count(catalog)
        parts = [f"Selected {selected} of {len(catalog)} channel(s)"]
        if matched is not None:
            parts.append(f"{matched} match the current filter")
        if truncated:
            parts.append(f"showing the first {self.session.display_limit}")
        self.query_one("#catalog-summary", Static).update(" · ".join(parts))
        has_selection = selected > 0
        self.query_one("#export", Button).disabled = not has_selection
        self.query_one("#publish", Button).disabled = not has_selection

    def _refresh_markers(self) -> None:
        selection = self.session.selection
        for channel_id, item in self._channel_items.items():
            item.set_selected(channel_id in selection)
        for group, header in self._group_headers.items():
            members = [
                item.channel for item in self._channel_items.values()
                if item.channel.display_group == group
            ]
            header.update_counts(
                sum(1 for channel in members if channel.id in selection), len(members)
            )
        category, search = self._filter_values()
        view = self.session.view(category, search)
        self._refresh_summary(len(view), truncated=view.truncated)

    def stream_lines(self, snapshot: TelemetrySnapshot) -> list[str]:
        """One line per active stream, named after its channel once channels are loaded."""

        names = {str(channel.id): channel.name for channel in self.session.disabled}
        names.update((str(channel.id), channel.name) for channel in self.session.catalog)
        lines = []
        for status in snapshot.active_streams():
            channel_id = channel_id_for_stream(status.stream_id)
            name = names.get(channel_id, status.stream_id) if channel_id else status.stream_id
            lines.append(_format_stream_line(status, name))
        return lines

    def _apply_telemetry(self, snapshot: TelemetrySnapshot) -> None:
        if not self.is_running:
            return
        self.query_one(BandwidthPanel).show_snapshot(snapshot)
        for channel_id, item in self._channel_items.items():
            item.set_streaming(snapshot.is_streaming(channel_id))
        lines = self.stream_lines(snapshot)
        self.query_one("#stream-list", Static).update(
            "\n".join(lines) if lines else "No streams are currently active."
        )

    # Event handlers

    @on(Input.Changed, "#search")
    async def _on_search_changed(self, _: Input.Changed) -> None:
        await self._render_channels()

    @on(Select.Changed, "#category-filter")
    async def _on_category_changed(self, _: Select.Changed) -> None:
        await self._render_channels()

    @on(ListView.Selected, "#user-list")
    async def _on_user_selected(self, event: ListView.Selected) -> None:
        if not isinstance(event.item, UserListItem):
            return
        user = event.item.user
        self.session.select_user(user)
        self.query_one("#filename", Input).value = self.session.default_filename()
        self.query_one("#user-info", Static).update(
            f"{escape(user.username)} · {escape(user.status_label())} · "
            f"max {user.max_connections} device(s) · expires {user.expiry_label()}"
        )
        self.run_worker(self._load_channels(), name="channels", exclusive=True, group="channels")

    @on(ListView.Selected, "#channel-list")
    def _on_channel_selected(self, event: ListView.Selected) -> None:
        if isinstance(event.item, ChannelListItem):
            self.toggle_channel(event.item.channel.id)

    @on(ListView.Selected, "#disabled-list")
    def _on_disabled_selected(self, event: ListView.Selected) -> None:
        if isinstance(event.item, DisabledChannelItem):
            self.run_worker(
                self.set_channel_active(event.item.channel, True),
                name="toggle-channel",
                exclusive=True,
                group="toggle-channel",
            )

    def toggle_channel(self, channel_id: object) -> None:
        self.session.selection.toggle(channel_id)
        self._refresh_markers()

    @on(Button.Pressed, "#select-visible")
    def _on_select_visible(self, _: Button.Pressed) -> None:
        self.action_select_visible()

    @on(Button.Pressed, "#deselect-all")
    def _on_deselect_all(self, _: Button.Pressed) -> None:
        self.action_deselect_all()

    @on(Button.Pressed, "#select-category")
    def _on_select_category(self, _: Button.Pressed) -> None:
        self.action_select_category()

    def action_select_visible(self) -> None:
        category, search = self._filter_values()
        added = self.session.selection.select_all(self.session.view(category, search).ids)
        self._set_status(f"Selected {added} more channel(s)")
        self._refresh_markers()

    def action_deselect_all(self) -> None:
        self.session.selection.deselect_all()
        self._set_status("Selection cleared")
        self._refresh_markers()

    def action_select_category(self) -> None:
        category, _ = self._filter_values()
        try:
            added = self.session.selection.select_by_category(self.session.catalog, category)
        except SelectionError as exc:
            self.notify(str(exc), severity="warning")
            return
        self._set_status(f"Selected {added} more channel(s) from {category}")
        self._refresh_markers()

    def _generation_inputs(self) -> tuple[str, Optional[str]]:
        password = self.query_one("#password", Input).value
        filename = self.query_one("#filename", Input).value.strip() or None
        return password, filename

    @on(Button.Pressed, "#export")
    def _on_export(self, _: Button.Pressed) -> None:
        password, filename = self._generation_inputs()
        try:
            target = self.session.export(password, self._export_dir, filename=filename)
        except SessionError as exc:
            self.notify(str(exc), severity="warning")
            return
        except OSError as exc:
            self._report_error(f"Failed to write playlist: {exc}")
            return
        self._refresh_markers()
        self._set_status(f"Playlist written to {target}")
        self.notify(f"Playlist written to {target}")

    @on(Button.Pressed, "#publish")
    def _on_publish(self, _: Button.Pressed) -> None:
        password, filename = self._generation_inputs()
        try:
            self.session.generate(password, filename=filename)
        except SessionError as exc:
            self.notify(str(exc), severity="warning")
            return
        self.run_worker(self._publish(password, filename), name="publish", exclusive=True, group="publish")

    async def _publish(self, password: str, filename: Optional[str]) -> None:
        try:
            url = await self.session.publish(password, filename=filename)
        except ApiError as exc:
            self._report_error(f"Failed to save playlist: {exc}")
            return
        self._refresh_markers()
        self._set_status(f"Playlist available at {url}")
        self.notify(f"Playlist available at {url}")

    @on(Button.Pressed, "#view-stored")
    def _on_view_stored(self, _: Button.Pressed) -> None:
        if self.session.user is None:
            self.notify("Select a user first", severity="warning")
            return
        self.run_worker(
            self._show_stored_playlist(self.session.user.username),
            name="stored-playlist",
            exclusive=True,
            group="stored-playlist",
        )

    async def _show_stored_playlist(self, username: str) -> None:
        try:
            entries = await self.session.view_user_playlist(username)
        except ApiError as exc:
            self._report_error(f"Failed to load playlist for {username}: {exc}")
            return
        if entries is None:
            self.notify(f"{username} has no generated playlist yet", severity="warning")
            return
        if not entries:
            self.notify("The stored playlist contains no channels", severity="warning")
            return
        self.push_screen(PlaylistListingModal(format_grouped_listing(username, entries)))

    def _toggle_target(self) -> Optional[Channel]:
        disabled_list = self.query_one("#disabled-list", ListView)
        if self.focused is disabled_list:
            item = disabled_list.highlighted_child
            return item.channel if isinstance(item, DisabledChannelItem) else None
        item = self.query_one("#channel-list", ListView).highlighted_child
        return item.channel if isinstance(item, ChannelListItem) else None

    async def action_toggle_channel_active(self) -> None:
        channel = self._toggle_target()
        if channel is None:
            self.notify("Highlight a channel first", severity="warning")
            return
        await self.set_channel_active(channel, not channel.active)

    async def set_channel_active(self, channel: Channel, active: bool) -> None:
        """Switch *channel* on or off on the backend and redraw both lists."""

        try:
            dropped = await self.session.set_channel_active(channel.id, active)
        except ApiError as exc:
            self._report_error(f"Failed to toggle {channel.name}: {exc}")
            return
        if dropped:
            log.info("Removed %d selection(s) for disabled channels", len(dropped))
        await self._show_catalog()
        self._set_status(f"{channel.name} {'enabled' if active else 'disabled'}")

    def action_reload(self) -> None:
        self.run_worker(self._load_users(), name="users", exclusive=True, group="users")
        if self.session.user is not None:
            self.run_worker(self._load_channels(), name="channels", exclusive=True, group="channels")

    def action_switch_tab(self, tab: str) -> None:
        self.query_one("#main-tabs", TabbedContent).active = f"{tab}-tab"

    @property
    def channel_items(self) -> Sequence[ChannelListItem]:
        return tuple(self._channel_items.values())

    @property
    def disabled_items(self) -> Sequence[DisabledChannelItem]:
        return tuple(self.query_one("#disabled-list", ListView).query(DisabledChannelItem))


__all__ = ["DeckApp"]
