"""Playlist generation session tying the catalog, selection and target user."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .api import PanelClient, UserAccount
from .catalog import Channel, ChannelCatalog, DISPLAY_LIMIT, CatalogView
from .logging_utils import get_logger
from .playlist import PlaylistEntry, parse_playlist_text, serialize_playlist
from .selection import SelectionSet

log = get_logger(__name__)


class SessionError(ValueError):
    """Raised when the operator's input is incomplete for the requested action."""


@dataclass(slots=True, frozen=True)
class GeneratedPlaylist:
    """Serialized playlist text together with what went into it."""

    username: str
    filename: str
    channels: tuple[Channel, ...]
    content: str

    @property
    def channel_count(self) -> int:
        return len(self.channels)


def default_playlist_filename(username: str) -> str:
    return f"playlist-{username}.m3u"


class PlaylistSession:
    """State for one "generate playlist" flow.

    The session is created when the generation view opens and closed with
    :meth:`close` when it is left. Selection survives any number of :meth:`view` calls;
    refreshing the catalog drops selections for channels that disappeared, and
    a successful export or publish clears it. Disabled channels are kept apart
    in :attr:`disabled` so they can be switched back on.
    """

    def __init__(self, client: PanelClient, *, display_limit: int = DISPLAY_LIMIT) -> None:
        self.client = client
        self.display_limit = display_limit
        self.catalog = ChannelCatalog()
        self.disabled = ChannelCatalog()
        self.selection = SelectionSet()
        self.user: Optional[UserAccount] = None

    async def load_channels(self) -> set[object]:
        """Fetch the active channel catalog and return any dropped selections."""

        channels = await self.client.search_channels("")
        self.catalog.replace(channel for channel in channels if channel.active)
        self.disabled.replace(channel for channel in channels if not channel.active)
        return self.selection.prune(self.catalog)

    async def set_channel_active(self, channel_id: object, active: bool) -> set[object]:
        """Flip the backend availability of *channel_id* and reload the catalog."""

        await self.client.toggle_channel(channel_id, active)
        return await self.load_channels()

    def view(self, category: str = "", search: str = "") -> CatalogView:
        return self.catalog.view(category, search, limit=self.display_limit)

    def select_user(self, user: Optional[UserAccount]) -> None:
        self.user = user
        if user is not None:
            log.info("Generating playlist for %s (%s)", user.username, user.status_label())

    def default_filename(self) -> str:
        if self.user is None:
            raise SessionError("Select a user first")
        return default_playlist_filename(self.user.username)

    def _require_ready(self, password: str) -> tuple[UserAccount, List[Channel]]:
        if self.user is None:
            raise SessionError("Select a user first")
        channels = self.selection.selected_channels(self.catalog)
        if not channels:
            raise SessionError("Select at least one channel")
        if not password:
            raise SessionError("A password is required to build stream URLs")
        return self.user, channels

    def generate(
        self,
        password: str,
        *,
        filename: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> GeneratedPlaylist:
        """Serialize the selected channels for the current user."""

        user, channels = self._require_ready(password)
        content = serialize_playlist(
            channels,
            username=user.username,
            password=password,
            host=self.client.host,
            generated_at=generated_at,
        )
        return GeneratedPlaylist(
            username=user.username,
            filename=filename or default_playlist_filename(user.username),
            channels=tuple(channels),
            content=content,
        )

    def export(self, password: str, directory: Path, *, filename: Optional[str] = None) -> Path:
        """Write the playlist into *directory* and return the file path."""

        playlist = self.generate(password, filename=filename)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / playlist.filename
        target.write_text(playlist.content, encoding="utf8")
        log.info("Wrote %d channel(s) to %s", playlist.channel_count, target)
        self.selection.deselect_all()
        return target

    async def publish(self, password: str, *, filename: Optional[str] = None) -> str:
        """Upload the playlist to the backend and return its public URL."""

        playlist = self.generate(password, filename=filename)
        url = await self.client.save_generated_playlist(playlist.filename, playlist.content)
        self.selection.deselect_all()
        return url

    async def view_user_playlist(self, username: str) -> Optional[List[PlaylistEntry]]:
        """Fetch and parse the stored playlist for *username*."""

        text = await self.client.fetch_user_playlist(username)
        if text is None:
            return None
        return parse_playlist_text(text)

    def close(self) -> None:
        self.selection.deselect_all()
        self.user = None


__all__ = [
    "GeneratedPlaylist",
    "PlaylistSession",
    "SessionError",
    "default_playlist_filename",
]
