"""Reading and writing M3U playlists."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
from urllib import request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlparse

from .catalog import UNCATEGORIZED, Channel
from .logging_utils import get_logger

log = get_logger(__name__)

EXTM3U_HEADER = "#EXTM3U"
EXTINF_PREFIX = "#EXTINF:"
PROXY_PATH = "/api/proxy/channel/"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_ATTRIBUTE_RE = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')


class PlaylistError(RuntimeError):
    """Raised when a playlist cannot be read."""


@dataclass(slots=True, frozen=True)
class PlaylistEntry:
    """A single ``#EXTINF`` entry and the URL that follows it."""

    name: str
    url: str
    group: str = UNCATEGORIZED
    tvg_id: Optional[str] = None
    logo: Optional[str] = None

    @property
    def channel_id(self) -> Optional[str]:
        """Channel id embedded in a proxy URL, if this entry points at one."""

        return channel_id_from_url(self.url)


def _parse_extinf(line: str) -> tuple[dict[str, str], str]:
    """Split an ``#EXTINF`` line into its attributes and display name.

    The name is whatever follows the last comma on the line.
    """

    payload = line[len(EXTINF_PREFIX) :]
    metadata, comma, name = payload.rpartition(",")
    if not comma:
        metadata, name = payload, ""
    attributes = dict(_ATTRIBUTE_RE.findall(metadata))
    return attributes, name.strip()


def parse_playlist(lines: Iterable[str]) -> List[PlaylistEntry]:
    """Parse playlist lines into :class:`PlaylistEntry` objects.

    Lines that are blank, comments other than ``#EXTINF``, or URLs without a
    preceding ``#EXTINF`` are skipped. A trailing ``#EXTINF`` with no URL
    produces nothing.
    """

    entries: List[PlaylistEntry] = []
    pending: Optional[tuple[dict[str, str], str]] = None

    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(EXTINF_PREFIX):
            if pending is not None:
                log.debug("Discarding #EXTINF for %r without a stream URL", pending[1])
            pending = _parse_extinf(line)
            continue
        if line.startswith("#"):
            continue
        if pending is None:
            log.debug("Ignoring stream URL without metadata: %s", line)
            continue
        attributes, name = pending
        entries.append(
            PlaylistEntry(
                name=name,
                url=line,
                group=attributes.get("group-title") or UNCATEGORIZED,
                tvg_id=attributes.get("tvg-id") or None,
                logo=attributes.get("tvg-logo") or None,
            )
        )
        pending = None

    if pending is not None:
        log.debug("Playlist ended with dangling #EXTINF for %r", pending[1])
    log.info("Parsed %d playlist entries", len(entries))
    return entries


def parse_playlist_text(text: str) -> List[PlaylistEntry]:
    """Parse playlist *text*."""

    return parse_playlist(text.splitlines())


def build_proxy_url(host: str, channel_id: object, username: str, password: str) -> str:
    """Return the authenticated proxy URL for *channel_id*.

    *host* is either ``host[:port]`` or a base URL with a scheme.
    """

    base = host.strip().rstrip("/")
    if "://" not in base:
        base = f"http://{base}"
    query = urlencode({"username": username, "password": password})
    return f"{base}{PROXY_PATH}{channel_id}?{query}"


def channel_id_from_url(url: str) -> Optional[str]:
    """Extract the channel id from a proxy URL, or ``None``."""

    path = urlparse(url).path
    if PROXY_PATH not in path:
        return None
    channel_id = path.split(PROXY_PATH, 1)[1].strip("/")
    return channel_id or None


def _attribute(value: str) -> str:
    # Attribute values are double-quoted with no escaping.
    return value.replace('"', "'")


def serialize_playlist(
    channels: Sequence[Channel],
    *,
    username: str,
    password: str,
    host: str,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render *channels* as M3U text with per-user proxy URLs.

    The password is embedded in plain text in every stream URL; no credential
    checks happen here.
    """

    timestamp = (generated_at or datetime.now()).strftime(TIMESTAMP_FORMAT)
    lines = [
        EXTM3U_HEADER,
        f"# IPTV Playlist for: {username}",
        f"# Generated: {timestamp}",
        f"# Total Channels: {len(channels)}",
        "",
    ]
    for channel in channels:
        lines.append(
            f'{EXTINF_PREFIX}-1 tvg-id="{_attribute(str(channel.id))}" '
            f'tvg-name="{_attribute(channel.name)}" '
            f'group-title="{_attribute(channel.display_group)}",{channel.name}'
        )
        lines.append(build_proxy_url(host, channel.id, username, password))
    lines.append("")
    log.debug("Serialized %d channel(s) for %s", len(channels), username)
    return "\n".join(lines)


def group_entries(entries: Iterable[PlaylistEntry]) -> List[tuple[str, List[PlaylistEntry]]]:
    """Partition *entries* by group, groups sorted by label."""

    grouped: dict[str, List[PlaylistEntry]] = {}
    for entry in entries:
        grouped.setdefault(entry.group, []).append(entry)
    return [(label, grouped[label]) for label in sorted(grouped)]


def format_grouped_listing(username: str, entries: Sequence[PlaylistEntry]) -> str:
    """Return a plain text listing of *entries* grouped by category."""

    lines = [f"Channels for user: {username}", f"Total: {len(entries)} channels"]
    for group, members in group_entries(entries):
        lines.append("")
        lines.append(f"[{group}] ({len(members)})")
        for position, entry in enumerate(members, start=1):
            lines.append(f"  {position}. {entry.name}")
    return "\n".join(lines)


def load_playlist(
    source: str | Path,
    *,
    user_agent: Optional[str] = None,
    timeout: float = 30.0,
) -> List[PlaylistEntry]:
    """Load and parse a playlist from a local path or URL."""

    source_str = str(source)
    log.info("Loading playlist from %s", source_str)

    if source_str.startswith(("http://", "https://")):
        req = request.Request(source_str)
        if user_agent:
            req.add_header("User-Agent", user_agent)
        try:
            with request.urlopen(req, timeout=timeout) as response:
                data = response.read()
        except (HTTPError, URLError) as exc:
            raise PlaylistError(f"Failed to download playlist {source_str}: {exc}") from exc
        log.debug("Downloaded playlist bytes: %d", len(data))
        return parse_playlist(data.decode("utf8", errors="replace").splitlines())

    path = Path(source)
    if not path.exists():
        raise PlaylistError(f"Playlist path not found: {path}")
    data = path.read_bytes()
    log.debug("Read playlist file %s (%d bytes)", path, len(data))
    return parse_playlist(data.decode("utf8", errors="replace").splitlines())


__all__ = [
    "EXTM3U_HEADER",
    "PlaylistEntry",
    "PlaylistError",
    "build_proxy_url",
    "channel_id_from_url",
    "format_grouped_listing",
    "group_entries",
    "load_playlist",
    "parse_playlist",
    "parse_playlist_text",
    "serialize_playlist",
]
