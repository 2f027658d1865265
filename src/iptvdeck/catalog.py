"""Channel catalog and the filtered views derived from it."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence

from .logging_utils import get_logger

log = get_logger(__name__)

UNCATEGORIZED = "Uncategorized"
DISPLAY_LIMIT = 200


def _coerce_active(value: object) -> bool:
    # The backend reports booleans, older rows report 0/1.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


@dataclass(slots=True, frozen=True)
class Channel:
    """A channel as reported by the panel backend."""

    id: int | str
    name: str
    group: Optional[str] = None
    active: bool = True
    stream_url: Optional[str] = None
    logo: Optional[str] = None

    @property
    def display_group(self) -> str:
        """Return the group label, falling back to :data:`UNCATEGORIZED`."""

        return self.group or UNCATEGORIZED

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "Channel":
        """Build a channel from a backend JSON object."""

        raw_id = payload.get("id")
        if raw_id is None:
            raise ValueError("Channel payload is missing an id")
        group = payload.get("group") or payload.get("category")
        url = payload.get("url") or payload.get("stream_url")
        logo = payload.get("logo")
        return cls(
            id=raw_id,  # type: ignore[arg-type]
            name=str(payload.get("name") or ""),
            group=str(group) if group else None,
            active=_coerce_active(payload.get("active")),
            stream_url=str(url) if url else None,
            logo=str(logo) if logo else None,
        )


def filter_channels(
    channels: Sequence[Channel], category: str = "", search: str = ""
) -> List[Channel]:
    """Return channels in *category* whose name contains *search*.

    An empty *category* or *search* disables that predicate. The category is
    compared exactly; the search is a case-insensitive substring match on the
    channel name, whitespace included. The input sequence is never modified.
    """

    needle = search.lower()
    results: List[Channel] = []
    for channel in channels:
        if category and channel.group != category:
            continue
        if needle and needle not in channel.name.lower():
            continue
        results.append(channel)
    log.debug(
        "Filter category=%r search=%r matched %d of %d channel(s)",
        category,
        search,
        len(results),
        len(channels),
    )
    return results


def group_channels(channels: Iterable[Channel]) -> List[tuple[str, List[Channel]]]:
    """Partition *channels* by display group, groups sorted by label."""

    grouped: dict[str, List[Channel]] = {}
    for channel in channels:
        grouped.setdefault(channel.display_group, []).append(channel)
    return [(label, grouped[label]) for label in sorted(grouped)]


def category_counts(channels: Iterable[Channel]) -> List[tuple[str, int]]:
    """Return distinct non-empty groups with channel counts, in first-seen order."""

    counts: dict[str, int] = {}
    for channel in channels:
        if not channel.group:
            continue
        counts[channel.group] = counts.get(channel.group, 0) + 1
    return list(counts.items())


@dataclass(slots=True)
class CatalogView:
    """A filtered subset of the catalog plus its capped display window."""

    channels: List[Channel]
    limit: int = DISPLAY_LIMIT
    category: str = ""
    search: str = ""
    _ids: frozenset = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._ids = frozenset(channel.id for channel in self.channels)

    @property
    def ids(self) -> frozenset:
        """Identifiers of every filtered channel, ignoring the display cap."""

        return self._ids

    @property
    def visible(self) -> List[Channel]:
        return self.channels[: self.limit]

    @property
    def truncated(self) -> bool:
        return len(self.channels) > self.limit

    @property
    def groups(self) -> List[tuple[str, List[Channel]]]:
        return group_channels(self.visible)

    def __len__(self) -> int:
        return len(self.channels)


class ChannelCatalog:
    """The full channel set fetched for one session."""

    __slots__ = ("_channels", "_by_id")

    def __init__(self, channels: Iterable[Channel] = ()) -> None:
        self._channels: List[Channel] = []
        self._by_id: dict[object, Channel] = {}
        self.replace(channels)

    def replace(self, channels: Iterable[Channel]) -> None:
        """Swap in a freshly fetched channel list."""

        self._channels = list(channels)
        self._by_id = {channel.id: channel for channel in self._channels}
        log.info("Catalog now holds %d channel(s)", len(self._channels))

    @property
    def channels(self) -> tuple[Channel, ...]:
        return tuple(self._channels)

    def ids(self) -> frozenset:
        return frozenset(self._by_id)

    def get(self, channel_id: object) -> Optional[Channel]:
        return self._by_id.get(channel_id)

    def in_group(self, group: str) -> List[Channel]:
        """Return channels whose display group equals *group*."""

        return [channel for channel in self._channels if channel.display_group == group]

    def categories(self) -> List[tuple[str, int]]:
        return category_counts(self._channels)

    def view(
        self, category: str = "", search: str = "", *, limit: int = DISPLAY_LIMIT
    ) -> CatalogView:
        """Derive the filtered view for the given inputs."""

        return CatalogView(
            filter_channels(self._channels, category, search),
            limit=limit,
            category=category,
            search=search,
        )

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._by_id

    def __iter__(self) -> Iterator[Channel]:
        return iter(self._channels)

    def __len__(self) -> int:
        return len(self._channels)


__all__ = [
    "Channel",
    "ChannelCatalog",
    "CatalogView",
    "DISPLAY_LIMIT",
    "UNCATEGORIZED",
    "category_counts",
    "filter_channels",
    "group_channels",
]
