"""Filter-independent channel selection used for playlist generation."""
from __future__ import annotations

from typing import Iterable, Iterator, List

from .catalog import Channel, ChannelCatalog, filter_channels
from .logging_utils import get_logger

log = get_logger(__name__)


class SelectionError(ValueError):
    """Raised when a selection request is missing required input."""


class SelectionSet:
    """Set of chosen channel ids that survives catalog re-filtering.

    Counts and the final channel list are always computed against a catalog,
    so ids that the catalog no longer contains never leak into the output even
    before :meth:`prune` runs.
    """

    __slots__ = ("_ids",)

    def __init__(self, ids: Iterable[object] = ()) -> None:
        self._ids: set[object] = set(ids)

    def toggle(self, channel_id: object) -> bool:
        """Flip membership of *channel_id* and return the new state."""

        if channel_id in self._ids:
            self._ids.discard(channel_id)
            return False
        self._ids.add(channel_id)
        return True

    def select_all(self, channel_ids: Iterable[object]) -> int:
        """Add every id in *channel_ids*; return how many were new."""

        before = len(self._ids)
        self._ids.update(channel_ids)
        added = len(self._ids) - before
        log.debug("Selected %d additional channel(s)", added)
        return added

    def deselect_all(self) -> None:
        """Clear the whole selection regardless of any active filter."""

        self._ids.clear()

    def select_by_category(self, catalog: ChannelCatalog, category: str) -> int:
        """Add every catalog channel whose group equals *category*."""

        if not category:
            raise SelectionError("Choose a category before selecting by category")
        matches = filter_channels(catalog.channels, category=category)
        return self.select_all(channel.id for channel in matches)

    def is_selected(self, channel_id: object) -> bool:
        return channel_id in self._ids

    def count(self, catalog: ChannelCatalog) -> int:
        """Number of selected ids the catalog still contains."""

        return sum(1 for channel_id in self._ids if channel_id in catalog)

    def count_in_group(self, catalog: ChannelCatalog, group: str) -> int:
        return sum(
            1 for channel in catalog.in_group(group) if channel.id in self._ids
        )

    def selected_channels(self, catalog: ChannelCatalog) -> List[Channel]:
        """Selected channels in catalog order."""

        return [channel for channel in catalog if channel.id in self._ids]

    def prune(self, catalog: ChannelCatalog) -> set[object]:
        """Drop ids the catalog no longer contains and return them."""

        stale = {channel_id for channel_id in self._ids if channel_id not in catalog}
        if stale:
            self._ids -= stale
            log.info("Dropped %d stale selection(s) after catalog refresh", len(stale))
        return stale

    def ids(self) -> frozenset:
        return frozenset(self._ids)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._ids

    def __iter__(self) -> Iterator[object]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)


__all__ = ["SelectionError", "SelectionSet"]
