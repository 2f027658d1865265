import pytest

from iptvdeck.catalog import Channel, ChannelCatalog
from iptvdeck.selection import SelectionError, SelectionSet


@pytest.fixture
def catalog() -> ChannelCatalog:
    return ChannelCatalog(
        [
            Channel(id=1, name="BBC News", group="News"),
            Channel(id=2, name="Sky Sports", group="Sports"),
            Channel(id=3, name="CNN", group="News"),
            Channel(id=4, name="Local TV"),
        ]
    )


def test_toggle_twice_restores_previous_state() -> None:
    selection = SelectionSet({5})
    assert selection.toggle(1) is True
    assert selection.toggle(1) is False
    assert selection.ids() == frozenset({5})


def test_selection_survives_filter_changes(catalog: ChannelCatalog) -> None:
    selection = SelectionSet()
    filtered = catalog.view(category="News")
    selection.toggle(filtered.channels[0].id)

    unfiltered = catalog.view()
    assert selection.is_selected(1)
    assert [c.id for c in unfiltered.channels if c.id in selection] == [1]


def test_select_all_unions_visible_ids(catalog: ChannelCatalog) -> None:
    selection = SelectionSet({2})
    added = selection.select_all(catalog.view(search="n").ids)
    assert added == 2
    assert selection.ids() == frozenset({1, 2, 3})


def test_deselect_all_ignores_filter(catalog: ChannelCatalog) -> None:
    selection = SelectionSet({1, 2, 3})
    catalog.view(category="News")
    selection.deselect_all()
    assert len(selection) == 0


def test_select_by_category_uses_whole_catalog(catalog: ChannelCatalog) -> None:
    selection = SelectionSet()
    added = selection.select_by_category(catalog, "News")
    assert added == 2
    assert selection.ids() == frozenset({1, 3})


def test_select_by_category_requires_category(catalog: ChannelCatalog) -> None:
    with pytest.raises(SelectionError):
        SelectionSet().select_by_category(catalog, "")


def test_counts_only_consider_catalog_members(catalog: ChannelCatalog) -> None:
    selection = SelectionSet({1, 3, 4, 42})
    assert selection.count(catalog) == 3
    assert selection.count_in_group(catalog, "News") == 2
    assert selection.count_in_group(catalog, "Uncategorized") == 1
    assert selection.count_in_group(catalog, "Sports") == 0


def test_selected_channels_follow_catalog_order(catalog: ChannelCatalog) -> None:
    selection = SelectionSet({3, 1, 42})
    assert [c.id for c in selection.selected_channels(catalog)] == [1, 3]


def test_prune_drops_stale_ids(catalog: ChannelCatalog) -> None:
    selection = SelectionSet({1, 42})
    catalog.replace([c for c in catalog if c.id != 1])
    stale = selection.prune(catalog)
    assert stale == {1, 42}
    assert len(selection) == 0
