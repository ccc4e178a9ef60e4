from __future__ import annotations

import pytest

import locations
from catalog import add_book
from models import AppState, Location, RecordNotFound


def _room_with_shelf():
    state, room = locations.add_location(AppState(), "Living Room", "Room")
    state, shelf = locations.add_location(state, "Shelf A", "Shelf", room.id)
    return state, room, shelf


def test_display_name_joins_parent_and_child() -> None:
    state, room, shelf = _room_with_shelf()

    assert locations.resolve_display_name(state.locations, shelf.id) == "Living Room > Shelf A"
    assert locations.resolve_display_name(state.locations, room.id) == "Living Room"


def test_display_name_sentinels() -> None:
    state, _, _ = _room_with_shelf()

    assert locations.resolve_display_name(state.locations, None) == "Unassigned"
    assert locations.resolve_display_name(state.locations, "") == "Unassigned"
    assert locations.resolve_display_name(state.locations, "missing") == "Unknown"


def test_display_name_with_dangling_parent_is_just_the_name() -> None:
    state, box = locations.add_location(AppState(), "Box 3", "Box", parent_id="gone")

    assert locations.resolve_display_name(state.locations, box.id) == "Box 3"


def test_display_name_never_empty() -> None:
    nameless = [Location(id="x", name="", type="Stack")]

    assert locations.resolve_display_name(nameless, "x") == "Stack"


def test_display_name_follows_rename() -> None:
    state, room, shelf = _room_with_shelf()

    state, _ = locations.rename_location(state, room.id, "Den")

    assert locations.resolve_display_name(state.locations, shelf.id) == "Den > Shelf A"


def test_add_location_requires_a_name() -> None:
    with pytest.raises(ValueError):
        locations.add_location(AppState(), "   ")


def test_add_location_ids_are_unique() -> None:
    state = AppState()
    for _ in range(20):
        state, _ = locations.add_location(state, "Shelf")

    assert len({loc.id for loc in state.locations}) == 20


def test_rename_missing_location_raises_not_found() -> None:
    with pytest.raises(RecordNotFound):
        locations.rename_location(AppState(), "missing", "Den")


def test_set_location_image_only_changes_image() -> None:
    state, room, shelf = _room_with_shelf()

    updated, location = locations.set_location_image(state, shelf.id, "data:image/jpeg;base64,AA==")

    assert location.image_url == "data:image/jpeg;base64,AA=="
    assert location.parent_id == room.id
    assert state.location(shelf.id).image_url is None


def test_walk_tree_is_depth_first() -> None:
    state, room, shelf = _room_with_shelf()
    state, box = locations.add_location(state, "Box 1", "Box", shelf.id)
    state, bedroom = locations.add_location(state, "Bedroom", "Room")

    walked = [(depth, loc.name) for depth, loc in locations.walk_tree(state.locations)]

    assert walked == [(0, "Living Room"), (1, "Shelf A"), (2, "Box 1"), (0, "Bedroom")]


def test_walk_tree_terminates_on_cycles() -> None:
    cyclic = [
        Location(id="a", name="A", parent_id="b"),
        Location(id="b", name="B", parent_id="a"),
        Location(id="root", name="Root"),
        Location(id="c", name="C", parent_id="root"),
    ]

    walked = [loc.id for _, loc in locations.walk_tree(cyclic)]
    below_a = [loc.id for _, loc in locations.walk_tree(cyclic, "a")]

    assert walked == ["root", "c"]
    assert below_a == ["b"]


def test_move_location_rejects_cycles() -> None:
    state, room, shelf = _room_with_shelf()
    state, box = locations.add_location(state, "Box 1", "Box", shelf.id)

    with pytest.raises(ValueError):
        locations.move_location(state, room.id, box.id)
    with pytest.raises(ValueError):
        locations.move_location(state, room.id, room.id)

    moved, location = locations.move_location(state, box.id, room.id)
    assert location.parent_id == room.id
    assert locations.resolve_display_name(moved.locations, box.id) == "Living Room > Box 1"


def test_move_to_root() -> None:
    state, _, shelf = _room_with_shelf()

    state, location = locations.move_location(state, shelf.id, None)

    assert location.parent_id is None
    assert [loc.id for loc in locations.children_of(state.locations)] == [
        loc.id for loc in state.locations
    ]


def test_delete_location_with_children_is_refused() -> None:
    state, room, _ = _room_with_shelf()

    with pytest.raises(ValueError):
        locations.delete_location(state, room.id)


def test_delete_location_unassigns_its_books() -> None:
    state, room, shelf = _room_with_shelf()
    state, book = add_book(state, {"title": "Dune", "location_id": shelf.id})

    state = locations.delete_location(state, shelf.id)

    assert state.location(shelf.id) is None
    assert state.book(book.id).location_id is None
    assert locations.homeless_books(state) == [state.book(book.id)]


def test_location_tree_nests_books_and_children() -> None:
    state, room, shelf = _room_with_shelf()
    state, book = add_book(state, {"title": "Dune", "location_id": shelf.id})

    tree = locations.location_tree(state)

    assert len(tree) == 1
    assert tree[0]["location"].id == room.id
    child = tree[0]["children"][0]
    assert child["display_name"] == "Living Room > Shelf A"
    assert [b.id for b in child["books"]] == [book.id]


def test_mutations_leave_prior_state_untouched() -> None:
    state, room, _ = _room_with_shelf()
    before = state.model_copy(deep=True)

    locations.rename_location(state, room.id, "Den")
    with pytest.raises(ValueError):
        locations.delete_location(state, room.id)

    assert state == before
