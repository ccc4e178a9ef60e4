from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from models import AppState, Book, Location, RecordNotFound, new_id

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"
UNKNOWN = "Unknown"
LOCATION_TYPES = ("Room", "Shelf", "Box", "Stack")


def _find(locations: Sequence[Location], location_id: Optional[str]) -> Optional[Location]:
    if not location_id:
        return None
    return next((loc for loc in locations if loc.id == location_id), None)


def _label(location: Location) -> str:
    return (location.name or "").strip() or (location.type or "").strip() or UNKNOWN


def _replace(state: AppState, updated: Location) -> AppState:
    locations = [updated if loc.id == updated.id else loc for loc in state.locations]
    return state.model_copy(update={"locations": locations})


def _require(state: AppState, location_id: str) -> Location:
    location = _find(state.locations, location_id)
    if location is None:
        raise RecordNotFound(f"Location {location_id!r} not found.")
    return location


# --------------------------------------------------------------------------- #
# Display and traversal
# --------------------------------------------------------------------------- #
def resolve_display_name(locations: Sequence[Location], location_id: Optional[str]) -> str:
    """Human label for a placement; never raises, never empty."""
    if not location_id:
        return UNASSIGNED
    location = _find(locations, location_id)
    if location is None:
        return UNKNOWN
    parent = _find(locations, location.parent_id)
    if parent is not None and parent.id != location.id:
        return f"{_label(parent)} > {_label(location)}"
    return _label(location)


def children_of(locations: Sequence[Location], parent_id: Optional[str] = None) -> List[Location]:
    return [loc for loc in locations if (loc.parent_id or None) == (parent_id or None)]


def walk_tree(
    locations: Sequence[Location],
    parent_id: Optional[str] = None,
) -> Iterator[Tuple[int, Location]]:
    """Depth-first (depth, location) pairs below ``parent_id``.

    Each location is yielded at most once, so a parent cycle in the data
    ends the walk instead of recursing forever.
    """
    visited: Set[str] = set()
    if parent_id:
        visited.add(parent_id)
    stack: List[Tuple[int, Location]] = [
        (0, loc) for loc in reversed(children_of(locations, parent_id))
    ]
    while stack:
        depth, location = stack.pop()
        if location.id in visited:
            logger.warning("Location cycle detected at %s", location.id)
            continue
        visited.add(location.id)
        yield depth, location
        for child in reversed(children_of(locations, location.id)):
            if child.id not in visited:
                stack.append((depth + 1, child))


def ancestors(locations: Sequence[Location], location_id: str) -> List[Location]:
    """Parent chain of a location, nearest first, stopping on a repeat."""
    chain: List[Location] = []
    seen = {location_id}
    current = _find(locations, location_id)
    while current is not None and current.parent_id and current.parent_id not in seen:
        parent = _find(locations, current.parent_id)
        if parent is None:
            break
        chain.append(parent)
        seen.add(parent.id)
        current = parent
    return chain


def would_create_cycle(
    locations: Sequence[Location],
    location_id: str,
    parent_id: Optional[str],
) -> bool:
    if not parent_id:
        return False
    if parent_id == location_id:
        return True
    return any(loc.id == location_id for loc in ancestors(locations, parent_id))


def location_tree(state: AppState) -> List[Dict[str, Any]]:
    """Return nested location -> children with the books stored at each node."""
    books_by_location: Dict[str, List[Book]] = {}
    for book in state.books:
        if book.location_id:
            books_by_location.setdefault(book.location_id, []).append(book)

    roots: List[Dict[str, Any]] = []
    path: List[Dict[str, Any]] = []
    for depth, location in walk_tree(state.locations):
        node = {
            "location": location,
            "display_name": resolve_display_name(state.locations, location.id),
            "books": books_by_location.get(location.id, []),
            "children": [],
        }
        del path[depth:]
        if depth == 0:
            roots.append(node)
        else:
            path[-1]["children"].append(node)
        path.append(node)
    return roots


def homeless_books(state: AppState) -> List[Book]:
    return [book for book in state.books if not book.location_id]


# --------------------------------------------------------------------------- #
# Mutations
# --------------------------------------------------------------------------- #
def add_location(
    state: AppState,
    name: str,
    type: str = "Room",
    parent_id: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Tuple[AppState, Location]:
    """Create a location. ``parent_id`` is stored as given, unchecked."""
    if not name or not name.strip():
        raise ValueError("Location name is required.")
    location = Location(
        id=new_id(),
        name=name.strip(),
        type=(type or "Room").strip() or "Room",
        parent_id=parent_id or None,
        image_url=image_url,
    )
    return state.model_copy(update={"locations": [*state.locations, location]}), location


def rename_location(state: AppState, location_id: str, name: str) -> Tuple[AppState, Location]:
    if not name or not name.strip():
        raise ValueError("Location name is required.")
    updated = _require(state, location_id).model_copy(update={"name": name.strip()})
    return _replace(state, updated), updated


def set_location_image(
    state: AppState,
    location_id: str,
    image_url: Optional[str],
) -> Tuple[AppState, Location]:
    updated = _require(state, location_id).model_copy(update={"image_url": image_url or None})
    return _replace(state, updated), updated


def move_location(
    state: AppState,
    location_id: str,
    parent_id: Optional[str],
) -> Tuple[AppState, Location]:
    location = _require(state, location_id)
    if would_create_cycle(state.locations, location_id, parent_id):
        raise ValueError("A location cannot be placed inside itself or one of its children.")
    updated = location.model_copy(update={"parent_id": parent_id or None})
    return _replace(state, updated), updated


def delete_location(state: AppState, location_id: str) -> AppState:
    """Remove a childless location; books stored there become unassigned."""
    _require(state, location_id)
    if children_of(state.locations, location_id):
        raise ValueError("Cannot delete a location that still contains other locations.")
    books = [
        book.model_copy(update={"location_id": None}) if book.location_id == location_id else book
        for book in state.books
    ]
    locations = [loc for loc in state.locations if loc.id != location_id]
    return state.model_copy(update={"locations": locations, "books": books})
