"""Named state transitions over the library document.

``reduce`` is a pure ``(state, action) -> (state, result)`` function: every
action returns a fresh ``AppState`` and never touches the one it was given,
so a rejected action (``ValueError`` / ``RecordNotFound``) leaves the caller's
state exactly as it was. ``LibrarySession`` is the single writer that holds
the current state and persists the whole document after each change.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import catalog
import loans
import locations
import onboarding
import users
from models import (
    AiSettings,
    AppState,
    BackupSettings,
    Book,
    DbSettings,
    Persona,
    ReadStatus,
    as_utc,
    utcnow,
)
from storage import StateStore

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Actions
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class AddLocation:
    name: str
    type: str = "Room"
    parent_id: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(frozen=True)
class RenameLocation:
    location_id: str
    name: str


@dataclass(frozen=True)
class SetLocationImage:
    location_id: str
    image_url: Optional[str]


@dataclass(frozen=True)
class MoveLocation:
    location_id: str
    parent_id: Optional[str]


@dataclass(frozen=True)
class DeleteLocation:
    location_id: str


@dataclass(frozen=True)
class AddBook:
    draft: Dict[str, Any]
    added_by_user_id: Optional[str] = None


@dataclass(frozen=True)
class UpdateBook:
    book_id: str
    changes: Dict[str, Any]


@dataclass(frozen=True)
class SetBookLocation:
    book_id: str
    location_id: Optional[str]


@dataclass(frozen=True)
class DeleteBook:
    book_id: str


@dataclass(frozen=True)
class ImportBooks:
    books: Sequence[Book]


@dataclass(frozen=True)
class CreateLoan:
    book_id: str
    borrower_name: Optional[str] = None
    borrower_user_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class MarkReturned:
    loan_id: str


@dataclass(frozen=True)
class AddUser:
    data: Dict[str, Any]


@dataclass(frozen=True)
class UpdateUser:
    user_id: str
    changes: Dict[str, Any]


@dataclass(frozen=True)
class SetCurrentUser:
    user_id: Optional[str]


@dataclass(frozen=True)
class RecordReading:
    user_id: str
    book_id: str
    status: ReadStatus
    rating: Optional[float] = None


@dataclass(frozen=True)
class ToggleFavorite:
    user_id: str
    book_id: str


@dataclass(frozen=True)
class SetPersonas:
    user_id: str
    personas: Sequence[Persona]


@dataclass(frozen=True)
class UpdateSettings:
    theme: Optional[str] = None
    ai_settings: Optional[AiSettings] = None
    db_settings: Optional[DbSettings] = None
    backup_settings: Optional[BackupSettings] = None


@dataclass(frozen=True)
class CompleteSetup:
    users: Sequence[Dict[str, Any]]
    rooms: Sequence[str] = onboarding.DEFAULT_ROOMS
    ai_settings: Optional[AiSettings] = None
    db_settings: Optional[DbSettings] = None
    include_starter_books: bool = True


@dataclass(frozen=True)
class RestoreState:
    state: AppState


# --------------------------------------------------------------------------- #
# Reducer
# --------------------------------------------------------------------------- #
Result = Tuple[AppState, Any]


def _add_book(state: AppState, action: AddBook, now: datetime) -> Result:
    added_by = action.added_by_user_id
    if added_by is None:
        current = users.active_user(state)
        added_by = current.id if current else ""
    return catalog.add_book(state, action.draft, added_by, now=now)


def _create_loan(state: AppState, action: CreateLoan, now: datetime) -> Result:
    borrower = action.borrower_name
    if action.borrower_user_id:
        member = state.user(action.borrower_user_id)
        borrower = member.name if member else "Unknown"
    return loans.create_loan(state, action.book_id, borrower or "", action.notes, now=now)


def _update_settings(state: AppState, action: UpdateSettings, now: datetime) -> Result:
    changes: Dict[str, Any] = {}
    if action.theme is not None:
        if action.theme not in ("dark", "light"):
            raise ValueError(f"Unknown theme {action.theme!r}.")
        changes["theme"] = action.theme
    for name in ("ai_settings", "db_settings", "backup_settings"):
        value = getattr(action, name)
        if value is not None:
            changes[name] = value
    updated = state.model_copy(update=changes) if changes else state
    return updated, None


def _complete_setup(state: AppState, action: CompleteSetup, now: datetime) -> Result:
    updated = onboarding.complete_setup(
        state,
        action.users,
        action.rooms,
        ai_settings=action.ai_settings,
        db_settings=action.db_settings,
        include_starter_books=action.include_starter_books,
        now=now,
        today=now.date(),
    )
    return updated, None


_HANDLERS: Dict[type, Callable[[AppState, Any, datetime], Result]] = {
    AddLocation: lambda s, a, now: locations.add_location(
        s, a.name, a.type, a.parent_id, a.image_url
    ),
    RenameLocation: lambda s, a, now: locations.rename_location(s, a.location_id, a.name),
    SetLocationImage: lambda s, a, now: locations.set_location_image(
        s, a.location_id, a.image_url
    ),
    MoveLocation: lambda s, a, now: locations.move_location(s, a.location_id, a.parent_id),
    DeleteLocation: lambda s, a, now: (locations.delete_location(s, a.location_id), None),
    AddBook: _add_book,
    UpdateBook: lambda s, a, now: catalog.update_book(s, a.book_id, a.changes),
    SetBookLocation: lambda s, a, now: catalog.set_book_location(s, a.book_id, a.location_id),
    DeleteBook: lambda s, a, now: (catalog.delete_book(s, a.book_id), None),
    ImportBooks: lambda s, a, now: (catalog.add_books(s, list(a.books)), len(a.books)),
    CreateLoan: _create_loan,
    MarkReturned: lambda s, a, now: loans.mark_returned(s, a.loan_id, now=now),
    AddUser: lambda s, a, now: users.add_user(s, a.data, today=now.date()),
    UpdateUser: lambda s, a, now: users.update_user(s, a.user_id, a.changes, today=now.date()),
    SetCurrentUser: lambda s, a, now: (users.set_current_user(s, a.user_id), None),
    RecordReading: lambda s, a, now: users.record_reading(
        s, a.user_id, a.book_id, a.status, a.rating, today=now.date()
    ),
    ToggleFavorite: lambda s, a, now: users.toggle_favorite(s, a.user_id, a.book_id),
    SetPersonas: lambda s, a, now: users.set_personas(s, a.user_id, list(a.personas)),
    UpdateSettings: _update_settings,
    CompleteSetup: _complete_setup,
    RestoreState: lambda s, a, now: (a.state, None),
}


def reduce(state: AppState, action: Any, *, now: Optional[datetime] = None) -> Result:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unknown action {type(action).__name__}")
    return handler(state, action, as_utc(now or utcnow()))


# --------------------------------------------------------------------------- #
# Session
# --------------------------------------------------------------------------- #
class LibrarySession:
    """Holds the current document and persists it after every change."""

    def __init__(self, store: StateStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self._lock = threading.Lock()
        self.state = store.load()

    def dispatch(self, action: Any) -> Any:
        with self._lock:
            new_state, result = reduce(self.state, action, now=self.clock())
            if new_state is not self.state:
                self.state = new_state
                self.store.save(new_state)
        logger.debug("Applied %s", type(action).__name__)
        return result

    def reset(self) -> AppState:
        with self._lock:
            self.state = self.store.reset()
        return self.state

    def backup(self, directory: Optional[Path] = None) -> Path:
        with self._lock:
            path, self.state = self.store.export_backup(
                self.state, directory, now=self.clock()
            )
            self.store.save(self.state)
        return path
