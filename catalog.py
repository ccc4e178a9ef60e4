from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from models import (
    AppState,
    Book,
    BookCondition,
    ReadStatus,
    RecordNotFound,
    User,
    new_id,
    normalize_fields,
    utcnow,
)
from users import is_completed, is_favorite

LibraryFilter = Literal["all", "unread", "favorites"]

# Fields a caller may never overwrite through an edit form.
PROTECTED_FIELDS = {"id", "added_date", "added_by_user_id"}


def _require(state: AppState, book_id: str) -> Book:
    book = state.book(book_id)
    if book is None:
        raise RecordNotFound(f"Book {book_id!r} not found.")
    return book


def _replace(state: AppState, updated: Book) -> AppState:
    books = [updated if book.id == updated.id else book for book in state.books]
    return state.model_copy(update={"books": books})


def build_book(
    draft: Dict[str, Any],
    *,
    added_by_user_id: str = "",
    now: Optional[datetime] = None,
) -> Book:
    """Create a Book from a partial record (manual form, lookup or AI scan).

    Any subset of fields may be missing; defaults fill the rest.
    """
    payload = {
        key: value for key, value in normalize_fields(Book, draft).items() if value is not None
    }
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValueError("Book title is required.")
    payload["title"] = title
    payload.setdefault("author", "Unknown Author")
    payload.setdefault("estimated_value", 0)
    payload.setdefault("condition", BookCondition.GOOD)
    payload.setdefault("status", ReadStatus.UNREAD)
    payload["id"] = new_id()
    payload["added_date"] = now or utcnow()
    payload["added_by_user_id"] = added_by_user_id
    return Book.model_validate(payload)


def add_book(
    state: AppState,
    draft: Dict[str, Any],
    added_by_user_id: str = "",
    *,
    now: Optional[datetime] = None,
) -> Tuple[AppState, Book]:
    book = build_book(draft, added_by_user_id=added_by_user_id, now=now)
    return state.model_copy(update={"books": [*state.books, book]}), book


def add_books(state: AppState, books: List[Book]) -> AppState:
    return state.model_copy(update={"books": [*state.books, *books]})


def update_book(state: AppState, book_id: str, changes: Dict[str, Any]) -> Tuple[AppState, Book]:
    data = _require(state, book_id).model_dump()
    for key, value in normalize_fields(Book, changes).items():
        if key not in PROTECTED_FIELDS:
            data[key] = value
    if not str(data.get("title") or "").strip():
        raise ValueError("Book title is required.")
    updated = Book.model_validate(data)
    return _replace(state, updated), updated


def set_book_location(
    state: AppState,
    book_id: str,
    location_id: Optional[str],
) -> Tuple[AppState, Book]:
    updated = _require(state, book_id).model_copy(update={"location_id": location_id or None})
    return _replace(state, updated), updated


def delete_book(state: AppState, book_id: str) -> AppState:
    """Remove a book from the catalog.

    Loan history is kept (a loan may outlive its book) and reading history is
    kept, but the id is dropped from favorites. A book that is currently out
    on loan cannot be deleted.
    """
    _require(state, book_id)
    if any(loan.book_id == book_id and loan.return_date is None for loan in state.loans):
        raise ValueError("Cannot delete a book that is currently on loan.")
    users = [
        user.model_copy(update={"favorites": [fav for fav in user.favorites if fav != book_id]})
        if book_id in user.favorites
        else user
        for user in state.users
    ]
    books = [book for book in state.books if book.id != book_id]
    return state.model_copy(update={"books": books, "users": users})


def search_books(
    state: AppState,
    term: str = "",
    library_filter: LibraryFilter = "all",
    user: Optional[User] = None,
) -> List[Book]:
    needle = (term or "").strip().lower()
    results: List[Book] = []
    for book in state.books:
        if needle and needle not in book.title.lower() and needle not in book.author.lower():
            continue
        if library_filter == "unread" and is_completed(user, book.id):
            continue
        if library_filter == "favorites" and not is_favorite(user, book.id):
            continue
        results.append(book)
    return results
