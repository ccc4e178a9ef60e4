"""Family members: derived age/grade, validation and the reading projection.

Age and grade are never stored. ``profile_view`` computes them from the date
of birth every time a user is read, so a stale value can never leak out of an
old document.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from models import (
    AppState,
    Book,
    Persona,
    ReadEntry,
    ReadStatus,
    RecordNotFound,
    User,
    new_id,
    normalize_fields,
)

ADMIN_MIN_AGE = 18


class UserProfile(BaseModel):
    user: User
    age: Optional[int] = None
    grade: Optional[str] = None


def calculate_age(dob: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Whole years elapsed since ``dob``; a future date counts as 0."""
    if dob is None:
        return None
    today = today or date.today()
    years = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
    return max(0, years)


def calculate_grade(age: int) -> str:
    if age < 3:
        return "Toddler"
    if age < 5:
        return "Preschool"
    if age < 6:
        return "Kindergarten"
    if age > 18:
        return "Graduated"
    return f"Grade {age - 5}"


def profile_view(user: User, today: Optional[date] = None) -> UserProfile:
    age = calculate_age(user.dob, today)
    if user.role == "Admin":
        grade: Optional[str] = user.education_level
    else:
        grade = calculate_grade(age) if age is not None else None
    return UserProfile(user=user, age=age, grade=grade)


def user_age(user: Optional[User], today: Optional[date] = None) -> Optional[int]:
    if user is None:
        return None
    return calculate_age(user.dob, today)


# --------------------------------------------------------------------------- #
# Reading projection
# --------------------------------------------------------------------------- #
def reading_entry(user: User, book_id: str) -> Optional[ReadEntry]:
    return next((entry for entry in user.history if entry.book_id == book_id), None)


def is_completed(user: Optional[User], book_id: str) -> bool:
    if user is None:
        return False
    return any(
        entry.book_id == book_id and entry.status == ReadStatus.COMPLETED
        for entry in user.history
    )


def is_favorite(user: Optional[User], book_id: str) -> bool:
    return user is not None and book_id in user.favorites


def is_age_appropriate(user: Optional[User], book: Book, today: Optional[date] = None) -> bool:
    """Only blocks when both ages are known and the reader is under the floor."""
    if book.min_age is None:
        return True
    age = user_age(user, today)
    if age is None:
        return True
    return age >= book.min_age


def readers_of(state: AppState, book_id: str) -> List[User]:
    return [user for user in state.users if reading_entry(user, book_id) is not None]


# --------------------------------------------------------------------------- #
# Directory
# --------------------------------------------------------------------------- #
def active_user(state: AppState) -> Optional[User]:
    """The selected user, or None when the reference is unset or stale."""
    return state.user(state.current_user)


def validate_user(user: User, today: Optional[date] = None) -> None:
    today = today or date.today()
    if not user.name or not user.name.strip():
        raise ValueError("Name is required.")
    if user.dob is None:
        raise ValueError("Date of birth is required.")
    if user.dob > today:
        raise ValueError("Date of birth cannot be in the future.")
    if user.role == "Admin" and (calculate_age(user.dob, today) or 0) < ADMIN_MIN_AGE:
        raise ValueError(
            f"Age Restriction: Parents/Admins must be at least {ADMIN_MIN_AGE} years old."
        )


def build_user(data: Dict[str, Any], today: Optional[date] = None) -> User:
    payload = normalize_fields(User, data)
    payload["id"] = new_id()
    payload.setdefault("history", [])
    payload.setdefault("favorites", [])
    if not payload.get("avatar_seed"):
        payload["avatar_seed"] = str(payload.get("name") or "")
    user = User.model_validate(payload)
    validate_user(user, today)
    return user


def add_user(
    state: AppState,
    data: Dict[str, Any],
    *,
    today: Optional[date] = None,
) -> Tuple[AppState, User]:
    user = build_user(data, today)
    return state.model_copy(update={"users": [*state.users, user]}), user


def _require(state: AppState, user_id: str) -> User:
    user = state.user(user_id)
    if user is None:
        raise RecordNotFound(f"User {user_id!r} not found.")
    return user


def _replace(state: AppState, updated: User) -> AppState:
    users = [updated if user.id == updated.id else user for user in state.users]
    return state.model_copy(update={"users": users})


def update_user(
    state: AppState,
    user_id: str,
    changes: Dict[str, Any],
    *,
    today: Optional[date] = None,
) -> Tuple[AppState, User]:
    current = _require(state, user_id)
    data = current.model_dump()
    data.update(
        {key: value for key, value in normalize_fields(User, changes).items() if key != "id"}
    )
    updated = User.model_validate(data)
    validate_user(updated, today)
    return _replace(state, updated), updated


def set_current_user(state: AppState, user_id: Optional[str]) -> AppState:
    if user_id is not None:
        _require(state, user_id)
    return state.model_copy(update={"current_user": user_id})


def record_reading(
    state: AppState,
    user_id: str,
    book_id: str,
    status: ReadStatus,
    rating: Optional[float] = None,
    *,
    today: Optional[date] = None,
) -> Tuple[AppState, User]:
    """Upsert the user's entry for a book.

    Moving to Completed stamps the finish date and bumps the read count.
    """
    user = _require(state, user_id)
    status = ReadStatus(status)
    existing = reading_entry(user, book_id)
    entry = existing or ReadEntry(book_id=book_id, status=status)
    changes: Dict[str, Any] = {"status": status}
    if rating is not None:
        changes["rating"] = rating
    if status == ReadStatus.COMPLETED and (existing is None or existing.status != status):
        changes["date_finished"] = today or date.today()
        changes["read_count"] = (entry.read_count or 0) + 1
    entry = entry.model_copy(update=changes)

    if existing is None:
        history = [*user.history, entry]
    else:
        history = [entry if item.book_id == book_id else item for item in user.history]
    updated = user.model_copy(update={"history": history})
    return _replace(state, updated), updated


def toggle_favorite(state: AppState, user_id: str, book_id: str) -> Tuple[AppState, User]:
    user = _require(state, user_id)
    if book_id in user.favorites:
        favorites = [fav for fav in user.favorites if fav != book_id]
    else:
        favorites = [*user.favorites, book_id]
    updated = user.model_copy(update={"favorites": favorites})
    return _replace(state, updated), updated


def set_personas(
    state: AppState,
    user_id: str,
    personas: List[Persona],
) -> Tuple[AppState, User]:
    updated = _require(state, user_id).model_copy(update={"personas": list(personas)})
    return _replace(state, updated), updated
