from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from catalog import build_book
from models import AiSettings, AppState, DbSettings, Location, new_id, utcnow
from users import build_user

DEFAULT_ROOMS = ("Living Room", "Bedroom")
DEFAULT_SHELF_NAME = "Main Shelf"

STARTER_BOOKS: List[Dict[str, Any]] = [
    {
        "isbn": "9780141439518",
        "title": "Pride and Prejudice",
        "author": "Jane Austen",
        "genres": ["Classic", "Romance"],
        "tags": ["Essential"],
        "min_age": 12,
        "cover_url": "https://covers.openlibrary.org/b/id/14549557-L.jpg",
        "estimated_value": 450,
        "summary": (
            "A romantic novel of manners that follows Elizabeth Bennet as she "
            "learns about the repercussions of hasty judgments."
        ),
    },
    {
        "isbn": "9780743273565",
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "genres": ["Classic", "Fiction"],
        "tags": ["American Dream"],
        "min_age": 14,
        "cover_url": "https://covers.openlibrary.org/b/id/8408332-L.jpg",
        "estimated_value": 600,
        "summary": (
            "Set in the Jazz Age on Long Island, the story of the self-made "
            "millionaire Jay Gatsby and his pursuit of Daisy Buchanan."
        ),
    },
    {
        "isbn": "9780439139601",
        "title": "Harry Potter and the Sorcerer's Stone",
        "author": "J.K. Rowling",
        "genres": ["Fantasy", "Young Adult"],
        "tags": ["Magic", "Wizards"],
        "min_age": 9,
        "cover_url": "https://covers.openlibrary.org/b/id/10522194-L.jpg",
        "estimated_value": 800,
        "summary": (
            "A young wizard discovers his magical heritage on his eleventh "
            "birthday when he is accepted to Hogwarts School of Witchcraft and Wizardry."
        ),
        "series": "Harry Potter",
        "series_index": "1",
    },
    {
        "isbn": "9780345391803",
        "title": "The Hitchhiker's Guide to the Galaxy",
        "author": "Douglas Adams",
        "genres": ["Sci-Fi", "Comedy"],
        "tags": ["Space", "Funny"],
        "min_age": 10,
        "cover_url": "https://covers.openlibrary.org/b/id/12632205-L.jpg",
        "estimated_value": 350,
        "summary": (
            "Seconds before the Earth is demolished for a galactic freeway, "
            "Arthur Dent is plucked off the planet by his friend Ford Prefect."
        ),
    },
]


def complete_setup(
    state: AppState,
    users: Sequence[Dict[str, Any]],
    rooms: Sequence[str] = DEFAULT_ROOMS,
    *,
    ai_settings: Optional[AiSettings] = None,
    db_settings: Optional[DbSettings] = None,
    include_starter_books: bool = True,
    now: Optional[datetime] = None,
    today: Optional[date] = None,
) -> AppState:
    """Build the first real document from the onboarding answers.

    At least one Admin is required; the first Admin becomes the current user
    and the owner of the starter books.
    """
    now = now or utcnow()
    family = [build_user(data, today) for data in users]
    admin = next((user for user in family if user.role == "Admin"), None)
    if admin is None:
        raise ValueError("At least one parent/admin is required to finish setup.")

    locations = [
        Location(id=new_id(), name=name.strip(), type="Room")
        for name in rooms
        if name and name.strip()
    ]
    if locations:
        locations.append(
            Location(
                id=new_id(),
                name=DEFAULT_SHELF_NAME,
                type="Shelf",
                parent_id=locations[0].id,
            )
        )

    books = []
    if include_starter_books:
        for index, draft in enumerate(STARTER_BOOKS):
            placement = locations[index % len(locations)].id if locations else None
            books.append(
                build_book(
                    {**draft, "location_id": placement},
                    added_by_user_id=admin.id,
                    now=now,
                )
            )

    return state.model_copy(
        update={
            "is_setup_complete": True,
            "users": family,
            "locations": locations,
            "books": books,
            "current_user": admin.id,
            "ai_settings": ai_settings or state.ai_settings,
            "db_settings": db_settings or state.db_settings,
        }
    )
