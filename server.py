from __future__ import annotations

import io
import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import catalog
import enrichment
import locations
import loans
import maintenance
import users
from api import fetch_book_by_isbn
from config import configure_logging
from models import AiSettings, BackupSettings, DbSettings, Persona, ReadStatus, RecordNotFound
from state import (
    AddBook,
    AddLocation,
    AddUser,
    CompleteSetup,
    CreateLoan,
    DeleteBook,
    DeleteLocation,
    ImportBooks,
    LibrarySession,
    MarkReturned,
    MoveLocation,
    RecordReading,
    RenameLocation,
    SetBookLocation,
    SetCurrentUser,
    SetLocationImage,
    SetPersonas,
    ToggleFavorite,
    UpdateBook,
    UpdateSettings,
    UpdateUser,
)
from storage import get_store

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Application setup
# -----------------------------------------------------------------------------

configure_logging()

app = FastAPI(title="Home Librarian API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_session() -> LibrarySession:
    if not hasattr(get_session, "_instance"):
        get_session._instance = LibrarySession(get_store())
    return get_session._instance  # type: ignore[attr-defined]


# -----------------------------------------------------------------------------
# Pydantic payloads
# -----------------------------------------------------------------------------


class SetupPayload(BaseModel):
    users: List[Dict[str, Any]]
    rooms: List[str] = Field(default_factory=lambda: ["Living Room", "Bedroom"])
    ai_settings: Optional[AiSettings] = None
    db_settings: Optional[DbSettings] = None
    include_starter_books: bool = True


class LocationPayload(BaseModel):
    name: str
    type: str = "Room"
    parent_id: Optional[str] = None
    image_url: Optional[str] = None


class RenamePayload(BaseModel):
    name: str


class ImagePayload(BaseModel):
    image_url: Optional[str] = None


class ParentPayload(BaseModel):
    parent_id: Optional[str] = None


class BookLocationPayload(BaseModel):
    location_id: Optional[str] = None


class IsbnPayload(BaseModel):
    isbn: str


class ScanPayload(BaseModel):
    image: str


class LoanPayload(BaseModel):
    book_id: str
    borrower_name: Optional[str] = None
    borrower_user_id: Optional[str] = None
    notes: Optional[str] = None


class CurrentUserPayload(BaseModel):
    user_id: Optional[str] = None


class ReadingPayload(BaseModel):
    book_id: str
    status: ReadStatus
    rating: Optional[float] = Field(default=None, ge=0, le=5)


class SettingsPayload(BaseModel):
    theme: Optional[Literal["dark", "light"]] = None
    ai_settings: Optional[AiSettings] = None
    db_settings: Optional[DbSettings] = None
    backup_settings: Optional[BackupSettings] = None


class CsvPayload(BaseModel):
    csv: str


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------


def _dispatch(session: LibrarySession, action: Any) -> Any:
    try:
        return session.dispatch(action)
    except RecordNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _require_user(session: LibrarySession, user_id: str):
    user = session.state.user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _profile(session: LibrarySession, user) -> Dict[str, Any]:
    today = session.clock().date()
    return users.profile_view(user, today).model_dump(mode="json", by_alias=True, exclude_none=True)


def _tree(nodes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "location": node["location"].to_document(),
            "displayName": node["display_name"],
            "books": [book.to_document() for book in node["books"]],
            "children": _tree(node["children"]),
        }
        for node in nodes
    ]


def _documents(records) -> List[Dict[str, Any]]:
    return [record.to_document() for record in records]


# -----------------------------------------------------------------------------
# State and setup
# -----------------------------------------------------------------------------


@app.get("/api/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/state")
def get_state(session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    return session.state.to_document()


@app.post("/api/setup")
def complete_setup(
    payload: SetupPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    _dispatch(
        session,
        CompleteSetup(
            users=payload.users,
            rooms=tuple(payload.rooms),
            ai_settings=payload.ai_settings,
            db_settings=payload.db_settings,
            include_starter_books=payload.include_starter_books,
        ),
    )
    return session.state.to_document()


@app.post("/api/reset")
def reset(session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    return session.reset().to_document()


# -----------------------------------------------------------------------------
# Locations
# -----------------------------------------------------------------------------


@app.get("/api/locations")
def list_locations(session: LibrarySession = Depends(get_session)) -> List[Dict[str, Any]]:
    state = session.state
    return [
        {
            **location.to_document(),
            "displayName": locations.resolve_display_name(state.locations, location.id),
        }
        for location in state.locations
    ]


@app.get("/api/locations/tree")
def location_tree(session: LibrarySession = Depends(get_session)) -> List[Dict[str, Any]]:
    return _tree(locations.location_tree(session.state))


@app.get("/api/locations/display-name")
def display_name(
    location_id: Optional[str] = Query(default=None),
    session: LibrarySession = Depends(get_session),
) -> Dict[str, str]:
    name = locations.resolve_display_name(session.state.locations, location_id)
    return {"displayName": name}


@app.post("/api/locations", status_code=status.HTTP_201_CREATED)
def create_location(
    payload: LocationPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    location = _dispatch(
        session,
        AddLocation(payload.name, payload.type, payload.parent_id, payload.image_url),
    )
    return location.to_document()


@app.put("/api/locations/{location_id}")
def rename_location(
    location_id: str,
    payload: RenamePayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _dispatch(session, RenameLocation(location_id, payload.name)).to_document()


@app.put("/api/locations/{location_id}/image")
def set_location_image(
    location_id: str,
    payload: ImagePayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _dispatch(session, SetLocationImage(location_id, payload.image_url)).to_document()


@app.put("/api/locations/{location_id}/parent")
def move_location(
    location_id: str,
    payload: ParentPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _dispatch(session, MoveLocation(location_id, payload.parent_id)).to_document()


@app.delete("/api/locations/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(location_id: str, session: LibrarySession = Depends(get_session)) -> None:
    _dispatch(session, DeleteLocation(location_id))


# -----------------------------------------------------------------------------
# Books
# -----------------------------------------------------------------------------


@app.get("/api/books")
def list_books(
    q: str = Query(default=""),
    library_filter: catalog.LibraryFilter = Query(default="all", alias="filter"),
    user_id: Optional[str] = Query(default=None),
    session: LibrarySession = Depends(get_session),
) -> List[Dict[str, Any]]:
    state = session.state
    reader = state.user(user_id) if user_id else users.active_user(state)
    results = catalog.search_books(state, q, library_filter, reader)
    return [
        {
            **book.to_document(),
            "locationName": locations.resolve_display_name(state.locations, book.location_id),
        }
        for book in results
    ]


@app.post("/api/books", status_code=status.HTTP_201_CREATED)
def create_book(
    draft: Dict[str, Any],
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _dispatch(session, AddBook(draft)).to_document()


@app.post("/api/books/scan/isbn")
def scan_isbn(payload: IsbnPayload) -> Dict[str, Any]:
    draft = fetch_book_by_isbn(payload.isbn)
    if draft is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No record for that ISBN")
    return draft


@app.post("/api/books/scan/image")
def scan_image(payload: ScanPayload, session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    return enrichment.scan_book_image(payload.image, session.state.ai_settings)


@app.get("/api/books/{book_id}")
def get_book(book_id: str, session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    state = session.state
    book = state.book(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    active = loans.active_loan_for(state.loans, book_id)
    return {
        **book.to_document(),
        "locationName": locations.resolve_display_name(state.locations, book.location_id),
        "activeLoan": active.to_document() if active else None,
        "readers": [reader.name for reader in users.readers_of(state, book_id)],
    }


@app.put("/api/books/{book_id}")
def update_book(
    book_id: str,
    changes: Dict[str, Any],
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _dispatch(session, UpdateBook(book_id, changes)).to_document()


@app.put("/api/books/{book_id}/location")
def set_book_location(
    book_id: str,
    payload: BookLocationPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _dispatch(session, SetBookLocation(book_id, payload.location_id)).to_document()


@app.delete("/api/books/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_book(book_id: str, session: LibrarySession = Depends(get_session)) -> None:
    _dispatch(session, DeleteBook(book_id))


# -----------------------------------------------------------------------------
# Loans
# -----------------------------------------------------------------------------


@app.get("/api/loans")
def list_loans(session: LibrarySession = Depends(get_session)) -> Dict[str, List[Dict[str, Any]]]:
    partition = loans.partition_loans(session.state.loans, session.clock())
    return {
        "active": _documents(partition.active),
        "overdue": _documents(partition.overdue),
        "returned": _documents(partition.returned),
    }


@app.post("/api/loans", status_code=status.HTTP_201_CREATED)
def create_loan(payload: LoanPayload, session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    loan = _dispatch(
        session,
        CreateLoan(
            book_id=payload.book_id,
            borrower_name=payload.borrower_name,
            borrower_user_id=payload.borrower_user_id,
            notes=payload.notes,
        ),
    )
    return loan.to_document()


@app.post("/api/loans/{loan_id}/return")
def return_loan(loan_id: str, session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    return _dispatch(session, MarkReturned(loan_id)).to_document()


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------


@app.get("/api/users")
def list_users(session: LibrarySession = Depends(get_session)) -> List[Dict[str, Any]]:
    return [_profile(session, user) for user in session.state.users]


@app.get("/api/users/current")
def current_user(session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    user = users.active_user(session.state)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active user")
    return _profile(session, user)


@app.put("/api/users/current")
def set_current_user(
    payload: CurrentUserPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Optional[str]]:
    _dispatch(session, SetCurrentUser(payload.user_id))
    return {"currentUser": session.state.current_user}


@app.get("/api/users/{user_id}")
def get_user(user_id: str, session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    return _profile(session, _require_user(session, user_id))


@app.post("/api/users", status_code=status.HTTP_201_CREATED)
def create_user(data: Dict[str, Any], session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    return _profile(session, _dispatch(session, AddUser(data)))


@app.put("/api/users/{user_id}")
def update_user(
    user_id: str,
    changes: Dict[str, Any],
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _profile(session, _dispatch(session, UpdateUser(user_id, changes)))


@app.post("/api/users/{user_id}/reading")
def record_reading(
    user_id: str,
    payload: ReadingPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    user = _dispatch(
        session, RecordReading(user_id, payload.book_id, payload.status, payload.rating)
    )
    return _profile(session, user)


@app.post("/api/users/{user_id}/favorites/{book_id}")
def toggle_favorite(
    user_id: str,
    book_id: str,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    return _profile(session, _dispatch(session, ToggleFavorite(user_id, book_id)))


@app.post("/api/users/{user_id}/personas")
def refresh_personas(user_id: str, session: LibrarySession = Depends(get_session)) -> List[Dict[str, Any]]:
    user = _require_user(session, user_id)
    personas: List[Persona] = enrichment.generate_personas(
        user, session.state.books, session.state.ai_settings
    )
    if personas:
        _dispatch(session, SetPersonas(user_id, tuple(personas)))
    return _documents(personas)


@app.get("/api/users/{user_id}/recommendations")
def recommendations(
    user_id: str,
    kind: enrichment.RecommendationKind = Query(default="READ_NEXT"),
    session: LibrarySession = Depends(get_session),
) -> List[Dict[str, Any]]:
    user = _require_user(session, user_id)
    state = session.state
    results = enrichment.get_recommendations(
        user, state.books, kind, state.ai_settings, session.clock().date()
    )
    return _documents(results)


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------


@app.get("/api/settings")
def get_settings(session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    state = session.state
    return {
        "theme": state.theme,
        "aiSettings": state.ai_settings.to_document(),
        "dbSettings": state.db_settings.to_document(),
        "backupSettings": state.backup_settings.to_document(),
    }


@app.put("/api/settings")
def update_settings(
    payload: SettingsPayload,
    session: LibrarySession = Depends(get_session),
) -> Dict[str, Any]:
    _dispatch(
        session,
        UpdateSettings(
            theme=payload.theme,
            ai_settings=payload.ai_settings,
            db_settings=payload.db_settings,
            backup_settings=payload.backup_settings,
        ),
    )
    return get_settings(session)


@app.get("/api/settings/ollama-models")
def ollama_models(session: LibrarySession = Depends(get_session)) -> List[str]:
    return enrichment.list_ollama_models(session.state.ai_settings.ollama_url)


# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------


@app.get("/api/maintenance/health")
def library_health(session: LibrarySession = Depends(get_session)) -> Dict[str, Any]:
    state = session.state
    report = maintenance.health_report(state, session.clock())
    return {
        "healthy": report.is_healthy,
        "homelessBooks": _documents(report.homeless_books),
        "overdueLoans": _documents(report.overdue_loans),
        "orphanLoans": _documents(report.orphan_loans),
        "danglingLocations": _documents(report.dangling_locations),
        "cyclicLocations": _documents(report.cyclic_locations),
        "backupDue": maintenance.backup_due(state.backup_settings, session.clock()),
    }


@app.post("/api/maintenance/backup")
def create_backup(session: LibrarySession = Depends(get_session)) -> Dict[str, str]:
    try:
        path = session.backup()
    except OSError as exc:
        logger.error("Backup failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unable to write backup"
        ) from exc
    return {"path": str(path)}


@app.post("/api/maintenance/import")
def import_csv(payload: CsvPayload, session: LibrarySession = Depends(get_session)) -> Dict[str, int]:
    current = users.active_user(session.state)
    try:
        books = maintenance.read_books_csv(
            io.StringIO(payload.csv),
            current.id if current else "",
            now=session.clock(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    imported = _dispatch(session, ImportBooks(tuple(books))) if books else 0
    return {"imported": imported}


@app.get("/api/maintenance/export")
def export_csv(session: LibrarySession = Depends(get_session)) -> Response:
    buffer = io.StringIO()
    maintenance.export_catalog_csv(session.state, buffer)
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="home_librarian_catalog.csv"'},
    )
