from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import OLLAMA_MODEL, OLLAMA_URL


class RecordNotFound(LookupError):
    """Raised when an operation targets an id that is not in the document."""


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BookCondition(str, Enum):
    NEW = "New"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
    DAMAGED = "Damaged"


class ReadStatus(str, Enum):
    UNREAD = "Unread"
    READING = "Reading"
    COMPLETED = "Completed"
    DNF = "Did Not Finish"
    WISHLIST = "Wishlist"


class Record(BaseModel):
    """Base for every persisted record: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_fields(model: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Map camelCase or snake_case keys onto field names, dropping unknown keys."""
    aliases = {info.alias: name for name, info in model.model_fields.items() if info.alias}
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        name = key if key in model.model_fields else aliases.get(key)
        if name is not None:
            normalized[name] = value
    return normalized


def _coerce_date(value: Any) -> Any:
    # Browser builds stored dates as "" or full ISO timestamps.
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return value[:10]
    if isinstance(value, datetime):
        return value.date()
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
LooseDate = Annotated[Optional[date], BeforeValidator(_coerce_date)]


# --------------------------------------------------------------------------- #
# Entities
# --------------------------------------------------------------------------- #
class Location(Record):
    id: str
    name: str
    type: str = "Room"
    parent_id: Optional[str] = None
    image_url: Optional[str] = None


class MediaAdaptation(Record):
    title: str
    type: str = "Movie"
    youtube_link: Optional[str] = None
    description: Optional[str] = None


class Book(Record):
    id: str
    isbn: str = ""
    title: str
    author: str = ""
    cover_url: Optional[str] = None
    summary: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    total_pages: Optional[int] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    language: Optional[str] = None
    series: Optional[str] = None
    series_index: Optional[str] = None
    custom_fields: Optional[Dict[str, str]] = None

    is_first_edition: bool = False
    is_signed: bool = False
    condition: BookCondition = BookCondition.GOOD
    purchase_price: Optional[float] = None
    estimated_value: Optional[float] = None
    purchase_date: Optional[str] = None
    location_id: Optional[str] = None
    added_date: UtcDatetime = Field(default_factory=utcnow)
    added_by_user_id: str = ""
    is_public: Optional[bool] = None

    amazon_link: Optional[str] = None
    min_age: Optional[int] = None
    parental_advice: Optional[str] = None
    understanding_guide: Optional[str] = None
    media_adaptations: List[MediaAdaptation] = Field(default_factory=list)
    cultural_reference: Optional[str] = None

    status: ReadStatus = ReadStatus.UNREAD


class ReadEntry(Record):
    book_id: str
    status: ReadStatus
    date_finished: LooseDate = None
    rating: Optional[float] = None
    read_count: Optional[int] = None


class Persona(Record):
    universe: str
    character: str
    reason: str = ""


class User(Record):
    id: str
    name: str
    email: Optional[str] = None
    dob: LooseDate = None
    gender: str = "Other"
    parent_role: Optional[str] = None
    education_level: str = "Other"
    profession: Optional[str] = None
    avatar_seed: str = ""
    history: List[ReadEntry] = Field(default_factory=list)
    favorites: List[str] = Field(default_factory=list)
    role: Literal["Admin", "User"] = "User"
    personas: Optional[List[Persona]] = None


class Loan(Record):
    id: str
    book_id: str
    borrower_name: str
    loan_date: UtcDatetime
    return_date: Optional[UtcDatetime] = None
    notes: Optional[str] = None


# --------------------------------------------------------------------------- #
# Settings
# --------------------------------------------------------------------------- #
class AiSettings(Record):
    provider: Literal["gemini", "ollama"] = "gemini"
    ollama_url: str = OLLAMA_URL
    ollama_model: str = OLLAMA_MODEL
    gemini_model: Optional[str] = None


class DbSettings(Record):
    type: Literal["sqlite", "postgres"] = "sqlite"
    host: Optional[str] = "localhost"
    user: Optional[str] = None
    password: Optional[str] = None
    name: str = "homelibrary"


class BackupSettings(Record):
    frequency: Literal["weekly", "daily", "manual"] = "weekly"
    location: Literal["local", "drive", "nas"] = "local"
    last_backup_date: Optional[UtcDatetime] = None
    nas_path: Optional[str] = None
    google_drive_connected: bool = False
    google_drive_user: Optional[str] = None


class AppState(Record):
    is_setup_complete: bool = False
    is_demo_mode: bool = False
    books: List[Book] = Field(default_factory=list)
    users: List[User] = Field(default_factory=list)
    locations: List[Location] = Field(default_factory=list)
    loans: List[Loan] = Field(default_factory=list)
    current_user: Optional[str] = None
    theme: Literal["dark", "light"] = "dark"
    ai_settings: AiSettings = Field(default_factory=AiSettings)
    db_settings: DbSettings = Field(default_factory=DbSettings)
    backup_settings: BackupSettings = Field(default_factory=BackupSettings)

    def book(self, book_id: str) -> Optional[Book]:
        return next((b for b in self.books if b.id == book_id), None)

    def user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return next((u for u in self.users if u.id == user_id), None)

    def location(self, location_id: Optional[str]) -> Optional[Location]:
        if not location_id:
            return None
        return next((loc for loc in self.locations if loc.id == location_id), None)


class AiRecommendation(Record):
    title: str
    author: str = ""
    reason: str = ""
    type: Literal["READ_NEXT", "BUY_NEXT"] = "READ_NEXT"
