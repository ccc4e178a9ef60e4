"""AI enrichment: cover scans, reading recommendations and personas.

Two providers are supported, picked by ``AiSettings.provider``: Gemini through
its REST ``generateContent`` endpoint and a local Ollama server through
``/api/generate``. Both are asked for JSON. Any transport or parsing failure
is logged and degrades to an empty result, so a missing AI never blocks
adding a book by hand.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Literal, Optional
from urllib.parse import quote_plus

import requests
from pydantic import ValidationError

from config import GEMINI_API_KEY, GEMINI_MODEL, GEMINI_URL_TEMPLATE, HTTP_TIMEOUT
from media import strip_data_url
from models import (
    AiRecommendation,
    AiSettings,
    Book,
    BookCondition,
    MediaAdaptation,
    Persona,
    User,
    normalize_fields,
)
from users import is_age_appropriate, user_age

logger = logging.getLogger(__name__)

RecommendationKind = Literal["READ_NEXT", "BUY_NEXT"]

AMAZON_SEARCH_TEMPLATE = "https://www.amazon.in/s?k={query}"
HISTORY_PROMPT_LIMIT = 15

SCAN_PROMPT = (
    "Analyze this book for the Home Librarian app (India context).\n"
    "1. Extract ISBN, Title, Author.\n"
    "2. PROVIDE A SUMMARY (approx 50 words).\n"
    "3. Estimated Value in INR (be realistic, used book market).\n"
    "4. Insights: Understanding Guide & Parental Advice.\n"
    "5. Media: Any movies/shows?\n"
    "6. Min Age.\n"
    "Respond with a JSON object with the keys isbn, title, author, summary, "
    "genres[], tags[], isFirstEdition, estimatedValue (number), totalPages, "
    "minAge (number), parentalAdvice, understandingGuide, "
    "mediaAdaptations[{title, type, youtubeLink, description}], culturalReference."
)

PERSONA_UNIVERSES = (
    "Marvel, DC, Star Wars, Harry Potter, Tolkien, Disney, Star Trek, "
    "Sherlock Holmes, Game of Thrones"
)


class AiUnavailable(RuntimeError):
    """The provider could not be reached or returned something unusable."""


@dataclass(frozen=True)
class AiTarget:
    provider: str
    endpoint: str
    model: str


def target_from_settings(settings: AiSettings) -> AiTarget:
    if settings.provider == "ollama":
        return AiTarget("ollama", settings.ollama_url.rstrip("/"), settings.ollama_model)
    model = settings.gemini_model or GEMINI_MODEL
    return AiTarget("gemini", GEMINI_URL_TEMPLATE.format(model=model), model)


# ---------------------------------------------------------------------------
# Provider calls
# ---------------------------------------------------------------------------
def _parse_json(text: Optional[str]) -> Any:
    if not text:
        raise AiUnavailable("Empty response")
    try:
        return json.loads(text)
    except ValueError as error:
        raise AiUnavailable(f"Response was not JSON: {error}") from error


def _call_gemini(target: AiTarget, prompt: str, image_b64: Optional[str] = None) -> Any:
    if not GEMINI_API_KEY:
        raise AiUnavailable("GEMINI_API_KEY is not set")

    parts: List[Dict[str, Any]] = []
    if image_b64:
        parts.append(
            {"inline_data": {"mime_type": "image/jpeg", "data": strip_data_url(image_b64)}}
        )
    parts.append({"text": prompt})
    body = {
        "contents": [{"parts": parts}],
        "generationConfig": {"responseMimeType": "application/json"},
    }
    try:
        response = requests.post(
            target.endpoint,
            params={"key": GEMINI_API_KEY},
            json=body,
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as error:
        raise AiUnavailable(f"Gemini request failed: {error}") from error

    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as error:
        raise AiUnavailable("Gemini returned no candidates") from error
    return _parse_json(text)


def _call_ollama(target: AiTarget, prompt: str, image_b64: Optional[str] = None) -> Any:
    body: Dict[str, Any] = {
        "model": target.model,
        "prompt": prompt,
        "stream": False,
        "format": "json",
    }
    if image_b64:
        body["images"] = [strip_data_url(image_b64)]
    try:
        response = requests.post(
            f"{target.endpoint}/api/generate",
            json=body,
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as error:
        raise AiUnavailable(f"Ollama request failed: {error}") from error
    if not isinstance(payload, dict):
        raise AiUnavailable("Ollama returned an unexpected payload")
    return _parse_json(payload.get("response"))


def generate_json(settings: AiSettings, prompt: str, image_b64: Optional[str] = None) -> Any:
    target = target_from_settings(settings)
    if target.provider == "ollama":
        return _call_ollama(target, prompt, image_b64)
    return _call_gemini(target, prompt, image_b64)


def _as_list(value: Any) -> List[Any]:
    # Ollama's json mode tends to wrap arrays in an object.
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for item in value.values():
            if isinstance(item, list):
                return item
        return [value]
    return []


# ---------------------------------------------------------------------------
# Cover scan
# ---------------------------------------------------------------------------
def amazon_search_link(title: str, author: str) -> str:
    return AMAZON_SEARCH_TEMPLATE.format(query=quote_plus(f"{title} {author}".strip()))


def _number(value: Any, default: Optional[float] = None) -> Optional[float]:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return default


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item and str(item).strip()]


def normalize_scan(raw: Any) -> Dict[str, Any]:
    """Fill the defaults a scanned draft always carries.

    Any of the descriptive fields may be missing; lists default to empty,
    the value to 0 and the condition to Good.
    """
    if not isinstance(raw, dict):
        return {}
    draft = normalize_fields(Book, raw)
    for key in ("id", "added_date", "added_by_user_id", "location_id", "status"):
        draft.pop(key, None)

    draft["genres"] = _strings(draft.get("genres"))
    draft["tags"] = _strings(draft.get("tags"))
    adaptations = []
    for item in _as_list(draft.get("media_adaptations")):
        try:
            adaptations.append(MediaAdaptation.model_validate(item).model_dump())
        except ValidationError:
            logger.debug("Dropping malformed adaptation %r", item)
    draft["media_adaptations"] = adaptations

    draft["estimated_value"] = _number(draft.get("estimated_value"), 0)
    min_age = _number(draft.get("min_age"))
    draft["min_age"] = int(min_age) if min_age is not None else None
    pages = _number(draft.get("total_pages"))
    draft["total_pages"] = int(pages) if pages else None
    draft["is_first_edition"] = bool(draft.get("is_first_edition"))
    draft["is_signed"] = False
    draft["condition"] = BookCondition.GOOD.value
    if draft.get("isbn") is not None:
        draft["isbn"] = str(draft["isbn"])
    draft["amazon_link"] = amazon_search_link(
        str(draft.get("title") or ""), str(draft.get("author") or "")
    )
    return draft


def scan_book_image(image_b64: str, settings: AiSettings) -> Dict[str, Any]:
    """Identify a book from a cover photo. Returns ``{}`` when the AI fails."""
    try:
        raw = generate_json(settings, SCAN_PROMPT, image_b64)
    except AiUnavailable as error:
        logger.warning("Cover scan failed: %s", error)
        return {}
    return normalize_scan(raw)


# ---------------------------------------------------------------------------
# Recommendations and personas
# ---------------------------------------------------------------------------
def _history_titles(user: User, books: Iterable[Book], limit: Optional[int] = None) -> List[Book]:
    by_id = {book.id: book for book in books}
    entries = user.history[:limit] if limit else user.history
    return [by_id[entry.book_id] for entry in entries if entry.book_id in by_id]


def recommendation_candidates(
    user: User,
    books: Iterable[Book],
    today: Optional[date] = None,
) -> List[Book]:
    """Library books the user has not touched yet and is old enough for."""
    seen = {entry.book_id for entry in user.history}
    return [
        book
        for book in books
        if book.id not in seen and is_age_appropriate(user, book, today)
    ]


def recommendation_prompt(
    user: User,
    books: List[Book],
    kind: RecommendationKind,
    today: Optional[date] = None,
) -> str:
    age = user_age(user, today)
    age_label = age if age is not None else "unknown"
    read = ", ".join(
        f"{book.title} ({book.author})"
        for book in _history_titles(user, books, HISTORY_PROMPT_LIMIT)
    )
    if kind == "BUY_NEXT":
        return (
            f"User (Age {age_label}) has read: [{read}]. "
            "Suggest 5 NEW books to buy (available in India). "
            "Return a JSON array [{title, author, reason, type}] with type BUY_NEXT."
        )
    library = [
        f"{book.title} by {book.author}"
        for book in recommendation_candidates(user, books, today)
    ]
    return (
        f"User (Age {age_label}) has read: [{read}]. "
        "Suggest 3 books from the provided LIBRARY_LIST that they haven't read. "
        "Focus on finding hidden gems or sequels. "
        f"LIBRARY_LIST: {json.dumps(library)} "
        "Return a JSON array [{title, author, reason, type}] with type READ_NEXT."
    )


def parse_recommendations(raw: Any, kind: RecommendationKind) -> List[AiRecommendation]:
    results: List[AiRecommendation] = []
    for item in _as_list(raw):
        if not isinstance(item, dict):
            continue
        try:
            results.append(AiRecommendation.model_validate({**item, "type": kind}))
        except ValidationError:
            logger.debug("Dropping malformed recommendation %r", item)
    return results


def get_recommendations(
    user: User,
    books: List[Book],
    kind: RecommendationKind,
    settings: AiSettings,
    today: Optional[date] = None,
) -> List[AiRecommendation]:
    """Ask the AI what the user should read or buy next.

    READ_NEXT answers are kept only when they name a book on the user's
    candidate shelf; there is nothing to ask for when that shelf is empty.
    """
    candidates = recommendation_candidates(user, books, today)
    if kind == "READ_NEXT" and not candidates:
        return []

    try:
        raw = generate_json(settings, recommendation_prompt(user, books, kind, today))
    except AiUnavailable as error:
        logger.warning("Recommendations failed: %s", error)
        return []

    results = parse_recommendations(raw, kind)
    if kind == "READ_NEXT":
        allowed = {book.title.strip().lower() for book in candidates}
        results = [rec for rec in results if rec.title.strip().lower() in allowed][:3]
    else:
        results = results[:5]
    return results


def persona_prompt(user: User, books: List[Book]) -> str:
    history = "; ".join(
        f"{book.title} by {book.author} (Genre: {','.join(book.genres)})"
        for book in _history_titles(user, books)
    )
    return (
        f'Based on this reading history: [{history}], assign 3 "Pop Culture Personas" '
        "to this user. Examples: If they read Fantasy -> Universe: LOTR, Character: Bilbo. "
        "If SciFi -> Universe: Star Trek, Character: Data. "
        f"Universes to choose from: {PERSONA_UNIVERSES}. "
        "Return a JSON array [{universe, character, reason}]."
    )


def generate_personas(user: User, books: List[Book], settings: AiSettings) -> List[Persona]:
    try:
        raw = generate_json(settings, persona_prompt(user, books))
    except AiUnavailable as error:
        logger.warning("Persona generation failed: %s", error)
        return []

    personas: List[Persona] = []
    for item in _as_list(raw):
        try:
            personas.append(Persona.model_validate(item))
        except ValidationError:
            logger.debug("Dropping malformed persona %r", item)
    return personas[:3]


def list_ollama_models(url: str) -> List[str]:
    try:
        response = requests.get(f"{url.rstrip('/')}/api/tags", timeout=HTTP_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as error:
        logger.warning("Unable to list Ollama models at %s: %s", url, error)
        return []
    models = data.get("models", []) if isinstance(data, dict) else []
    return [str(model["name"]) for model in models if isinstance(model, dict) and model.get("name")]


# ---------------------------------------------------------------------------
# Draft merging
# ---------------------------------------------------------------------------
def merge_drafts(drafts: Iterable[Optional[Dict[str, Any]]]) -> Dict[str, Any]:
    """Combine partial records (ISBN lookup, AI scan, manual form).

    Scalars: the first non-empty value wins. Lists are unioned in order.
    """
    merged: Dict[str, Any] = {}
    for draft in drafts:
        if not draft:
            continue
        for key, value in draft.items():
            if isinstance(value, list):
                current = merged.setdefault(key, [])
                for item in value:
                    if item not in current:
                        current.append(item)
                continue
            if value is None or value == "":
                continue
            if merged.get(key) in (None, ""):
                merged[key] = value
    return merged
