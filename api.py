from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from threading import RLock
from typing import Any, Dict, List, Optional

import requests

from config import HTTP_TIMEOUT

logger = logging.getLogger(__name__)

BOOKS_API_URL = "https://openlibrary.org/api/books"
SEARCH_API_URL = "https://openlibrary.org/search.json"
COVER_URL_TEMPLATE = "https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"
UNKNOWN_AUTHOR = "Unknown Author"

SEARCH_FIELDS = [
    "title",
    "author_name",
    "first_publish_year",
    "edition_count",
    "cover_i",
    "isbn",
    "subject",
    "publisher",
    "number_of_pages_median",
    "key",
]


def normalize_isbn(value: str) -> str:
    """Strip hyphens and whitespace from a scanned or typed ISBN."""
    return re.sub(r"[\s-]", "", value or "").upper()


# ---------------------------------------------------------------------------
# ISBN lookup
# ---------------------------------------------------------------------------
_CACHE_CAPACITY = 128
_lookup_cache: OrderedDict[str, Optional[Dict[str, Any]]] = OrderedDict()
_cache_lock = RLock()


def _names(entries: Any) -> List[str]:
    if not isinstance(entries, list):
        return []
    names = []
    for entry in entries:
        name = entry.get("name") if isinstance(entry, dict) else entry
        if name:
            names.append(str(name))
    return names


def draft_from_edition(isbn: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a ``jscmd=data`` edition payload into a partial book record."""
    authors = _names(data.get("authors"))
    publishers = _names(data.get("publishers"))
    cover = data.get("cover") or {}
    published = data.get("publish_date")
    publisher = publishers[0] if publishers else None

    return {
        "isbn": isbn,
        "title": data.get("title") or "",
        "author": ", ".join(authors) or UNKNOWN_AUTHOR,
        "cover_url": cover.get("large") or cover.get("medium") or None,
        "total_pages": data.get("number_of_pages"),
        "published_date": published,
        "publisher": publisher,
        "genres": _names(data.get("subjects"))[:3],
        "tags": [],
        "min_age": 0,
        "summary": f"Published by {publisher or 'Unknown'} in {published or 'an unknown year'}.",
    }


def fetch_book_by_isbn(isbn: str, *, use_cache: bool = True) -> Optional[Dict[str, Any]]:
    """Look an ISBN up on Open Library.

    Returns a partial book record, or ``None`` when the ISBN is unknown or the
    service cannot be reached.
    """
    clean = normalize_isbn(isbn)
    if not clean:
        return None

    if use_cache:
        with _cache_lock:
            if clean in _lookup_cache:
                _lookup_cache.move_to_end(clean)
                cached = _lookup_cache[clean]
                return dict(cached) if cached else None

    key = f"ISBN:{clean}"
    try:
        response = requests.get(
            BOOKS_API_URL,
            params={"bibkeys": key, "jscmd": "data", "format": "json"},
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as error:
        logger.warning("Open Library lookup for %s failed: %s", clean, error)
        return None

    edition = data.get(key) if isinstance(data, dict) else None
    draft = draft_from_edition(clean, edition) if isinstance(edition, dict) else None
    if draft is None:
        logger.info("No Open Library record for %s", clean)

    with _cache_lock:
        _lookup_cache[clean] = draft
        if len(_lookup_cache) > _CACHE_CAPACITY:
            _lookup_cache.popitem(last=False)
    return dict(draft) if draft else None


def clear_cache() -> None:
    with _cache_lock:
        _lookup_cache.clear()


# ---------------------------------------------------------------------------
# Title / author search
# ---------------------------------------------------------------------------
@dataclass
class OpenLibraryQuery:
    """A manual search used when a barcode is missing or unreadable."""

    title: Optional[str] = None
    author: Optional[str] = None
    general: Optional[str] = None
    limit: int = 10
    fields: List[str] = field(default_factory=lambda: list(SEARCH_FIELDS))

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.general:
            params["q"] = self.general
        if self.title:
            params["title"] = self.title
        if self.author:
            params["author"] = self.author
        params["limit"] = str(self.limit)
        if self.fields:
            params["fields"] = ",".join(self.fields)
        return params


def search_records(query: OpenLibraryQuery) -> List[Dict[str, Any]]:
    """Search Open Library and return docs best match first."""
    try:
        response = requests.get(SEARCH_API_URL, params=query.to_params(), timeout=HTTP_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as error:
        logger.warning("Unable to reach Open Library: %s", error)
        return []

    docs = data.get("docs", []) if isinstance(data, dict) else []
    return rank_docs(query, docs or [])


def rank_docs(query: OpenLibraryQuery, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def score(doc: Dict[str, Any]) -> float:
        total = 0.0
        title = (doc.get("title") or "").lower()
        authors = [str(name).lower() for name in doc.get("author_name", [])]

        if query.title:
            wanted = query.title.lower()
            total += 5.0 * SequenceMatcher(None, wanted, title).ratio()
            if wanted == title:
                total += 2.0
            elif wanted in title:
                total += 1.0

        if query.author and authors:
            wanted = query.author.lower()
            total += 4.0 * max(SequenceMatcher(None, wanted, name).ratio() for name in authors)
            if any(wanted in name for name in authors):
                total += 2.0

        editions = doc.get("edition_count")
        if isinstance(editions, int):
            total += min(editions, 5) * 0.1
        return total

    ranked = sorted(enumerate(docs), key=lambda item: (-score(item[1]), item[0]))
    return [doc for _, doc in ranked]


def _first(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return str(value[0]) if value else None
    return str(value) if value else None


def build_draft(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Create a partial book record from a search doc."""
    cover_id = doc.get("cover_i")
    year = doc.get("first_publish_year")
    return {
        "isbn": _first(doc.get("isbn")) or "",
        "title": doc.get("title") or "",
        "author": ", ".join(doc.get("author_name") or []) or UNKNOWN_AUTHOR,
        "cover_url": COVER_URL_TEMPLATE.format(cover_id=cover_id) if cover_id else None,
        "publisher": _first(doc.get("publisher")),
        "published_date": str(year) if year else None,
        "total_pages": doc.get("number_of_pages_median"),
        "genres": list(doc.get("subject") or [])[:3],
    }


def describe_result(doc: Dict[str, Any], index: int) -> str:
    """Printable summary of a search doc for the interactive prompt."""
    title = doc.get("title") or "Untitled"
    authors = ", ".join(doc.get("author_name", [])) or "Unknown author"
    lines = [f"{index}. {title}", f"   Author(s): {authors}"]
    if doc.get("first_publish_year"):
        lines.append(f"   First Published: {doc['first_publish_year']}")
    isbn = _first(doc.get("isbn"))
    if isbn:
        lines.append(f"   ISBN: {isbn}")
    return "\n".join(lines)
