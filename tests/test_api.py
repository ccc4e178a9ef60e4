from __future__ import annotations

from typing import Any, Dict, List

import pytest
import requests

import api


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self._payload


EDITION = {
    "title": "Dune",
    "authors": [{"name": "Frank Herbert"}],
    "cover": {"medium": "https://covers/m.jpg", "large": "https://covers/l.jpg"},
    "number_of_pages": 604,
    "publish_date": "2005",
    "publishers": [{"name": "Ace"}],
    "subjects": [{"name": "Science fiction"}, {"name": "Deserts"}, {"name": "Ecology"}, {"name": "Arrakis"}],
}


@pytest.fixture(autouse=True)
def _clear_cache():
    api.clear_cache()
    yield
    api.clear_cache()


@pytest.fixture
def calls(monkeypatch) -> List[Dict[str, Any]]:
    recorded: List[Dict[str, Any]] = []

    def fake_get(url, params=None, timeout=None):
        recorded.append({"url": url, "params": params})
        return FakeResponse({"ISBN:9780441013593": EDITION})

    monkeypatch.setattr(api.requests, "get", fake_get)
    return recorded


def test_normalize_isbn() -> None:
    assert api.normalize_isbn(" 978-0-441-01359-3 ") == "9780441013593"
    assert api.normalize_isbn("0-306-40615-x") == "030640615X"


def test_fetch_book_by_isbn_maps_edition(calls) -> None:
    draft = api.fetch_book_by_isbn("978-0441013593")

    assert calls[0]["params"]["bibkeys"] == "ISBN:9780441013593"
    assert calls[0]["params"]["jscmd"] == "data"
    assert draft["isbn"] == "9780441013593"
    assert draft["title"] == "Dune"
    assert draft["author"] == "Frank Herbert"
    assert draft["cover_url"] == "https://covers/l.jpg"
    assert draft["total_pages"] == 604
    assert draft["publisher"] == "Ace"
    assert draft["genres"] == ["Science fiction", "Deserts", "Ecology"]
    assert draft["tags"] == []
    assert draft["min_age"] == 0
    assert draft["summary"] == "Published by Ace in 2005."


def test_fetch_book_by_isbn_is_cached(calls) -> None:
    first = api.fetch_book_by_isbn("9780441013593")
    first["title"] = "changed"
    second = api.fetch_book_by_isbn("9780441013593")

    assert len(calls) == 1
    assert second["title"] == "Dune"


def test_unknown_isbn_returns_none(calls) -> None:
    assert api.fetch_book_by_isbn("1111111111") is None


def test_edition_without_authors_uses_placeholder() -> None:
    draft = api.draft_from_edition("1", {"title": "Anon", "cover": {"medium": "m"}})

    assert draft["author"] == "Unknown Author"
    assert draft["cover_url"] == "m"
    assert draft["genres"] == []


def test_lookup_failure_returns_none(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(api.requests, "get", boom)

    assert api.fetch_book_by_isbn("9780441013593") is None


def test_search_records_ranks_best_match_first(monkeypatch) -> None:
    docs = [
        {"title": "Dune Messiah", "author_name": ["Frank Herbert"], "edition_count": 50},
        {"title": "Dune", "author_name": ["Frank Herbert"], "edition_count": 3},
        {"title": "Desert Plants", "author_name": ["Someone Else"]},
    ]
    monkeypatch.setattr(api.requests, "get", lambda *a, **k: FakeResponse({"docs": docs}))

    results = api.search_records(api.OpenLibraryQuery(title="Dune", author="Herbert"))

    assert [doc["title"] for doc in results] == ["Dune", "Dune Messiah", "Desert Plants"]


def test_build_draft_from_search_doc() -> None:
    draft = api.build_draft(
        {
            "title": "Dune",
            "author_name": ["Frank Herbert"],
            "cover_i": 42,
            "isbn": ["9780441013593", "0441013597"],
            "publisher": ["Ace"],
            "first_publish_year": 1965,
            "subject": ["a", "b", "c", "d"],
        }
    )

    assert draft["isbn"] == "9780441013593"
    assert draft["cover_url"] == "https://covers.openlibrary.org/b/id/42-L.jpg"
    assert draft["publisher"] == "Ace"
    assert draft["published_date"] == "1965"
    assert draft["genres"] == ["a", "b", "c"]
