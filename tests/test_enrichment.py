from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict

import pytest
import requests

import enrichment
from conftest import TODAY
from models import AiSettings, Book, ReadEntry, ReadStatus, User


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self._payload


OLLAMA = AiSettings(provider="ollama", ollama_url="http://nas:11434/", ollama_model="llava")
GEMINI = AiSettings(provider="gemini")

LIBRARY = [
    Book(id="b1", title="Dune", author="Frank Herbert", genres=["Sci-Fi"], min_age=14),
    Book(id="b2", title="Matilda", author="Roald Dahl", genres=["Children"], min_age=7),
    Book(id="b3", title="The Hobbit", author="J.R.R. Tolkien", genres=["Fantasy"], min_age=9),
]
KID = User(
    id="u1",
    name="Kabir",
    dob=date(2014, 1, 15),
    history=[ReadEntry(book_id="b3", status=ReadStatus.COMPLETED)],
)


class OllamaStub(list):
    """Records each request and answers with ``reply`` as the model output."""

    def __init__(self) -> None:
        super().__init__()
        self.reply = "{}"

    def post(self, url, json=None, params=None, timeout=None) -> FakeResponse:
        self.append({"url": url, "json": json, "params": params})
        return FakeResponse({"response": self.reply})


@pytest.fixture
def ollama_post(monkeypatch) -> OllamaStub:
    stub = OllamaStub()
    monkeypatch.setattr(enrichment.requests, "post", stub.post)
    return stub


def test_scan_with_ollama_sends_stripped_image(ollama_post) -> None:
    ollama_post.reply = json.dumps(
        {"title": "Dune", "author": "Frank Herbert", "minAge": "14", "estimatedValue": "450"}
    )

    draft = enrichment.scan_book_image("data:image/jpeg;base64,QUJD", OLLAMA)

    body = ollama_post[0]["json"]
    assert ollama_post[0]["url"] == "http://nas:11434/api/generate"
    assert body["model"] == "llava"
    assert body["stream"] is False
    assert body["format"] == "json"
    assert body["images"] == ["QUJD"]
    assert draft["title"] == "Dune"
    assert draft["min_age"] == 14
    assert draft["estimated_value"] == 450
    assert draft["condition"] == "Good"
    assert draft["is_signed"] is False
    assert draft["genres"] == [] and draft["tags"] == [] and draft["media_adaptations"] == []
    assert draft["amazon_link"] == "https://www.amazon.in/s?k=Dune+Frank+Herbert"


def test_scan_failure_returns_empty_draft(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(enrichment.requests, "post", boom)

    assert enrichment.scan_book_image("QUJD", OLLAMA) == {}


def test_scan_with_non_json_reply_returns_empty_draft(ollama_post) -> None:
    ollama_post.reply = "I think this is Dune"

    assert enrichment.scan_book_image("QUJD", OLLAMA) == {}


def test_gemini_without_key_returns_empty_draft(monkeypatch) -> None:
    monkeypatch.setattr(enrichment, "GEMINI_API_KEY", None)

    assert enrichment.scan_book_image("QUJD", GEMINI) == {}


def test_gemini_request_shape(monkeypatch) -> None:
    recorded: Dict[str, Any] = {}

    def fake_post(url, json=None, params=None, timeout=None):
        recorded.update(url=url, json=json, params=params)
        text = '{"title": "Dune", "mediaAdaptations": [{"title": "Dune", "type": "Movie"}]}'
        return FakeResponse({"candidates": [{"content": {"parts": [{"text": text}]}}]})

    monkeypatch.setattr(enrichment, "GEMINI_API_KEY", "secret")
    monkeypatch.setattr(enrichment.requests, "post", fake_post)

    draft = enrichment.scan_book_image("data:image/png;base64,QUJD", GEMINI)

    assert recorded["url"].endswith(":generateContent")
    assert recorded["params"] == {"key": "secret"}
    parts = recorded["json"]["contents"][0]["parts"]
    assert parts[0]["inline_data"]["data"] == "QUJD"
    assert recorded["json"]["generationConfig"]["responseMimeType"] == "application/json"
    assert draft["media_adaptations"][0]["title"] == "Dune"
    assert draft["estimated_value"] == 0


def test_read_next_candidates_are_unread_and_age_appropriate() -> None:
    candidates = enrichment.recommendation_candidates(KID, LIBRARY, TODAY)

    assert [book.id for book in candidates] == ["b2"]


def test_read_next_prompt_lists_only_candidates() -> None:
    prompt = enrichment.recommendation_prompt(KID, LIBRARY, "READ_NEXT", TODAY)

    assert "User (Age 10) has read: [The Hobbit (J.R.R. Tolkien)]" in prompt
    assert "Matilda by Roald Dahl" in prompt
    assert "Dune by Frank Herbert" not in prompt


def test_read_next_keeps_only_library_titles(ollama_post) -> None:
    ollama_post.reply = json.dumps(
        {
            "recommendations": [
                {"title": "Matilda", "author": "Roald Dahl", "reason": "Funny"},
                {"title": "Dune", "author": "Frank Herbert", "reason": "Too old"},
                {"title": "Not In Library", "author": "X"},
            ]
        }
    )

    recs = enrichment.get_recommendations(KID, LIBRARY, "READ_NEXT", OLLAMA, TODAY)

    assert [rec.title for rec in recs] == ["Matilda"]
    assert recs[0].type == "READ_NEXT"


def test_buy_next_is_not_limited_to_library(ollama_post) -> None:
    ollama_post.reply = json.dumps(
        [{"title": f"Book {n}", "author": "A", "reason": "r"} for n in range(7)]
    )

    recs = enrichment.get_recommendations(KID, LIBRARY, "BUY_NEXT", OLLAMA, TODAY)

    assert len(recs) == 5
    assert all(rec.type == "BUY_NEXT" for rec in recs)
    assert "Suggest 5 NEW books" in ollama_post[0]["json"]["prompt"]


def test_read_next_with_nothing_left_skips_the_call(ollama_post) -> None:
    reader = KID.model_copy(
        update={"history": [ReadEntry(book_id=b.id, status=ReadStatus.COMPLETED) for b in LIBRARY]}
    )

    assert enrichment.get_recommendations(reader, LIBRARY, "READ_NEXT", OLLAMA, TODAY) == []
    assert ollama_post == []


def test_generate_personas(ollama_post) -> None:
    ollama_post.reply = json.dumps(
        [
            {"universe": "Tolkien", "character": "Bilbo", "reason": "Hobbit fan"},
            {"universe": "Marvel"},
        ]
    )

    personas = enrichment.generate_personas(KID, LIBRARY, OLLAMA)

    assert [(p.universe, p.character) for p in personas] == [("Tolkien", "Bilbo")]
    assert "The Hobbit by J.R.R. Tolkien (Genre: Fantasy)" in ollama_post[0]["json"]["prompt"]


def test_list_ollama_models(monkeypatch) -> None:
    payload = {"models": [{"name": "llama3.2"}, {"name": "llava"}, {}]}
    monkeypatch.setattr(enrichment.requests, "get", lambda *a, **k: FakeResponse(payload))

    assert enrichment.list_ollama_models("http://nas:11434") == ["llama3.2", "llava"]


def test_list_ollama_models_offline(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(enrichment.requests, "get", boom)

    assert enrichment.list_ollama_models("http://nas:11434") == []


def test_merge_drafts_prefers_first_value_and_unions_lists() -> None:
    lookup = {"title": "Dune", "author": "Frank Herbert", "genres": ["Sci-Fi"], "summary": ""}
    scan = {"title": "DUNE", "summary": "Spice.", "genres": ["Sci-Fi", "Classic"], "min_age": 14}

    merged = enrichment.merge_drafts([lookup, None, scan])

    assert merged["title"] == "Dune"
    assert merged["summary"] == "Spice."
    assert merged["genres"] == ["Sci-Fi", "Classic"]
    assert merged["min_age"] == 14
