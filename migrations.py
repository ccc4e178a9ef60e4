"""Versioned upgrade chain for the persisted library document.

Every document carries a ``schemaVersion`` key (absent on documents written by
the browser build, which count as version 0). Each step is a pure function
that takes a document at version N and returns a new document at version
N + 1; ``upgrade`` applies the steps in order. Steps only ever add missing
keys or drop derived ones, so existing data survives every upgrade.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

VERSION_KEY = "schemaVersion"

Document = Dict[str, Any]

DEFAULT_AI_SETTINGS: Document = {
    "provider": "gemini",
    "ollamaUrl": "http://localhost:11434",
    "ollamaModel": "llama3.2",
}
DEFAULT_DB_SETTINGS: Document = {"type": "sqlite", "host": "localhost", "name": "homelibrary"}
DEFAULT_BACKUP_SETTINGS: Document = {
    "frequency": "weekly",
    "location": "local",
    "googleDriveConnected": False,
}

TOP_LEVEL_DEFAULTS: Document = {
    "isSetupComplete": False,
    "isDemoMode": False,
    "books": [],
    "users": [],
    "locations": [],
    "loans": [],
    "currentUser": None,
    "theme": "dark",
    "aiSettings": DEFAULT_AI_SETTINGS,
    "dbSettings": DEFAULT_DB_SETTINGS,
    "backupSettings": DEFAULT_BACKUP_SETTINGS,
}

DERIVED_USER_FIELDS = ("age", "grade")

BOOK_DEFAULTS: Document = {
    "genres": [],
    "tags": [],
    "status": "Unread",
    "condition": "Good",
    "isFirstEdition": False,
    "isSigned": False,
}
USER_DEFAULTS: Document = {"history": [], "favorites": []}


def _fill_missing(target: Document, defaults: Document) -> Document:
    for key, value in defaults.items():
        if key not in target or (target[key] is None and value is not None):
            target[key] = copy.deepcopy(value)
    return target


def upgrade_v0_to_v1(document: Document) -> Document:
    """Add any top-level key introduced after the first release."""
    return _fill_missing(copy.deepcopy(document), TOP_LEVEL_DEFAULTS)


def upgrade_v1_to_v2(document: Document) -> Document:
    """Drop persisted age/grade; they are always derived from the date of birth."""
    upgraded = copy.deepcopy(document)
    for user in upgraded.get("users") or []:
        if isinstance(user, dict):
            for key in DERIVED_USER_FIELDS:
                user.pop(key, None)
    return upgraded


def upgrade_v2_to_v3(document: Document) -> Document:
    """Fill per-record defaults on books and users."""
    upgraded = copy.deepcopy(document)
    for book in upgraded.get("books") or []:
        if isinstance(book, dict):
            _fill_missing(book, BOOK_DEFAULTS)
    for user in upgraded.get("users") or []:
        if isinstance(user, dict):
            _fill_missing(user, USER_DEFAULTS)
    return upgraded


MIGRATIONS: List[Callable[[Document], Document]] = [
    upgrade_v0_to_v1,
    upgrade_v1_to_v2,
    upgrade_v2_to_v3,
]
CURRENT_SCHEMA_VERSION = len(MIGRATIONS)


def document_version(document: Document) -> int:
    value = document.get(VERSION_KEY, 0)
    try:
        version = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Unreadable schema version: {value!r}")
    if version < 0:
        raise ValueError(f"Negative schema version: {version}")
    return version


def upgrade(document: Document) -> Document:
    """Bring a document up to ``CURRENT_SCHEMA_VERSION``.

    The input is never modified. A document newer than this build is returned
    untouched; unknown keys are ignored when it is parsed.
    """
    if not isinstance(document, dict):
        raise ValueError("Library document must be a JSON object.")

    version = document_version(document)
    if version > CURRENT_SCHEMA_VERSION:
        logger.warning(
            "Document schema version %s is newer than supported version %s",
            version,
            CURRENT_SCHEMA_VERSION,
        )
        return copy.deepcopy(document)

    upgraded = document
    for step in MIGRATIONS[version:]:
        upgraded = step(upgraded)
        logger.debug("Applied %s", step.__name__)
    if upgraded is document:
        upgraded = copy.deepcopy(document)
    upgraded[VERSION_KEY] = CURRENT_SCHEMA_VERSION
    return upgraded
