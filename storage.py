from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple, Union

from config import APP_DIR, BACKUP_DIR, STORAGE_KEY
from migrations import CURRENT_SCHEMA_VERSION, VERSION_KEY, upgrade
from models import AppState, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = APP_DIR / f"{STORAGE_KEY}.json"
BACKUP_NAME_TEMPLATE = "home_librarian_backup_{stamp}.json"


def default_state() -> AppState:
    """The empty document used on first start and after a reset."""
    return AppState()


def parse_document(raw: Union[str, bytes]) -> AppState:
    """Parse, upgrade and validate a serialized document.

    Raises ``ValueError`` (JSON and pydantic errors both subclass it) when the
    document cannot be read. Nothing is applied partially.
    """
    data = json.loads(raw)
    return AppState.model_validate(upgrade(data))


def serialize_state(state: AppState) -> str:
    document = state.to_document()
    document[VERSION_KEY] = CURRENT_SCHEMA_VERSION
    return json.dumps(document, ensure_ascii=False, indent=2)


class StateStore:
    """JSON-file store for the single library document."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or DEFAULT_STATE_PATH)
        self._lock = threading.Lock()

    # --------------------------------------------------------------------- #
    # Load / save
    # --------------------------------------------------------------------- #
    def load(self) -> AppState:
        with self._lock:
            if not self.path.exists():
                return default_state()
            try:
                raw = self.path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as error:
                logger.error("Failed to read %s: %s", self.path, error)
                return default_state()

        try:
            return parse_document(raw)
        except ValueError as error:
            logger.error("Failed to load state from %s: %s", self.path, error)
            return default_state()

    def save(self, state: AppState) -> bool:
        """Persist the whole document. Failures are logged, never raised."""
        try:
            payload = serialize_state(state)
        except (TypeError, ValueError) as error:
            logger.error("Failed to serialize state: %s", error)
            return False

        with self._lock:
            try:
                self._write_atomic(self.path, payload)
            except OSError as error:
                logger.error("Failed to save state to %s: %s", self.path, error)
                return False
        return True

    def reset(self) -> AppState:
        state = default_state()
        self.save(state)
        return state

    # --------------------------------------------------------------------- #
    # Backups
    # --------------------------------------------------------------------- #
    def export_backup(
        self,
        state: AppState,
        directory: Optional[Path] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Tuple[Path, AppState]:
        """Write a timestamped copy of the document.

        Returns the backup path and the state with ``last_backup_date`` set.
        Unlike ``save`` this raises ``OSError``: the caller asked for a file.
        """
        now = now or utcnow()
        target_dir = Path(directory or BACKUP_DIR)
        stamp = now.strftime("%Y%m%dT%H%M%SZ")
        target = target_dir / BACKUP_NAME_TEMPLATE.format(stamp=stamp)

        settings = state.backup_settings.model_copy(update={"last_backup_date": now})
        updated = state.model_copy(update={"backup_settings": settings})
        self._write_atomic(target, serialize_state(updated))
        logger.info("Wrote backup %s", target)
        return target, updated

    def import_document(self, path: Path) -> AppState:
        """Read a backup (or a browser export) through the migration chain."""
        raw = Path(path).read_text(encoding="utf-8")
        return parse_document(raw)

    # --------------------------------------------------------------------- #
    # Utility helpers
    # --------------------------------------------------------------------- #
    @staticmethod
    def _write_atomic(target: Path, payload: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        )
        try:
            with handle:
                handle.write(payload)
            os.replace(handle.name, target)
        finally:
            # Only left behind when the replace failed.
            if os.path.exists(handle.name):
                os.unlink(handle.name)


# ------------------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------------------
def get_store(path: Optional[Path] = None) -> StateStore:
    return StateStore(path=path)
