from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

APP_DIR = Path(os.getenv("HOME_LIBRARIAN_DIR", "~/.home_librarian")).expanduser()

# App-level .env first, then the working directory one.
load_dotenv(APP_DIR / ".env")
load_dotenv()

STORAGE_KEY = "home_librarian"
BACKUP_DIR = APP_DIR / "backups"

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")
GEMINI_URL_TEMPLATE = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)

OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2")

LOAN_PERIOD_DAYS = 30
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
