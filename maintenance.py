from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, List, Optional, Union

import pandas as pd

from catalog import build_book
from locations import resolve_display_name
from loans import partition_loans
from models import AppState, BackupSettings, Book, Loan, Location, as_utc, utcnow

logger = logging.getLogger(__name__)

CsvSource = Union[str, Path, IO[str]]

IMPORT_TAG = "Imported"
EXPORT_COLUMNS = [
    "Title",
    "Author",
    "ISBN",
    "Location",
    "Condition",
    "Status",
    "Estimated Value",
    "Added Date",
]
BACKUP_INTERVALS = {"daily": timedelta(days=1), "weekly": timedelta(days=7)}


@dataclass
class HealthReport:
    homeless_books: List[Book] = field(default_factory=list)
    overdue_loans: List[Loan] = field(default_factory=list)
    orphan_loans: List[Loan] = field(default_factory=list)
    dangling_locations: List[Location] = field(default_factory=list)
    cyclic_locations: List[Location] = field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return not any(
            (
                self.homeless_books,
                self.overdue_loans,
                self.orphan_loans,
                self.dangling_locations,
                self.cyclic_locations,
            )
        )


def _in_cycle(state: AppState, location: Location) -> bool:
    seen = {location.id}
    current = state.location(location.parent_id)
    while current is not None:
        if current.id == location.id:
            return True
        if current.id in seen:
            return False
        seen.add(current.id)
        current = state.location(current.parent_id)
    return False


def health_report(state: AppState, now: Optional[datetime] = None) -> HealthReport:
    now = now or utcnow()
    book_ids = {book.id for book in state.books}
    return HealthReport(
        homeless_books=[book for book in state.books if not book.location_id],
        overdue_loans=partition_loans(state.loans, now).overdue,
        orphan_loans=[loan for loan in state.loans if loan.book_id not in book_ids],
        dangling_locations=[
            loc
            for loc in state.locations
            if loc.parent_id and state.location(loc.parent_id) is None
        ],
        cyclic_locations=[loc for loc in state.locations if _in_cycle(state, loc)],
    )


def backup_due(settings: BackupSettings, now: Optional[datetime] = None) -> bool:
    interval = BACKUP_INTERVALS.get(settings.frequency)
    if interval is None:
        return False
    if settings.last_backup_date is None:
        return True
    return as_utc(now or utcnow()) - settings.last_backup_date >= interval


# ---------------------------------------------------------------------------
# CSV import / export
# ---------------------------------------------------------------------------
def read_books_csv(
    source: CsvSource,
    added_by_user_id: str = "",
    *,
    now: Optional[datetime] = None,
) -> List[Book]:
    """Read books from a ``Title, Author, ISBN`` CSV.

    Columns are taken by position after the header row. Rows without an
    author column are skipped; a blank title becomes "Imported Book".
    """
    frame = pd.read_csv(source, dtype=str, keep_default_na=False, skip_blank_lines=True)
    if frame.shape[1] < 2:
        logger.warning("CSV import needs at least Title and Author columns")
        return []
    frame = frame.fillna("")

    now = now or utcnow()
    books: List[Book] = []
    for row in frame.itertuples(index=False):
        values = [str(value).strip() for value in row]
        title, author = values[0], values[1]
        if not author:
            logger.debug("Skipping CSV row without an author: %r", title)
            continue
        isbn = values[2] if len(values) > 2 else ""
        books.append(
            build_book(
                {
                    "title": title or "Imported Book",
                    "author": author,
                    "isbn": isbn,
                    "tags": [IMPORT_TAG],
                },
                added_by_user_id=added_by_user_id,
                now=now,
            )
        )
    logger.info("Parsed %d books from CSV", len(books))
    return books


def catalog_frame(state: AppState) -> pd.DataFrame:
    rows = [
        {
            "Title": book.title,
            "Author": book.author,
            "ISBN": book.isbn,
            "Location": resolve_display_name(state.locations, book.location_id),
            "Condition": book.condition.value,
            "Status": book.status.value,
            "Estimated Value": book.estimated_value,
            "Added Date": book.added_date.isoformat(),
        }
        for book in state.books
    ]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_catalog_csv(state: AppState, target: Optional[CsvSource] = None) -> pd.DataFrame:
    """One row per book, placement shown by display name.

    The first three columns match the import layout, so an export can be
    re-imported.
    """
    frame = catalog_frame(state)
    if target is not None:
        frame.to_csv(target, index=False)
    return frame
