from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas

import loans
import locations
import maintenance
import users
from api import OpenLibraryQuery, build_draft, describe_result, fetch_book_by_isbn, search_records
from config import configure_logging
from enrichment import merge_drafts
from models import RecordNotFound
from state import AddBook, CreateLoan, ImportBooks, LibrarySession, MarkReturned
from storage import get_store

PAGE_SIZE = 5


class QuitSession(Exception):
    """Raised when the user types 'quit' at any prompt."""


def ask(prompt: str) -> str:
    response = input(prompt).strip()
    if response.lower() == "quit":
        raise QuitSession()
    return response


def confirm(prompt: str) -> bool:
    return ask(f"{prompt} (y/n): ").lower() in {"y", "yes"}


def print_draft(draft: Dict[str, Any]) -> None:
    """Print the fields that will be saved for a new book."""
    for key in ("title", "author", "isbn", "publisher", "published_date", "genres"):
        value = draft.get(key)
        if value:
            print(f"   {key}: {value}")


def choose_result(docs: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Let the user page through search results and pick one."""
    if not docs:
        print("No books matched your search.")
        return None

    offset = 0
    while offset < len(docs):
        for idx, doc in enumerate(docs[offset : offset + PAGE_SIZE], start=offset + 1):
            print(describe_result(doc, idx))
        print()
        response = ask(
            "Enter the number of a book to use it, 'd <number>' for full details, "
            "'n' to view more, 's' to skip: "
        )
        normalized = response.lower()

        if normalized.startswith("d"):
            remainder = response[1:].strip()
            if remainder.isdigit() and 1 <= int(remainder) <= len(docs):
                print(json.dumps(docs[int(remainder) - 1], indent=2, ensure_ascii=False))
            else:
                print("Use the format 'd <number>' to view all fields for a result.")
            continue
        if normalized in {"s", "skip"}:
            return None
        if normalized in {"n", "next"}:
            offset += PAGE_SIZE
            continue
        if response.isdigit() and 1 <= int(response) <= len(docs):
            return docs[int(response) - 1]
        print("Please enter a valid option.")

    print("No more results to show.")
    return None


def choose_location(session: LibrarySession) -> Optional[str]:
    state = session.state
    if not state.locations:
        return None
    entries = list(locations.walk_tree(state.locations))
    for idx, (depth, location) in enumerate(entries, start=1):
        print(f"{idx:>3}. {'  ' * depth}{location.name} ({location.type})")
    response = ask("Shelve it where? (number, blank for unassigned): ")
    if response.isdigit() and 1 <= int(response) <= len(entries):
        return entries[int(response) - 1][1].id
    return None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def manual_draft() -> Optional[Dict[str, Any]]:
    """Search Open Library by title/author, falling back to typed fields."""
    title = ask("Title: ")
    author = ask("Author (leave blank to skip): ")
    if not title:
        print("A title is required.")
        return None

    chosen = choose_result(search_records(OpenLibraryQuery(title=title, author=author or None)))
    typed = {"title": title, "author": author or None}
    if chosen is None:
        return typed
    return merge_drafts([build_draft(chosen), typed])


def add_book(session: LibrarySession) -> None:
    isbn = ask("\nScan or type an ISBN (leave blank for manual entry): ")
    draft = fetch_book_by_isbn(isbn) if isbn else None
    if isbn and draft is None:
        print("No record found for that ISBN. Switching to manual entry.")
    if draft is None:
        draft = manual_draft()
        if draft is None:
            return
        if isbn:
            draft.setdefault("isbn", isbn)

    print("\nBook details:")
    print_draft(draft)
    if not confirm("Add this book?"):
        print("Skipped adding this book.")
        return

    draft["location_id"] = choose_location(session)
    try:
        book = session.dispatch(AddBook(draft))
    except ValueError as error:
        print(f"Could not add the book: {error}")
        return
    print(f"Added '{book.title}'.")


def show_books(session: LibrarySession) -> None:
    frame = maintenance.catalog_frame(session.state)
    if frame.empty:
        print("The library is empty.")
        return
    with pandas.option_context("display.max_rows", None, "display.width", 120):
        print(frame[["Title", "Author", "Location", "Status"]].to_string(index=False))


def show_loans(session: LibrarySession) -> None:
    state = session.state
    now = session.clock()
    ordered = loans.sorted_loans(state.loans, now)
    if not ordered:
        print("No loans recorded.")
        return
    for loan in ordered:
        book = state.book(loan.book_id)
        title = book.title if book else "Unknown Book"
        if loans.is_overdue(loan, now):
            label = "OVERDUE"
        elif loans.is_active(loan):
            label = "out"
        else:
            label = f"returned {loan.return_date:%Y-%m-%d}"
        print(f"[{loan.id}] {title} -> {loan.borrower_name} since {loan.loan_date:%Y-%m-%d} ({label})")


def lend_book(session: LibrarySession) -> None:
    state = session.state
    term = ask("Book title to lend: ")
    matches = [book for book in state.books if term.lower() in book.title.lower()]
    if not matches:
        print("No book matches that title.")
        return
    for idx, book in enumerate(matches, start=1):
        print(f"{idx}. {book.title} by {book.author}")
    choice = ask("Which one? ")
    if not choice.isdigit() or not 1 <= int(choice) <= len(matches):
        print("Please enter a valid option.")
        return
    book = matches[int(choice) - 1]

    for idx, member in enumerate(state.users, start=1):
        print(f"{idx}. {member.name}")
    borrower = ask("Borrower (family member number, or a friend's name): ")
    notes = ask("Notes (optional): ") or None
    if borrower.isdigit() and 1 <= int(borrower) <= len(state.users):
        member = state.users[int(borrower) - 1]
        action = CreateLoan(book.id, borrower_user_id=member.id, notes=notes)
    else:
        action = CreateLoan(book.id, borrower_name=borrower, notes=notes)

    try:
        loan = session.dispatch(action)
    except (ValueError, RecordNotFound) as error:
        print(f"Could not record the loan: {error}")
        return
    print(f"Lent '{book.title}' to {loan.borrower_name}.")


def return_book(session: LibrarySession) -> None:
    active = loans.partition_loans(session.state.loans, session.clock()).active
    if not active:
        print("Nothing is out on loan.")
        return
    for idx, loan in enumerate(active, start=1):
        book = session.state.book(loan.book_id)
        print(f"{idx}. {book.title if book else 'Unknown Book'} ({loan.borrower_name})")
    choice = ask("Which loan came back? ")
    if not choice.isdigit() or not 1 <= int(choice) <= len(active):
        print("Please enter a valid option.")
        return
    loan = session.dispatch(MarkReturned(active[int(choice) - 1].id))
    print(f"Marked returned on {loan.return_date:%Y-%m-%d}.")


def show_health(session: LibrarySession) -> None:
    state = session.state
    report = maintenance.health_report(state, session.clock())
    if report.is_healthy:
        print("All books are located and nothing is overdue.")
    for book in report.homeless_books:
        print(f"Unassigned: {book.title}")
    for loan in report.overdue_loans:
        book = state.book(loan.book_id)
        print(f"Overdue: {book.title if book else 'Unknown Book'} with {loan.borrower_name}")
    for loan in report.orphan_loans:
        print(f"Loan {loan.id} refers to a deleted book")
    for location in report.dangling_locations:
        print(f"Location '{location.name}' has a missing parent")
    for location in report.cyclic_locations:
        print(f"Location '{location.name}' is part of a parent cycle")
    if maintenance.backup_due(state.backup_settings, session.clock()):
        print("A backup is due.")


def import_csv(session: LibrarySession) -> None:
    path = Path(ask("Path to CSV (Title, Author, ISBN): ")).expanduser()
    current = users.active_user(session.state)
    try:
        books = maintenance.read_books_csv(path, current.id if current else "", now=session.clock())
    except (OSError, ValueError) as error:
        print(f"Could not read {path}: {error}")
        return
    if not books:
        print("No books found in that file.")
        return
    if confirm(f"Found {len(books)} books. Import them?"):
        count = session.dispatch(ImportBooks(tuple(books)))
        print(f"Imported {count} books.")


def backup(session: LibrarySession) -> None:
    try:
        path = session.backup()
    except OSError as error:
        print(f"Backup failed: {error}")
        return
    print(f"Backup written to {path}")


COMMANDS = {
    "a": ("Add a book", add_book),
    "b": ("List books", show_books),
    "l": ("List loans", show_loans),
    "o": ("Lend a book", lend_book),
    "r": ("Return a book", return_book),
    "h": ("Library health", show_health),
    "i": ("Import CSV", import_csv),
    "k": ("Back up now", backup),
}


def interactive_session(session: Optional[LibrarySession] = None) -> None:
    """Run the interactive librarian prompt."""
    session = session or LibrarySession(get_store())
    if not session.state.is_setup_complete:
        print("Library is not set up yet; start the server and finish onboarding first.")

    print("\nType 'quit' at any prompt to exit.")
    while True:
        print()
        for key, (label, _) in COMMANDS.items():
            print(f"  {key}) {label}")
        try:
            choice = ask("Choose an action: ").lower()
            command = COMMANDS.get(choice)
            if command is None:
                print("Please enter a valid option.")
                continue
            command[1](session)
        except QuitSession:
            break

    print("\nSession complete. Library saved.")


if __name__ == "__main__":
    configure_logging()
    interactive_session()
