from __future__ import annotations

from datetime import timedelta

import pytest

import loans
from conftest import NOW
from models import AppState, Loan, RecordNotFound


def _loan(loan_id: str, days_ago: float, returned: bool = False) -> Loan:
    loan_date = NOW - timedelta(days=days_ago)
    return Loan(
        id=loan_id,
        book_id=f"book-{loan_id}",
        borrower_name="Sam",
        loan_date=loan_date,
        return_date=NOW if returned else None,
    )


def test_overdue_boundary_is_strict() -> None:
    loan = _loan("a", 0)

    assert not loans.is_overdue(loan, NOW + timedelta(days=30))
    assert loans.is_overdue(loan, NOW + timedelta(days=30, seconds=1))


def test_returned_loan_is_never_overdue() -> None:
    assert not loans.is_overdue(_loan("a", 90, returned=True), NOW)


def test_create_loan_then_overdue_then_returned(family_state: AppState) -> None:
    book = family_state.books[0]

    state, loan = loans.create_loan(family_state, book.id, " Sam ", "Careful with it", now=NOW)

    assert loan.borrower_name == "Sam"
    assert loan.loan_date == NOW
    assert loan.return_date is None
    assert loans.is_active(loan)
    later = NOW + timedelta(days=31)
    assert loans.partition_loans(state.loans, later).overdue == [loan]

    state, returned = loans.mark_returned(state, loan.id, now=later)

    assert returned.return_date == later
    partition = loans.partition_loans(state.loans, later)
    assert partition.active == [] and partition.overdue == []
    assert partition.returned == [returned]


def test_returning_twice_keeps_first_date(family_state: AppState) -> None:
    book = family_state.books[0]
    state, loan = loans.create_loan(family_state, book.id, "Sam", now=NOW)
    first = NOW + timedelta(days=2)
    state, _ = loans.mark_returned(state, loan.id, now=first)

    again, returned = loans.mark_returned(state, loan.id, now=first + timedelta(days=5))

    assert again is state
    assert returned.return_date == first


def test_one_active_loan_per_book(family_state: AppState) -> None:
    book = family_state.books[0]
    state, loan = loans.create_loan(family_state, book.id, "Sam", now=NOW)

    with pytest.raises(ValueError):
        loans.create_loan(state, book.id, "Riya", now=NOW)

    state, _ = loans.mark_returned(state, loan.id, now=NOW)
    state, second = loans.create_loan(state, book.id, "Riya", now=NOW)
    assert loans.active_loan_for(state.loans, book.id) == second


def test_create_loan_validation(family_state: AppState) -> None:
    with pytest.raises(ValueError):
        loans.create_loan(family_state, family_state.books[0].id, "   ", now=NOW)
    with pytest.raises(RecordNotFound):
        loans.create_loan(family_state, "missing", "Sam", now=NOW)
    with pytest.raises(RecordNotFound):
        loans.mark_returned(family_state, "missing", now=NOW)


def test_sorted_loans_orders_overdue_active_then_returned() -> None:
    returned = _loan("r", 1, returned=True)
    fresh = _loan("f", 2)
    older = _loan("o", 10)
    overdue = _loan("d", 45)

    ordered = loans.sorted_loans([returned, older, overdue, fresh], NOW)

    assert [loan.id for loan in ordered] == ["d", "f", "o", "r"]
