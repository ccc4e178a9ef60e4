from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from config import LOAN_PERIOD_DAYS
from models import AppState, Loan, RecordNotFound, as_utc, new_id, utcnow

LOAN_PERIOD = timedelta(days=LOAN_PERIOD_DAYS)


@dataclass
class LoanPartition:
    active: List[Loan] = field(default_factory=list)
    overdue: List[Loan] = field(default_factory=list)
    returned: List[Loan] = field(default_factory=list)


def is_active(loan: Loan) -> bool:
    return loan.return_date is None


def is_overdue(loan: Loan, now: Optional[datetime] = None) -> bool:
    """Out for strictly longer than the loan period and not yet returned."""
    if not is_active(loan):
        return False
    elapsed = as_utc(now or utcnow()) - loan.loan_date
    return elapsed > LOAN_PERIOD


def active_loan_for(loans: Sequence[Loan], book_id: str) -> Optional[Loan]:
    return next((loan for loan in loans if loan.book_id == book_id and is_active(loan)), None)


def partition_loans(loans: Sequence[Loan], now: Optional[datetime] = None) -> LoanPartition:
    now = now or utcnow()
    partition = LoanPartition()
    for loan in sorted_loans(loans, now):
        if is_active(loan):
            partition.active.append(loan)
            if is_overdue(loan, now):
                partition.overdue.append(loan)
        else:
            partition.returned.append(loan)
    return partition


def sorted_loans(loans: Sequence[Loan], now: Optional[datetime] = None) -> List[Loan]:
    """Overdue first, then other active loans, then history; newest first in each."""
    now = now or utcnow()

    def rank(loan: Loan) -> int:
        if is_overdue(loan, now):
            return 0
        return 1 if is_active(loan) else 2

    return sorted(loans, key=lambda loan: (rank(loan), -loan.loan_date.timestamp()))


def create_loan(
    state: AppState,
    book_id: str,
    borrower_name: str,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Tuple[AppState, Loan]:
    borrower = (borrower_name or "").strip()
    if not borrower:
        raise ValueError("Borrower name is required.")
    if state.book(book_id) is None:
        raise RecordNotFound(f"Book {book_id!r} not found.")
    if active_loan_for(state.loans, book_id) is not None:
        raise ValueError("This book is already on loan.")

    loan = Loan(
        id=new_id(),
        book_id=book_id,
        borrower_name=borrower,
        loan_date=now or utcnow(),
        notes=(notes or "").strip() or None,
    )
    return state.model_copy(update={"loans": [*state.loans, loan]}), loan


def mark_returned(
    state: AppState,
    loan_id: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[AppState, Loan]:
    """Close a loan. Closing an already-returned loan changes nothing."""
    loan = next((item for item in state.loans if item.id == loan_id), None)
    if loan is None:
        raise RecordNotFound(f"Loan {loan_id!r} not found.")
    if not is_active(loan):
        return state, loan

    closed = loan.model_copy(update={"return_date": as_utc(now or utcnow())})
    loans = [closed if item.id == loan_id else item for item in state.loans]
    return state.model_copy(update={"loans": loans}), closed
