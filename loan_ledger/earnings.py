"""
Earnings Recognition Module

Interest income recognized across a set of loans, distinct from raw cash
collected:

- unpaid loans contribute nothing;
- loans paid in full (or overpaid) contribute their whole interest plus any
  overpayment beyond the amount owed;
- partially paid loans contribute interest in proportion to how much of the
  total obligation (payable plus penalty) has been collected.

Read-side only; nothing here is stored.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .currency import ZERO, round_for_display
from .ledger import filter_payments_by_date
from .models import Loan, Payment


@dataclass(frozen=True)
class LoanEarnings:
    """Recognized earnings for one loan"""
    loan_id: str
    serial_number: str
    owed: Decimal
    paid: Decimal
    interest_earned: Decimal
    overpayment_income: Decimal

    @property
    def total(self) -> Decimal:
        return self.interest_earned + self.overpayment_income

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, str]:
        values = {
            'owed': self.owed,
            'paid': self.paid,
            'interest_earned': self.interest_earned,
            'overpayment_income': self.overpayment_income,
            'total': self.total,
        }
        if precision is not None:
            values = {k: round_for_display(v, precision) for k, v in values.items()}
        result = {'loan_id': self.loan_id, 'serial_number': self.serial_number}
        result.update({k: str(v) for k, v in values.items()})
        return result


def _paid_by_loan(payments: Iterable[Payment]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for payment in payments:
        totals[payment.loan_id] += payment.amount
    return totals


def recognize_loan_earnings(loan: Loan, paid: Decimal) -> LoanEarnings:
    """Recognized earnings for a loan given the total paid against it"""
    owed = loan.total_payable + loan.penalty_amount
    interest = loan.interest_amount

    if paid <= ZERO:
        interest_earned, overpayment = ZERO, ZERO
    elif paid >= owed:
        interest_earned, overpayment = interest, max(ZERO, paid - owed)
    else:
        interest_earned, overpayment = interest * (paid / owed), ZERO

    return LoanEarnings(
        loan_id=loan.id,
        serial_number=loan.serial_number,
        owed=owed,
        paid=paid,
        interest_earned=interest_earned,
        overpayment_income=overpayment
    )


def earnings_breakdown(loans: Iterable[Loan], payments: Iterable[Payment]) -> List[LoanEarnings]:
    """Per-loan earnings rows"""
    paid = _paid_by_loan(payments)
    return [recognize_loan_earnings(loan, paid.get(loan.id, ZERO)) for loan in loans]


def calculate_total_earnings(loans: Iterable[Loan], payments: Iterable[Payment]) -> Decimal:
    """Total recognized earnings for a loan set"""
    return sum((row.total for row in earnings_breakdown(loans, payments)), ZERO)


def earnings_for_period(
    loans: Iterable[Loan],
    payments: Iterable[Payment],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> Decimal:
    """Recognized earnings counting only payments dated inside the window"""
    return calculate_total_earnings(loans, filter_payments_by_date(payments, start_date, end_date))
