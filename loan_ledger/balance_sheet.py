"""
Balance Sheet Module

Point-in-time accrual balance sheet for a loan, from the lender's side
(Ind-AS style layout). Capital lent is carried as an investment; receivables
are outstanding principal plus accrued interest not yet collected.

Interest accrues linearly over the term's length in days and never exceeds
the contracted amount. Interest counted as paid uses total paid over total
payable, which is a different ratio from the earnings module's (that one
divides by the amount owed including penalty).
"""

from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .currency import ZERO, round_for_display
from .ledger import filter_payments_by_date, sum_payments
from .models import Loan, Payment
from .terms import as_date, equivalent_days

DEFAULT_TOLERANCE = Decimal('0.01')


class LoanStatusFilter(Enum):
    """Which loans a balance sheet run covers"""
    ACTIVE = "active"
    COMPLETED = "completed"
    ALL = "all"


@dataclass
class BalanceSheetFilter:
    """Date range, area and loan status selection"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    area_id: Optional[str] = None
    loan_status: LoanStatusFilter = LoanStatusFilter.ALL

    def matches(self, loan: Loan) -> bool:
        if self.area_id is not None and loan.area_id != self.area_id:
            return False
        if self.loan_status == LoanStatusFilter.ACTIVE:
            return not loan.is_fully_paid
        if self.loan_status == LoanStatusFilter.COMPLETED:
            return loan.is_fully_paid
        return True


@dataclass
class _Section:
    """Block of Decimal line items that can be summed and serialized"""

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, str]:
        result = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, _Section):
                result[item.name] = value.to_dict(precision)
            else:
                if precision is not None:
                    value = round_for_display(value, precision)
                result[item.name] = str(value)
        return result

    def __add__(self, other):
        return type(self)(**{
            item.name: getattr(self, item.name) + getattr(other, item.name)
            for item in fields(self)
        })


@dataclass
class CurrentAssets(_Section):
    cash: Decimal = ZERO
    receivables: Decimal = ZERO
    other_current_assets: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.cash + self.receivables + self.other_current_assets


@dataclass
class FixedAssets(_Section):
    investments: Decimal = ZERO
    other_fixed_assets: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.investments + self.other_fixed_assets


@dataclass
class Assets(_Section):
    current_assets: CurrentAssets = field(default_factory=CurrentAssets)
    fixed_assets: FixedAssets = field(default_factory=FixedAssets)

    @property
    def total(self) -> Decimal:
        return self.current_assets.total + self.fixed_assets.total


@dataclass
class CurrentLiabilities(_Section):
    short_term_loans: Decimal = ZERO
    payables: Decimal = ZERO
    accrued_interest: Decimal = ZERO
    accrued_expenses: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.short_term_loans + self.payables + self.accrued_interest + self.accrued_expenses


@dataclass
class LongTermLiabilities(_Section):
    long_term_loans: Decimal = ZERO
    other_long_term_liabilities: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.long_term_loans + self.other_long_term_liabilities


@dataclass
class Liabilities(_Section):
    current_liabilities: CurrentLiabilities = field(default_factory=CurrentLiabilities)
    long_term_liabilities: LongTermLiabilities = field(default_factory=LongTermLiabilities)

    @property
    def total(self) -> Decimal:
        return self.current_liabilities.total + self.long_term_liabilities.total


@dataclass
class Equity(_Section):
    paid_up_capital: Decimal = ZERO
    retained_earnings: Decimal = ZERO
    reserves_and_surplus: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.paid_up_capital + self.retained_earnings + self.reserves_and_surplus


@dataclass
class TransactionSummary(_Section):
    total_borrowed: Decimal = ZERO
    total_repaid: Decimal = ZERO
    outstanding_balance: Decimal = ZERO
    accrued_interest: Decimal = ZERO
    paid_interest: Decimal = ZERO


@dataclass
class BalanceSheet:
    """Balance sheet for one loan or a consolidated set"""
    customer_name: str
    serial_number: str
    report_date: date
    assets: Assets
    liabilities: Liabilities
    equity: Equity
    transaction_summary: TransactionSummary
    loan_id: Optional[str] = None

    @property
    def total_assets(self) -> Decimal:
        return self.assets.total

    @property
    def total_liabilities(self) -> Decimal:
        return self.liabilities.total

    @property
    def total_equity(self) -> Decimal:
        return self.equity.total

    @property
    def total_equity_and_liabilities(self) -> Decimal:
        return self.total_equity + self.total_liabilities

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, Any]:
        def fmt(value: Decimal) -> str:
            return str(round_for_display(value, precision) if precision is not None else value)

        return {
            'loan_id': self.loan_id,
            'customer_name': self.customer_name,
            'serial_number': self.serial_number,
            'report_date': self.report_date.isoformat(),
            'assets': self.assets.to_dict(precision),
            'liabilities': self.liabilities.to_dict(precision),
            'equity': self.equity.to_dict(precision),
            'transaction_summary': self.transaction_summary.to_dict(precision),
            'total_assets': fmt(self.total_assets),
            'total_liabilities': fmt(self.total_liabilities),
            'total_equity': fmt(self.total_equity),
        }


def loan_term_days(loan: Loan) -> int:
    """Daily-equivalent term length: number_of_days, else derived from the schedule"""
    if loan.number_of_days:
        return loan.number_of_days
    period_count = loan.period_count
    if not period_count:
        return 0
    return equivalent_days(loan.issued_date, loan.schedule_kind, period_count)


def accrued_interest(loan: Loan, report_date: date) -> Decimal:
    """Interest earned by elapsed time, capped at the contracted amount"""
    term_days = loan_term_days(loan)
    if term_days <= 0:
        return ZERO
    days_passed = max(0, (as_date(report_date) - loan.issued_date).days)
    daily_interest = loan.interest_amount / term_days
    return min(daily_interest * days_passed, loan.interest_amount)


def generate_balance_sheet(
    loan: Loan,
    payments: Iterable[Payment],
    report_date: date,
    start_date: Optional[date] = None
) -> BalanceSheet:
    """
    Balance sheet for one loan as of report_date.

    Only payments dated in [start_date, report_date] count. Reserves and
    surplus is the balancing line, so assets always equal equity plus
    liabilities.
    """
    report_date = as_date(report_date)
    loan_payments = [p for p in payments if p.loan_id == loan.id]
    in_window = filter_payments_by_date(loan_payments, start_date, report_date)
    owed = loan.total_payable + loan.penalty_amount
    total_paid = min(sum_payments(in_window), owed)

    principal = loan.principal
    interest = loan.interest_amount
    outstanding_principal = max(ZERO, principal - total_paid)

    accrued = accrued_interest(loan, report_date)
    if loan.total_payable > ZERO:
        paid_interest = interest * (total_paid / loan.total_payable)
    else:
        paid_interest = ZERO
    unpaid_accrued = max(ZERO, accrued - paid_interest)

    assets = Assets(
        current_assets=CurrentAssets(receivables=outstanding_principal + unpaid_accrued),
        fixed_assets=FixedAssets(investments=principal)
    )
    liabilities = Liabilities(
        current_liabilities=CurrentLiabilities(accrued_interest=unpaid_accrued)
    )
    paid_up_capital = principal
    retained_earnings = total_paid - principal
    # Balancing line: equity plus liabilities equals assets by construction,
    # so validate_balance_sheet only guards against arithmetic drift
    reserves_and_surplus = assets.total - liabilities.total - paid_up_capital - retained_earnings

    return BalanceSheet(
        loan_id=loan.id,
        customer_name=loan.name,
        serial_number=loan.serial_number,
        report_date=report_date,
        assets=assets,
        liabilities=liabilities,
        equity=Equity(
            paid_up_capital=paid_up_capital,
            retained_earnings=retained_earnings,
            reserves_and_surplus=reserves_and_surplus
        ),
        transaction_summary=TransactionSummary(
            total_borrowed=principal,
            total_repaid=total_paid,
            outstanding_balance=max(ZERO, owed - total_paid),
            accrued_interest=accrued,
            paid_interest=paid_interest
        )
    )


def validate_balance_sheet(sheet: BalanceSheet, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """Assets equal equity plus liabilities within tolerance"""
    return abs(sheet.total_assets - sheet.total_equity_and_liabilities) < tolerance


def generate_balance_sheets(
    loans: Iterable[Loan],
    payments: Iterable[Payment],
    sheet_filter: BalanceSheetFilter,
    report_date: Optional[date] = None
) -> List[BalanceSheet]:
    """
    One sheet per loan selected by the filter.

    The filter's end_date is the report date unless report_date is given.
    """
    report_date = report_date or sheet_filter.end_date
    if report_date is None:
        raise ValueError("A report date or filter end date is required")

    payments = list(payments)
    return [
        generate_balance_sheet(loan, payments, report_date, sheet_filter.start_date)
        for loan in loans
        if sheet_filter.matches(loan)
    ]


def consolidate(sheets: Iterable[BalanceSheet], report_date: date,
                name: str = "All customers") -> BalanceSheet:
    """Sum per-loan sheets into one portfolio sheet"""
    total = BalanceSheet(
        customer_name=name,
        serial_number="",
        report_date=as_date(report_date),
        assets=Assets(),
        liabilities=Liabilities(),
        equity=Equity(),
        transaction_summary=TransactionSummary()
    )
    for sheet in sheets:
        total.assets = total.assets + sheet.assets
        total.liabilities = total.liabilities + sheet.liabilities
        total.equity = total.equity + sheet.equity
        total.transaction_summary = total.transaction_summary + sheet.transaction_summary
    return total
