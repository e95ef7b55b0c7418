"""
Reporting Engine Module

Read-side reports over loans and payments: portfolio dashboard, area
performance, collections, earnings, loan status lists and balance sheets.
Results share one shape and export to dict, JSON or CSV.

Amounts in report rows are rounded for display; the underlying ledger
values are never rounded.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .balance_sheet import (
    DEFAULT_TOLERANCE, BalanceSheetFilter, consolidate, generate_balance_sheets,
    validate_balance_sheet
)
from .currency import ZERO, Currency, Money, round_for_display
from .earnings import earnings_breakdown
from .errors import AreaNotFoundError
from .ledger import sum_payments
from .models import Loan, Payment
from .terms import ScheduleKind, as_date


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


class LoanListStatus(Enum):
    """Loan lists offered by loan_status_report"""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.metadata.setdefault('row_count', len(self.data))


class ReportingEngine:
    """
    Reports over the loan book
    """

    def __init__(
        self,
        loan_manager,
        payment_ledger,
        area_manager=None,
        currency: Currency = Currency.INR,
        precision: Optional[int] = None,
        tolerance: Decimal = DEFAULT_TOLERANCE
    ):
        self.loan_manager = loan_manager
        self.payment_ledger = payment_ledger
        self.area_manager = area_manager
        self.currency = currency
        self.precision = currency.precision if precision is None else precision
        self.tolerance = tolerance

    def portfolio_summary(self, area_id: Optional[str] = None,
                          as_of: Optional[date] = None) -> ReportResult:
        """
        Dashboard figures: loan counts, money given, due, collected,
        earned and pending, and the day's collection
        """
        as_of = as_date(as_of) if as_of else date.today()
        loans = self.loan_manager.list_loans(area_id)
        payments = self._loan_payments(loans)

        total_due = sum((loan.amount_owed for loan in loans), ZERO)
        total_collected = sum_payments(payments)
        todays_payments = [p for p in payments if p.payment_date == as_of]
        total_earnings = sum((row.total for row in earnings_breakdown(loans, payments)), ZERO)

        summary = {
            'total_loans': len(loans),
            'active_loans': sum(1 for loan in loans if not loan.is_fully_paid),
            'completed_loans': sum(1 for loan in loans if loan.is_fully_paid),
            'overdue_loans': sum(1 for loan in loans if loan.is_overdue(as_of)),
            'total_given': self._fmt(sum((loan.principal for loan in loans), ZERO)),
            'total_due': self._fmt(total_due),
            'total_collected': self._fmt(total_collected),
            'total_earnings': self._fmt(total_earnings),
            'pending_amount': self._fmt(max(ZERO, total_due - total_collected)),
            'todays_collection': self._fmt(sum_payments(todays_payments)),
            'todays_payment_count': len(todays_payments),
            'currency': self.currency.code,
        }
        display = {
            key: Money(value, self.currency).to_string()
            for key, value in summary.items() if isinstance(value, Decimal)
        }
        return self._result("portfolio_summary", [summary], summary,
                            period_end=as_of, area_id=area_id, display=display)

    def area_report(self, area_id: Optional[str] = None) -> ReportResult:
        """
        Collection performance of one area (or the whole book when area_id
        is None). Received principal and interest split total_paid in the
        proportion principal : interest of total payable.
        """
        if area_id is not None and self.area_manager is not None:
            if self.area_manager.get_area(area_id) is None:
                raise AreaNotFoundError(f"Area {area_id} not found")

        loans = self.loan_manager.list_loans(area_id)
        payments = self._loan_payments(loans)

        totals = {
            'total_principal': ZERO,
            'total_interest': ZERO,
            'total_payable': ZERO,
            'total_paid': ZERO,
            'received_principal': ZERO,
            'received_interest': ZERO,
        }
        data = []
        for loan in loans:
            received_principal, received_interest = _received_split(loan)
            totals['total_principal'] += loan.principal
            totals['total_interest'] += loan.interest_amount
            totals['total_payable'] += loan.total_payable
            totals['total_paid'] += loan.total_paid
            totals['received_principal'] += received_principal
            totals['received_interest'] += received_interest
            data.append({
                'serial_number': loan.serial_number,
                'name': loan.name,
                'principal': self._fmt(loan.principal),
                'interest_amount': self._fmt(loan.interest_amount),
                'total_payable': self._fmt(loan.total_payable),
                'total_paid': self._fmt(loan.total_paid),
                'received_principal': self._fmt(received_principal),
                'received_interest': self._fmt(received_interest),
                'is_fully_paid': loan.is_fully_paid,
            })

        totals['pending_principal'] = max(ZERO, totals['total_principal'] - totals['received_principal'])
        totals['pending_interest'] = max(ZERO, totals['total_interest'] - totals['received_interest'])
        totals = {key: self._fmt(value) for key, value in totals.items()}

        by_kind = {}
        for kind in ScheduleKind:
            kind_payments = [p for p in payments if p.schedule_kind == kind]
            by_kind[kind.value] = {
                'count': len(kind_payments),
                'amount': self._fmt(sum_payments(kind_payments)),
            }
        totals['payments_by_schedule'] = by_kind
        totals['fully_paid_loans'] = sum(1 for loan in loans if loan.is_fully_paid)
        totals['pending_loans'] = sum(1 for loan in loans if not loan.is_fully_paid)

        return self._result("area_report", data, totals, area_id=area_id)

    def collection_report(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        schedule_kind: Optional[ScheduleKind] = None,
        area_id: Optional[str] = None
    ) -> ReportResult:
        """Payments collected per loan within a date window"""
        loans = self.loan_manager.list_loans(area_id)
        payments = self._loan_payments(
            loans, start_date=start_date, end_date=end_date, schedule_kind=schedule_kind
        )

        grouped: Dict[str, List[Payment]] = {}
        for payment in payments:
            grouped.setdefault(payment.loan_id, []).append(payment)

        data = []
        for loan in loans:
            loan_payments = grouped.get(loan.id)
            if not loan_payments:
                continue
            data.append({
                'serial_number': loan.serial_number,
                'payment_count': len(loan_payments),
                'amount': self._fmt(sum_payments(loan_payments)),
                'first_payment': min(p.payment_date for p in loan_payments).isoformat(),
                'last_payment': max(p.payment_date for p in loan_payments).isoformat(),
            })

        totals = {
            'payment_count': len(payments),
            'loans_paying': len(grouped),
            'total_collected': self._fmt(sum_payments(payments)),
        }
        return self._result("collection_report", data, totals,
                            period_start=start_date, period_end=end_date,
                            area_id=area_id,
                            schedule_kind=ScheduleKind(schedule_kind).value if schedule_kind else None)

    def earnings_report(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        area_id: Optional[str] = None
    ) -> ReportResult:
        """Recognized earnings per loan counting payments inside the window"""
        loans = self.loan_manager.list_loans(area_id)
        payments = self._loan_payments(loans, start_date=start_date, end_date=end_date)
        rows = earnings_breakdown(loans, payments)

        totals = {
            'interest_earned': self._fmt(sum((r.interest_earned for r in rows), ZERO)),
            'overpayment_income': self._fmt(sum((r.overpayment_income for r in rows), ZERO)),
            'total_earnings': self._fmt(sum((r.total for r in rows), ZERO)),
        }
        return self._result("earnings_report",
                            [row.to_dict(self.precision) for row in rows], totals,
                            period_start=start_date, period_end=end_date, area_id=area_id)

    def loan_status_report(
        self,
        status: Union[LoanListStatus, str],
        as_of: Optional[date] = None,
        area_id: Optional[str] = None
    ) -> ReportResult:
        """Pending, paid or overdue loan list"""
        status = LoanListStatus(status)
        as_of = as_date(as_of) if as_of else date.today()

        if status == LoanListStatus.PENDING:
            loans = self.loan_manager.pending_loans(area_id)
        elif status == LoanListStatus.PAID:
            loans = self.loan_manager.paid_loans(area_id)
        else:
            loans = self.loan_manager.overdue_loans(as_of, area_id)

        data = [self._loan_row(loan, as_of) for loan in loans]
        totals = {
            'loans': len(loans),
            'balance_due': self._fmt(sum((loan.balance_due for loan in loans), ZERO)),
            'penalty_amount': self._fmt(sum((loan.penalty_amount for loan in loans), ZERO)),
        }
        return self._result(f"{status.value}_loans", data, totals,
                            period_end=as_of, area_id=area_id)

    def balance_sheet_report(
        self,
        sheet_filter: Optional[BalanceSheetFilter] = None,
        report_date: Optional[date] = None
    ) -> ReportResult:
        """
        One row per loan plus a consolidated sheet in totals.

        Loans whose sheet fails validation are listed in metadata.
        """
        sheet_filter = sheet_filter or BalanceSheetFilter()
        report_date = as_date(report_date or sheet_filter.end_date or date.today())

        loans = self.loan_manager.list_loans(sheet_filter.area_id)
        payments = self._loan_payments(loans)
        sheets = generate_balance_sheets(loans, payments, sheet_filter, report_date)

        data = []
        unbalanced = []
        for sheet in sheets:
            balanced = validate_balance_sheet(sheet, self.tolerance)
            if not balanced:
                unbalanced.append(sheet.serial_number)
            data.append({
                'serial_number': sheet.serial_number,
                'customer_name': sheet.customer_name,
                'total_assets': self._fmt(sheet.total_assets),
                'total_liabilities': self._fmt(sheet.total_liabilities),
                'total_equity': self._fmt(sheet.total_equity),
                'receivables': self._fmt(sheet.assets.current_assets.receivables),
                'accrued_interest': self._fmt(sheet.transaction_summary.accrued_interest),
                'paid_interest': self._fmt(sheet.transaction_summary.paid_interest),
                'balanced': balanced,
            })

        combined = consolidate(sheets, report_date)
        return self._result(
            "balance_sheet", data, combined.to_dict(self.precision),
            period_start=sheet_filter.start_date, period_end=report_date,
            area_id=sheet_filter.area_id,
            loan_status=sheet_filter.loan_status.value,
            unbalanced=unbalanced
        )

    def export_report(self, result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
        """
        Export report result in specified format
        """
        if format == ReportFormat.DICT:
            return {
                'report_id': result.report_id,
                'generated_at': result.generated_at.isoformat(),
                'period_start': result.period_start.isoformat() if result.period_start else None,
                'period_end': result.period_end.isoformat() if result.period_end else None,
                'data': result.data,
                'totals': result.totals,
                'metadata': result.metadata
            }

        elif format == ReportFormat.JSON:
            export_dict = self.export_report(result, ReportFormat.DICT)
            return json.dumps(export_dict, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()

            if result.data:
                headers = list(result.data[0].keys())
                writer = csv.DictWriter(output, fieldnames=headers)
                writer.writeheader()
                for row in result.data:
                    writer.writerow(row)

            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")

    def _loan_row(self, loan: Loan, as_of: date) -> Dict[str, Any]:
        return {
            'serial_number': loan.serial_number,
            'name': loan.name,
            'mobile': loan.mobile,
            'schedule_kind': loan.schedule_kind.value,
            'issued_date': loan.issued_date.isoformat(),
            'deadline_date': loan.deadline_date.isoformat() if loan.deadline_date else None,
            'total_payable': self._fmt(loan.total_payable),
            'penalty_amount': self._fmt(loan.penalty_amount),
            'total_paid': self._fmt(loan.total_paid),
            'balance_due': self._fmt(loan.balance_due),
            'days_overdue': (as_of - loan.deadline_date).days if loan.is_overdue(as_of) else 0,
        }

    def _loan_payments(self, loans: List[Loan], **filters) -> List[Payment]:
        """Payments belonging to the given loans, whatever area they were recorded under"""
        loan_ids = {loan.id for loan in loans}
        return [payment for payment in self.payment_ledger.get_payments(**filters)
                if payment.loan_id in loan_ids]

    def _fmt(self, value: Decimal) -> Decimal:
        return round_for_display(value, self.precision)

    def _result(self, report_id: str, data: List[Dict[str, Any]], totals: Dict[str, Any],
                period_start: Optional[date] = None, period_end: Optional[date] = None,
                **metadata) -> ReportResult:
        metadata['currency'] = self.currency.code
        return ReportResult(
            report_id=report_id,
            generated_at=datetime.now(timezone.utc),
            period_start=as_date(period_start) if period_start else None,
            period_end=as_date(period_end) if period_end else None,
            data=data,
            totals=totals,
            metadata=metadata
        )


def _received_split(loan: Loan):
    """Split a loan's total_paid into principal and interest by payable share"""
    if loan.total_payable <= ZERO:
        return ZERO, ZERO
    ratio = loan.total_paid / loan.total_payable
    return loan.principal * ratio, loan.interest_amount * ratio
