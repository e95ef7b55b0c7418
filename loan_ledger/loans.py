"""
Loan Module

Handles loan origination, term edits, deletion and lookup. Derived figures
are recomputed from scratch by the term calculator on every term change,
and the ledger is reconciled afterwards because the amount owed may move.
"""

import logging
import uuid
from datetime import date
from typing import Any, List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import DuplicateSerialError, LoanNotFoundError
from .ledger import LOANS_TABLE, PAYMENTS_TABLE, reconcile
from .models import Loan, Payment, utcnow
from .storage import StorageInterface
from .terms import (
    LoanTerms, ScheduleKind, calculate_terms, equivalent_days, validate_terms
)

logger = logging.getLogger(__name__)

TERM_FIELDS = {
    'principal', 'interest_amount', 'issued_date', 'schedule_kind',
    'number_of_days', 'number_of_weeks', 'number_of_months'
}
DETAIL_FIELDS = {'serial_number', 'area_id', 'name', 'mobile', 'address', 'guarantor'}


class LoanManager:
    """
    Manages loans from origination to deletion
    """

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans_table = LOANS_TABLE
        self.payments_table = PAYMENTS_TABLE

    def create_loan(
        self,
        serial_number: str,
        terms: LoanTerms,
        area_id: Optional[str] = None,
        name: str = "",
        mobile: str = "",
        address: str = "",
        guarantor: str = ""
    ) -> Loan:
        """
        Originate a new loan

        Args:
            serial_number: Unique human-assigned serial number
            terms: Principal, flat interest, schedule and period counts
            area_id: Optional area the loan belongs to

        Returns:
            Created Loan with derived figures filled in

        Raises:
            InvalidTermError: principal or period count not positive
            DuplicateSerialError: serial number already in use
        """
        serial_number = serial_number.strip()
        self._ensure_serial_available(serial_number)
        self._backfill_days(terms)
        validate_terms(terms)

        now = utcnow()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            serial_number=serial_number,
            principal=terms.principal,
            interest_amount=terms.interest_amount,
            issued_date=terms.issued_date,
            schedule_kind=terms.schedule_kind,
            number_of_days=terms.number_of_days,
            number_of_weeks=terms.number_of_weeks,
            number_of_months=terms.number_of_months,
            area_id=area_id,
            name=name,
            mobile=mobile,
            address=address,
            guarantor=guarantor
        )
        loan.apply_term_figures(calculate_terms(terms))

        with self.storage.atomic():
            self.save_loan(loan)
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_CREATED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "serial_number": loan.serial_number,
                        "principal": loan.principal,
                        "interest_amount": loan.interest_amount,
                        "schedule_kind": loan.schedule_kind,
                        "period_count": loan.period_count,
                        "issued_date": loan.issued_date,
                        "deadline_date": loan.deadline_date
                    }
                )

        logger.info("Created loan %s (%s) for %s", loan.serial_number, loan.id, loan.principal)
        return loan

    def update_loan(self, loan_id: str, **changes: Any) -> Loan:
        """
        Edit a loan's terms or details.

        Any term change recomputes every derived figure and reconciles the
        loan against its payments.

        Raises:
            LoanNotFoundError: loan does not exist
            InvalidTermError: the edited terms are invalid
            DuplicateSerialError: new serial number already in use
            ValueError: an unknown field was passed
        """
        unknown = set(changes) - TERM_FIELDS - DETAIL_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        loan = self.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")

        if 'serial_number' in changes:
            changes['serial_number'] = changes['serial_number'].strip()
            if changes['serial_number'] != loan.serial_number:
                self._ensure_serial_available(changes['serial_number'])

        term_changes = {k: v for k, v in changes.items() if k in TERM_FIELDS}
        if term_changes:
            current = {key: getattr(loan, key) for key in TERM_FIELDS}
            current.update(term_changes)
            terms = LoanTerms(**current)
            if 'number_of_days' not in term_changes:
                self._backfill_days(terms, force=True)
            validate_terms(terms)

            loan.principal = terms.principal
            loan.interest_amount = terms.interest_amount
            loan.issued_date = terms.issued_date
            loan.schedule_kind = terms.schedule_kind
            loan.number_of_days = terms.number_of_days
            loan.number_of_weeks = terms.number_of_weeks
            loan.number_of_months = terms.number_of_months
            loan.apply_term_figures(calculate_terms(terms))

        for key, value in changes.items():
            if key in DETAIL_FIELDS:
                setattr(loan, key, value)

        with self.storage.atomic():
            if term_changes:
                reconcile(loan, self._load_payments(loan.id))
            self.save_loan(loan)
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_UPDATED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"changes": changes}
                )

        logger.info("Updated loan %s: %s", loan.serial_number, sorted(changes))
        return loan

    def delete_loan(self, loan_id: str) -> int:
        """
        Delete a loan together with its payments

        Returns:
            Number of payments deleted
        """
        loan = self.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")

        payments = self.storage.find(self.payments_table, {"loan_id": loan_id})
        with self.storage.atomic():
            for payment in payments:
                self.storage.delete(self.payments_table, payment['id'])
            self.storage.delete(self.loans_table, loan_id)
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_DELETED,
                    entity_type="loan",
                    entity_id=loan_id,
                    metadata={
                        "serial_number": loan.serial_number,
                        "payments_deleted": len(payments)
                    }
                )

        logger.info("Deleted loan %s and %d payments", loan.serial_number, len(payments))
        return len(payments)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def get_loan_by_serial(self, serial_number: str) -> Optional[Loan]:
        """Resolve a serial number to its loan"""
        if serial_number is None:
            return None
        serial_number = str(serial_number).strip()
        if not serial_number:
            return None
        matches = self.storage.find(self.loans_table, {"serial_number": serial_number})
        if matches:
            return Loan.from_dict(matches[0])
        return None

    def list_loans(self, area_id: Optional[str] = None) -> List[Loan]:
        """All loans, optionally restricted to one area, ordered by serial number"""
        filters = {"area_id": area_id} if area_id is not None else {}
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]
        loans.sort(key=_serial_sort_key)
        return loans

    def pending_loans(self, area_id: Optional[str] = None) -> List[Loan]:
        return [loan for loan in self.list_loans(area_id) if not loan.is_fully_paid]

    def paid_loans(self, area_id: Optional[str] = None) -> List[Loan]:
        return [loan for loan in self.list_loans(area_id) if loan.is_fully_paid]

    def overdue_loans(self, as_of: date, area_id: Optional[str] = None) -> List[Loan]:
        """Unpaid loans whose deadline has passed"""
        return [loan for loan in self.list_loans(area_id) if loan.is_overdue(as_of)]

    def detach_area(self, area_id: str) -> int:
        """Clear area_id on every loan in the area"""
        loans = self.list_loans(area_id)
        for loan in loans:
            loan.area_id = None
            self.save_loan(loan)
        return len(loans)

    def save_loan(self, loan: Loan) -> None:
        """Save loan to storage"""
        loan.updated_at = utcnow()
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _load_payments(self, loan_id: str) -> List[Payment]:
        return [Payment.from_dict(data)
                for data in self.storage.find(self.payments_table, {"loan_id": loan_id})]

    def _ensure_serial_available(self, serial_number: str) -> None:
        if not serial_number:
            raise ValueError("Serial number is required")
        if self.get_loan_by_serial(serial_number) is not None:
            raise DuplicateSerialError(f"Serial number {serial_number!r} is already in use")

    @staticmethod
    def _backfill_days(terms: LoanTerms, force: bool = False) -> None:
        """
        Fill number_of_days for weekly and monthly loans from their specific
        count. Legacy records holding only days are left untouched.
        """
        if terms.schedule_kind == ScheduleKind.DAILY:
            return
        specific = (terms.number_of_weeks if terms.schedule_kind == ScheduleKind.WEEKLY
                    else terms.number_of_months)
        if not specific or specific <= 0:
            return
        if force or not terms.number_of_days:
            terms.number_of_days = equivalent_days(terms.issued_date, terms.schedule_kind, specific)


def _serial_sort_key(loan: Loan):
    serial = loan.serial_number
    return (0, int(serial), serial) if serial.isdigit() else (1, 0, serial)
