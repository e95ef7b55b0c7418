"""
Payment Ledger Module

Applies payments to loans. A loan's paid total and fully-paid flag are
always recomputed from its complete payment history, never adjusted by
deltas, so edits and deletes cannot make the ledger drift.

Overpayment is accepted but capped on the loan: the excess is not loan
balance, it is recognized as income by the earnings module.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from .audit import AuditTrail, AuditEventType
from .currency import ZERO, Amount, to_decimal
from .errors import InvalidAmountError, LoanNotFoundError, PaymentNotFoundError
from .models import Loan, Payment, utcnow
from .storage import StorageInterface
from .terms import ScheduleKind, as_date

logger = logging.getLogger(__name__)

LOANS_TABLE = "loans"
PAYMENTS_TABLE = "payments"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconciling a loan against its payments"""
    total_paid: Decimal
    is_fully_paid: bool
    raw_total: Decimal
    overpayment: Decimal


def sum_payments(payments: Iterable[Payment]) -> Decimal:
    return sum((payment.amount for payment in payments), ZERO)


def calculate_reconciliation(loan: Loan, payments: Iterable[Payment]) -> ReconcileResult:
    """Compute paid state for a loan without touching it"""
    raw_total = sum_payments(payments)
    owed = loan.total_payable + loan.penalty_amount
    return ReconcileResult(
        total_paid=min(raw_total, owed),
        is_fully_paid=raw_total >= owed,
        raw_total=raw_total,
        overpayment=max(ZERO, raw_total - owed)
    )


def reconcile(loan: Loan, payments: Iterable[Payment]) -> ReconcileResult:
    """
    Recompute total_paid and is_fully_paid from the full payment list.

    Idempotent: the same payments always give the same loan state, and
    total_paid never exceeds total_payable + penalty_amount.
    """
    result = calculate_reconciliation(loan, payments)
    loan.total_paid = result.total_paid
    loan.is_fully_paid = result.is_fully_paid
    return result


class PaymentLedger:
    """
    Records and deletes payments, keeping each owning loan reconciled
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager,
        audit_trail: Optional[AuditTrail] = None,
        default_agent_name: str = "Not specified"
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.default_agent_name = default_agent_name
        self.payments_table = PAYMENTS_TABLE

    def add_payment(
        self,
        serial_number: str,
        amount: Amount,
        payment_date: Union[date, str],
        schedule_kind: Union[ScheduleKind, str],
        agent_name: Optional[str] = None,
        area_id: Optional[str] = None
    ) -> Payment:
        """
        Record a single payment against the loan with the given serial number

        Args:
            serial_number: Serial number of the loan being paid
            amount: Amount collected; must be positive, may exceed the amount owed
            payment_date: Collection date
            schedule_kind: Collection schedule (may differ from the loan's own)
            agent_name: Collecting agent
            area_id: Area of the collection; defaults to the loan's area

        Returns:
            The stored Payment

        Raises:
            InvalidAmountError: amount is zero or negative
            LoanNotFoundError: serial number does not resolve
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise InvalidAmountError(f"Payment amount must be positive, got {amount}")

        loan = self.loan_manager.get_loan_by_serial(serial_number)
        if loan is None:
            raise LoanNotFoundError(f"No loan with serial number {serial_number!r}")

        with self.storage.atomic():
            payment = self.record_payment(
                loan, amount, payment_date, schedule_kind,
                agent_name=agent_name, area_id=area_id
            )
            self.reconcile_loan(loan)

        return payment

    def record_payment(
        self,
        loan: Loan,
        amount: Decimal,
        payment_date: Union[date, str],
        schedule_kind: Union[ScheduleKind, str],
        agent_name: Optional[str] = None,
        area_id: Optional[str] = None,
        batch_id: Optional[str] = None
    ) -> Payment:
        """
        Persist a payment row without reconciling.

        Callers must reconcile the loan inside the same atomic block.
        """
        now = utcnow()
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            serial_number=loan.serial_number,
            amount=amount,
            payment_date=as_date(payment_date),
            schedule_kind=schedule_kind,
            agent_name=agent_name or self.default_agent_name,
            area_id=area_id if area_id is not None else loan.area_id,
            batch_id=batch_id
        )
        self.storage.save(self.payments_table, payment.id, payment.to_dict())

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_ADDED,
                entity_type="payment",
                entity_id=payment.id,
                metadata={
                    "loan_id": loan.id,
                    "serial_number": loan.serial_number,
                    "amount": payment.amount,
                    "payment_date": payment.payment_date,
                    "schedule_kind": payment.schedule_kind,
                    "batch_id": batch_id
                }
            )

        logger.info(
            "Recorded payment %s of %s for loan %s",
            payment.id, payment.amount, loan.serial_number
        )
        return payment

    def delete_payment(self, payment_id: str) -> Loan:
        """
        Delete a payment and reconcile its loan

        Returns:
            The reconciled owning loan

        Raises:
            PaymentNotFoundError: payment does not exist
            LoanNotFoundError: the owning loan no longer exists
        """
        payment = self.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")

        loan = self.loan_manager.get_loan(payment.loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {payment.loan_id} not found")

        with self.storage.atomic():
            self.storage.delete(self.payments_table, payment_id)
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PAYMENT_DELETED,
                    entity_type="payment",
                    entity_id=payment_id,
                    metadata={
                        "loan_id": loan.id,
                        "amount": payment.amount,
                        "payment_date": payment.payment_date
                    }
                )
            self.reconcile_loan(loan)

        logger.info("Deleted payment %s from loan %s", payment_id, loan.serial_number)
        return loan

    def reconcile_loan(self, loan: Union[Loan, str]) -> ReconcileResult:
        """Reconcile one loan from its stored payments and save it"""
        if isinstance(loan, str):
            loan_id = loan
            loan = self.loan_manager.get_loan(loan_id)
            if loan is None:
                raise LoanNotFoundError(f"Loan {loan_id} not found")

        before = (loan.total_paid, loan.is_fully_paid)
        result = reconcile(loan, self.get_loan_payments(loan.id))
        self.loan_manager.save_loan(loan)

        if self.audit_trail and before != (result.total_paid, result.is_fully_paid):
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_RECONCILED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "total_paid": result.total_paid,
                    "is_fully_paid": result.is_fully_paid,
                    "raw_total": result.raw_total,
                    "overpayment": result.overpayment
                }
            )
        return result

    def reconcile_all(self) -> Dict[str, int]:
        """Reconcile every stored loan"""
        results = {"loans_processed": 0, "fully_paid": 0}
        with self.storage.atomic():
            for loan in self.loan_manager.list_loans():
                result = self.reconcile_loan(loan)
                results["loans_processed"] += 1
                if result.is_fully_paid:
                    results["fully_paid"] += 1
        return results

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        data = self.storage.load(self.payments_table, payment_id)
        if data:
            return Payment.from_dict(data)
        return None

    def get_loan_payments(self, loan_id: str) -> List[Payment]:
        """Payment history for a loan, oldest first"""
        payments = [Payment.from_dict(data)
                    for data in self.storage.find(self.payments_table, {"loan_id": loan_id})]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def get_payments(
        self,
        area_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        schedule_kind: Optional[ScheduleKind] = None
    ) -> List[Payment]:
        """All payments, optionally restricted by area, date window and schedule"""
        filters = {}
        if area_id is not None:
            filters["area_id"] = area_id
        if schedule_kind is not None:
            filters["schedule_kind"] = ScheduleKind(schedule_kind).value

        payments = [Payment.from_dict(data)
                    for data in self.storage.find(self.payments_table, filters)]
        payments = filter_payments_by_date(payments, start_date, end_date)
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments


def filter_payments_by_date(
    payments: Iterable[Payment],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> List[Payment]:
    """Payments dated within [start_date, end_date]; open bounds when None"""
    start = as_date(start_date) if start_date else None
    end = as_date(end_date) if end_date else None
    return [
        payment for payment in payments
        if (start is None or payment.payment_date >= start)
        and (end is None or payment.payment_date <= end)
    ]
