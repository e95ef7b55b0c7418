"""
Batch Payment Module

Stages a collection run (many payment entries for one date and schedule)
against current loan state, then commits the valid part atomically.

Staging never raises for bad entries: unresolvable serials and
non-positive amounts are reported per entry so the caller can retry just
those. Entries for the same loan are merged into one payment row.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .audit import AuditTrail, AuditEventType
from .currency import ZERO, Amount, to_decimal
from .errors import BatchPartialFailureError, ErrorKind
from .models import Loan, Payment
from .storage import StorageInterface
from .terms import ScheduleKind, as_date

logger = logging.getLogger(__name__)


@dataclass
class PaymentEntry:
    """One line of a collection run as entered"""
    serial_number: str
    amount: Amount
    agent_name: Optional[str] = None
    entry_id: Optional[str] = None

    @classmethod
    def coerce(cls, entry: Union['PaymentEntry', Tuple, Dict[str, Any]]) -> 'PaymentEntry':
        """Accept PaymentEntry, (serial, amount[, agent]) tuples or dicts"""
        if isinstance(entry, cls):
            return entry
        if isinstance(entry, dict):
            return cls(**entry)
        return cls(*entry)


@dataclass
class StagedPayment:
    """A validated payment candidate, possibly merged from several entries"""
    loan_id: str
    serial_number: str
    amount: Decimal
    payment_date: date
    schedule_kind: ScheduleKind
    agent_name: Optional[str] = None
    entry_ids: List[str] = field(default_factory=list)
    entry_count: int = 1

    @property
    def key(self) -> Tuple[str, date, ScheduleKind]:
        return (self.loan_id, self.payment_date, self.schedule_kind)


@dataclass
class FailedPayment:
    """An entry rejected during staging"""
    serial_number: str
    reason: ErrorKind
    entry_id: Optional[str] = None
    message: str = ""


@dataclass
class BatchResult:
    """Staged batch: candidates to commit and entries that failed"""
    batch_id: str
    payment_date: date
    schedule_kind: ScheduleKind
    successful_payments: List[StagedPayment] = field(default_factory=list)
    failed_payments: List[FailedPayment] = field(default_factory=list)
    area_id: Optional[str] = None
    committed: bool = False
    payment_ids: List[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_payments)

    @property
    def total_amount(self) -> Decimal:
        return sum((p.amount for p in self.successful_payments), ZERO)

    def stats(self) -> Dict[str, Any]:
        processed = sum(p.entry_count for p in self.successful_payments)
        failed = len(self.failed_payments)
        total = processed + failed
        return {
            'batch_id': self.batch_id,
            'total_entries': total,
            'processed': processed,
            'failed': failed,
            'success_rate': (Decimal(processed) / Decimal(total) * 100) if total else ZERO,
            'total_amount': self.total_amount,
        }


class BatchPaymentProcessor:
    """
    Validates and commits collection runs
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager,
        payment_ledger,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.payment_ledger = payment_ledger
        self.audit_trail = audit_trail

    def stage(
        self,
        entries: Iterable[Union[PaymentEntry, Tuple, Dict[str, Any]]],
        payment_date: Union[date, str],
        schedule_kind: Union[ScheduleKind, str],
        area_id: Optional[str] = None
    ) -> BatchResult:
        """
        Validate entries against current loan state without writing anything

        Args:
            entries: PaymentEntry values or (serial, amount[, agent]) tuples
            payment_date: Collection date applied to every entry
            schedule_kind: Collection schedule applied to every entry
            area_id: Area recorded on the payments

        Returns:
            BatchResult with merged candidates and per-entry failures
        """
        payment_date = as_date(payment_date)
        schedule_kind = ScheduleKind(schedule_kind)
        result = BatchResult(
            batch_id=str(uuid.uuid4()),
            payment_date=payment_date,
            schedule_kind=schedule_kind,
            area_id=area_id
        )
        staged: Dict[Tuple[str, date, ScheduleKind], StagedPayment] = {}

        for raw in entries:
            entry = PaymentEntry.coerce(raw)
            serial = str(entry.serial_number or "").strip()

            try:
                amount = to_decimal(entry.amount)
            except ValueError:
                amount = None
            if amount is None or amount <= ZERO:
                result.failed_payments.append(FailedPayment(
                    serial_number=serial,
                    reason=ErrorKind.INVALID_AMOUNT,
                    entry_id=entry.entry_id,
                    message=f"Amount must be positive, got {entry.amount!r}"
                ))
                continue

            loan = self.loan_manager.get_loan_by_serial(serial)
            if loan is None:
                result.failed_payments.append(FailedPayment(
                    serial_number=serial,
                    reason=ErrorKind.LOAN_NOT_FOUND,
                    entry_id=entry.entry_id,
                    message=f"No loan with serial number {serial!r}"
                ))
                continue

            key = (loan.id, payment_date, schedule_kind)
            if key in staged:
                staged[key].amount += amount
                staged[key].entry_count += 1
                if entry.entry_id:
                    staged[key].entry_ids.append(entry.entry_id)
                continue

            candidate = StagedPayment(
                loan_id=loan.id,
                serial_number=loan.serial_number,
                amount=amount,
                payment_date=payment_date,
                schedule_kind=schedule_kind,
                agent_name=entry.agent_name,
                entry_ids=[entry.entry_id] if entry.entry_id else []
            )
            staged[candidate.key] = candidate
            result.successful_payments.append(candidate)

        if result.has_failures:
            logger.warning(
                "Batch %s staged with %d failed entries: %s",
                result.batch_id, len(result.failed_payments),
                [f.serial_number for f in result.failed_payments]
            )
        return result

    def commit(self, result: BatchResult, allow_partial: bool = False) -> List[Payment]:
        """
        Persist every staged candidate and reconcile the touched loans.

        Either all candidates persist or none do.

        Raises:
            BatchPartialFailureError: the batch has failed entries and
                allow_partial is False
            ValueError: the batch was already committed
        """
        if result.committed:
            raise ValueError(f"Batch {result.batch_id} already committed")
        if result.has_failures and not allow_partial:
            raise BatchPartialFailureError(
                f"Batch {result.batch_id} has {len(result.failed_payments)} failed entries",
                failed_serials=[f.serial_number for f in result.failed_payments]
            )

        payments = []
        touched: Dict[str, Loan] = {}
        with self.storage.atomic():
            for candidate in result.successful_payments:
                loan = touched.get(candidate.loan_id) or self.loan_manager.get_loan(candidate.loan_id)
                if loan is None:
                    # Deleted between stage and commit
                    raise BatchPartialFailureError(
                        f"Loan {candidate.serial_number} disappeared before commit",
                        failed_serials=[candidate.serial_number]
                    )
                touched[loan.id] = loan
                payments.append(self.payment_ledger.record_payment(
                    loan,
                    candidate.amount,
                    candidate.payment_date,
                    candidate.schedule_kind,
                    agent_name=candidate.agent_name,
                    area_id=result.area_id,
                    batch_id=result.batch_id
                ))

            for loan in touched.values():
                self.payment_ledger.reconcile_loan(loan)

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.BATCH_COMMITTED,
                    entity_type="batch",
                    entity_id=result.batch_id,
                    metadata={
                        "payment_date": result.payment_date,
                        "schedule_kind": result.schedule_kind,
                        "payments": len(payments),
                        "total_amount": result.total_amount,
                        "failed_serials": [f.serial_number for f in result.failed_payments]
                    }
                )

        result.committed = True
        result.payment_ids = [p.id for p in payments]
        logger.info(
            "Committed batch %s: %d payments totalling %s",
            result.batch_id, len(payments), result.total_amount
        )
        return payments

    def process(
        self,
        entries: Iterable[Union[PaymentEntry, Tuple, Dict[str, Any]]],
        payment_date: Union[date, str],
        schedule_kind: Union[ScheduleKind, str],
        area_id: Optional[str] = None,
        allow_partial: bool = False
    ) -> BatchResult:
        """Stage then commit; failed entries stay visible on the result"""
        result = self.stage(entries, payment_date, schedule_kind, area_id)
        self.commit(result, allow_partial=allow_partial)
        return result
