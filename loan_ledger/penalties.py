"""
Penalty Accrual Module

Adds overdue penalties to loans past their deadline, once per elapsed unit
since the last accrual. The per-period rate is the flat interest divided by
the loan's originally recorded period count.

Units: daily loans accrue per day, weekly loans per full 7 days, monthly
loans per full 30 days. Partial units are not accrued and the accrual date
is left alone, so they count toward the next run.
"""

import copy
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Union

from .audit import AuditTrail, AuditEventType
from .currency import ZERO
from .models import Loan
from .terms import DAYS_PER_PENALTY_MONTH, DAYS_PER_WEEK, ScheduleKind, as_date

logger = logging.getLogger(__name__)

# Loan fields written by an accrual and its reconcile
LEDGER_STATE_FIELDS = (
    "penalty_amount", "last_penalty_calculated", "total_paid", "is_fully_paid", "updated_at"
)


@dataclass(frozen=True)
class PenaltyAccrual:
    """Result of evaluating a loan's penalty as of a date"""
    penalty_to_add: Decimal
    days_elapsed: int = 0
    units_elapsed: int = 0
    per_period_rate: Decimal = ZERO
    reason: str = ""

    @property
    def applies(self) -> bool:
        return self.penalty_to_add > ZERO


def penalty_period_count(loan: Loan) -> Optional[int]:
    """
    Period count used for the penalty rate: the recorded weeks or months,
    or number_of_days when the schedule-specific count was never recorded.
    """
    if loan.schedule_kind == ScheduleKind.WEEKLY and loan.number_of_weeks:
        return loan.number_of_weeks
    if loan.schedule_kind == ScheduleKind.MONTHLY and loan.number_of_months:
        return loan.number_of_months
    return loan.number_of_days


def calculate_penalty(loan: Loan, now: Union[date, str]) -> PenaltyAccrual:
    """
    Evaluate the penalty increment for a loan without changing it.

    Never raises on incomplete records: a missing deadline or period count
    yields a zero accrual with a reason.
    """
    now = as_date(now)

    if loan.deadline_date is None:
        return PenaltyAccrual(ZERO, reason="no deadline")
    if now <= loan.deadline_date:
        return PenaltyAccrual(ZERO, reason="not overdue")

    since = loan.last_penalty_calculated or loan.deadline_date
    days_elapsed = (now - since).days
    if days_elapsed <= 0:
        return PenaltyAccrual(ZERO, days_elapsed=days_elapsed, reason="already accrued")

    period_count = penalty_period_count(loan)
    if not period_count or period_count <= 0:
        return PenaltyAccrual(ZERO, days_elapsed=days_elapsed, reason="no period count")

    per_period_rate = loan.interest_amount / period_count

    if loan.schedule_kind == ScheduleKind.DAILY:
        units = days_elapsed
    elif loan.schedule_kind == ScheduleKind.WEEKLY:
        units = days_elapsed // DAYS_PER_WEEK
    else:
        units = days_elapsed // DAYS_PER_PENALTY_MONTH

    return PenaltyAccrual(
        penalty_to_add=per_period_rate * units,
        days_elapsed=days_elapsed,
        units_elapsed=units,
        per_period_rate=per_period_rate,
        reason="accrued" if units else "partial period"
    )


def accrue_penalty(loan: Loan, now: Union[date, str]) -> PenaltyAccrual:
    """
    Apply the penalty increment to the loan.

    penalty_amount only ever grows; last_penalty_calculated moves to now
    only when something was added. Calling twice with the same now adds
    nothing the second time.
    """
    accrual = calculate_penalty(loan, now)
    if accrual.applies:
        loan.penalty_amount = loan.penalty_amount + accrual.penalty_to_add
        loan.last_penalty_calculated = as_date(now)
    return accrual


class PenaltyEngine:
    """
    Runs penalty accrual over stored loans
    """

    def __init__(
        self,
        loan_manager,
        payment_ledger,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.loan_manager = loan_manager
        self.payment_ledger = payment_ledger
        self.storage = loan_manager.storage
        self.audit_trail = audit_trail

    def accrue_for_loan(self, loan: Loan, now: Union[date, str]) -> PenaltyAccrual:
        """
        Accrue one loan, persist it and re-reconcile when penalty changed.

        The passed loan is updated only after the write commits, so a failed
        save can be retried with the same object.
        """
        accrual = calculate_penalty(loan, now)
        if not accrual.applies:
            logger.debug("No penalty for loan %s: %s", loan.serial_number, accrual.reason)
            return accrual

        working = copy.copy(loan)
        with self.storage.atomic():
            accrual = accrue_penalty(working, now)
            # Penalty raises the amount owed, so the paid state can change
            self.payment_ledger.reconcile_loan(working)
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PENALTY_ACCRUED,
                    entity_type="loan",
                    entity_id=working.id,
                    metadata={
                        "penalty_added": accrual.penalty_to_add,
                        "penalty_amount": working.penalty_amount,
                        "days_elapsed": accrual.days_elapsed,
                        "units_elapsed": accrual.units_elapsed,
                        "accrued_on": working.last_penalty_calculated
                    }
                )

        for name in LEDGER_STATE_FIELDS:
            setattr(loan, name, getattr(working, name))

        logger.info(
            "Accrued penalty %s on loan %s (total %s)",
            accrual.penalty_to_add, loan.serial_number, loan.penalty_amount
        )
        return accrual

    def run_accrual(self, now: Union[date, str], area_id: Optional[str] = None) -> Dict[str, int]:
        """
        Accrue penalties on every unpaid loan.

        A failure on one loan is logged and counted; the sweep continues.
        """
        results = {"loans_processed": 0, "penalties_applied": 0, "skipped": 0, "errors": 0}

        for loan in self.loan_manager.list_loans(area_id):
            if loan.is_fully_paid:
                results["skipped"] += 1
                continue
            if loan.deadline_date is None:
                logger.warning("Loan %s has no deadline; penalty skipped", loan.serial_number)
                results["skipped"] += 1
                continue

            try:
                accrual = self.accrue_for_loan(loan, now)
            except Exception:
                logger.exception("Penalty accrual failed for loan %s", loan.serial_number)
                results["errors"] += 1
                continue

            results["loans_processed"] += 1
            if accrual.applies:
                results["penalties_applied"] += 1

        logger.info("Penalty run complete: %s", results)
        return results
