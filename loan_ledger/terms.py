"""
Loan Term Calculator

Derives the schedule-dependent figures of a loan (total payable, installment,
deadline, interest percent) from its raw terms. Interest is a flat fee, not a
rate, so nothing here compounds.

All functions are pure. Callers re-run calculate_terms whenever any input
changes instead of patching derived fields.
"""

import calendar
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from .currency import ZERO, to_decimal
from .errors import InvalidTermError


class ScheduleKind(Enum):
    """Repayment / collection schedules"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


DAYS_PER_WEEK = 7
# Penalty accrual and the weeks/months fallback count a month as 30 days
DAYS_PER_PENALTY_MONTH = 30


def as_date(value: Union[date, datetime, str]) -> date:
    """Normalize a date, datetime or ISO string to a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def add_months(start_date: date, months: int) -> date:
    """Add calendar months to a date, clamping to the last day of the month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass
class LoanTerms:
    """Raw terms of a loan as originated"""
    principal: Decimal
    interest_amount: Decimal
    schedule_kind: ScheduleKind
    issued_date: date
    number_of_days: Optional[int] = None
    number_of_weeks: Optional[int] = None
    number_of_months: Optional[int] = None

    def __post_init__(self):
        self.principal = to_decimal(self.principal)
        self.interest_amount = to_decimal(self.interest_amount)
        if not isinstance(self.schedule_kind, ScheduleKind):
            self.schedule_kind = ScheduleKind(self.schedule_kind)
        self.issued_date = as_date(self.issued_date)

    @property
    def period_count(self) -> Optional[int]:
        """Number of repayment periods for the schedule"""
        return resolve_period_count(
            self.schedule_kind,
            self.number_of_days,
            self.number_of_weeks,
            self.number_of_months
        )


@dataclass(frozen=True)
class TermFigures:
    """Figures derived from loan terms"""
    total_payable: Decimal
    installment_amount: Decimal
    deadline_date: date
    interest_percent: Decimal


def resolve_period_count(
    schedule_kind: ScheduleKind,
    number_of_days: Optional[int] = None,
    number_of_weeks: Optional[int] = None,
    number_of_months: Optional[int] = None
) -> Optional[int]:
    """
    Pick the period count for a schedule.

    Weekly and monthly loans recorded without their specific count fall back
    to ceil(days / 7) and ceil(days / 30). Returns None when nothing usable
    was recorded.
    """
    if schedule_kind == ScheduleKind.DAILY:
        return number_of_days
    if schedule_kind == ScheduleKind.WEEKLY:
        if number_of_weeks:
            return number_of_weeks
        if number_of_days:
            return math.ceil(number_of_days / DAYS_PER_WEEK)
        return None
    if schedule_kind == ScheduleKind.MONTHLY:
        if number_of_months:
            return number_of_months
        if number_of_days:
            return math.ceil(number_of_days / DAYS_PER_PENALTY_MONTH)
        return None
    raise ValueError(f"Unsupported schedule kind: {schedule_kind}")


def calculate_deadline(issued_date: date, schedule_kind: ScheduleKind, period_count: int) -> date:
    """Deadline after period_count periods; months use calendar arithmetic"""
    if schedule_kind == ScheduleKind.DAILY:
        return issued_date + timedelta(days=period_count)
    if schedule_kind == ScheduleKind.WEEKLY:
        return issued_date + timedelta(days=period_count * DAYS_PER_WEEK)
    if schedule_kind == ScheduleKind.MONTHLY:
        return add_months(issued_date, period_count)
    raise ValueError(f"Unsupported schedule kind: {schedule_kind}")


def equivalent_days(issued_date: date, schedule_kind: ScheduleKind, period_count: int) -> int:
    """Length of the loan term in days"""
    return (calculate_deadline(issued_date, schedule_kind, period_count) - issued_date).days


def calculate_interest_percent(principal: Decimal, interest_amount: Decimal) -> Decimal:
    """Flat interest as a percentage of principal"""
    if principal > ZERO:
        return interest_amount / principal * 100
    return ZERO


def validate_terms(terms: LoanTerms) -> int:
    """
    Check that terms can produce a schedule.

    Returns:
        The resolved period count

    Raises:
        InvalidTermError: principal or period count is not positive, or
            interest is negative
    """
    if terms.principal <= ZERO:
        raise InvalidTermError(f"Principal must be positive, got {terms.principal}")
    if terms.interest_amount < ZERO:
        raise InvalidTermError(f"Interest amount cannot be negative, got {terms.interest_amount}")
    period_count = terms.period_count
    if not period_count or period_count <= 0:
        raise InvalidTermError(
            f"A positive period count is required for {terms.schedule_kind.value} loans"
        )
    return period_count


def calculate_terms(terms: LoanTerms) -> Optional[TermFigures]:
    """
    Derive total payable, installment, deadline and interest percent.

    Fails closed: returns None when no positive period count is available,
    so a sweep over many records is not halted by one bad record.
    """
    period_count = terms.period_count
    if not period_count or period_count <= 0:
        return None

    total_payable = terms.principal + terms.interest_amount
    return TermFigures(
        total_payable=total_payable,
        installment_amount=total_payable / period_count,
        deadline_date=calculate_deadline(terms.issued_date, terms.schedule_kind, period_count),
        interest_percent=calculate_interest_percent(terms.principal, terms.interest_amount)
    )
