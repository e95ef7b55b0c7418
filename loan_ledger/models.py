"""
Ledger Data Model

Loan, Payment and Area records with their storage (de)serialization.
Persisted shape mirrors the fields one-to-one: ISO-8601 date strings and
Decimal amounts as strings.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .currency import ZERO, to_decimal
from .storage import StorageRecord
from .terms import LoanTerms, ScheduleKind, TermFigures, as_date


def utcnow() -> datetime:
    """Timestamp for created_at / updated_at"""
    return datetime.now(timezone.utc)


def _optional_date(value) -> Optional[date]:
    if value in (None, ""):
        return None
    return as_date(value)


def _optional_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


@dataclass
class Area(StorageRecord):
    """Grouping of loans (collection route, village, branch)"""
    name: str
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Area':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            description=data.get('description', "")
        )


@dataclass
class Loan(StorageRecord):
    """
    A single lending relationship.

    Terms fields are set at origination; derived fields are recomputed from
    them by the term calculator; ledger fields are owned by reconcile and
    penalty accrual.
    """
    serial_number: str
    principal: Decimal
    interest_amount: Decimal
    issued_date: date
    schedule_kind: ScheduleKind
    number_of_days: Optional[int] = None
    number_of_weeks: Optional[int] = None
    number_of_months: Optional[int] = None
    area_id: Optional[str] = None

    # Borrower contact details
    name: str = ""
    mobile: str = ""
    address: str = ""
    guarantor: str = ""

    # Derived from terms
    total_payable: Decimal = ZERO
    installment_amount: Decimal = ZERO
    deadline_date: Optional[date] = None
    interest_percent: Decimal = ZERO

    # Ledger state
    total_paid: Decimal = ZERO
    is_fully_paid: bool = False
    penalty_amount: Decimal = ZERO
    last_penalty_calculated: Optional[date] = None

    def __post_init__(self):
        for field_name in ('principal', 'interest_amount', 'total_payable',
                           'installment_amount', 'interest_percent',
                           'total_paid', 'penalty_amount'):
            setattr(self, field_name, to_decimal(getattr(self, field_name)))
        if not isinstance(self.schedule_kind, ScheduleKind):
            self.schedule_kind = ScheduleKind(self.schedule_kind)
        self.issued_date = as_date(self.issued_date)

    @property
    def terms(self) -> LoanTerms:
        """Raw terms of this loan"""
        return LoanTerms(
            principal=self.principal,
            interest_amount=self.interest_amount,
            schedule_kind=self.schedule_kind,
            issued_date=self.issued_date,
            number_of_days=self.number_of_days,
            number_of_weeks=self.number_of_weeks,
            number_of_months=self.number_of_months
        )

    @property
    def period_count(self) -> Optional[int]:
        return self.terms.period_count

    @property
    def amount_owed(self) -> Decimal:
        """Total obligation including accrued penalty"""
        return self.total_payable + self.penalty_amount

    @property
    def balance_due(self) -> Decimal:
        return max(ZERO, self.amount_owed - self.total_paid)

    def is_overdue(self, as_of: date) -> bool:
        """Past the deadline and not fully paid"""
        if self.deadline_date is None or self.is_fully_paid:
            return False
        return as_date(as_of) > self.deadline_date

    def apply_term_figures(self, figures: TermFigures) -> None:
        """Overwrite derived fields with freshly calculated figures"""
        self.total_payable = figures.total_payable
        self.installment_amount = figures.installment_amount
        self.deadline_date = figures.deadline_date
        self.interest_percent = figures.interest_percent

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['schedule_kind'] = self.schedule_kind.value
        for field_name in ('issued_date', 'deadline_date', 'last_penalty_calculated'):
            value = getattr(self, field_name)
            result[field_name] = value.isoformat() if value else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            serial_number=data['serial_number'],
            principal=Decimal(data['principal']),
            interest_amount=Decimal(data['interest_amount']),
            issued_date=date.fromisoformat(data['issued_date']),
            schedule_kind=ScheduleKind(data['schedule_kind']),
            number_of_days=_optional_int(data.get('number_of_days')),
            number_of_weeks=_optional_int(data.get('number_of_weeks')),
            number_of_months=_optional_int(data.get('number_of_months')),
            area_id=data.get('area_id'),
            name=data.get('name', ""),
            mobile=data.get('mobile', ""),
            address=data.get('address', ""),
            guarantor=data.get('guarantor', ""),
            total_payable=Decimal(data.get('total_payable', '0')),
            installment_amount=Decimal(data.get('installment_amount', '0')),
            deadline_date=_optional_date(data.get('deadline_date')),
            interest_percent=Decimal(data.get('interest_percent', '0')),
            total_paid=Decimal(data.get('total_paid', '0')),
            is_fully_paid=bool(data.get('is_fully_paid', False)),
            penalty_amount=Decimal(data.get('penalty_amount', '0')),
            last_penalty_calculated=_optional_date(data.get('last_penalty_calculated'))
        )


@dataclass
class Payment(StorageRecord):
    """A collected payment; immutable once recorded"""
    loan_id: str
    serial_number: str
    amount: Decimal
    payment_date: date
    schedule_kind: ScheduleKind
    agent_name: Optional[str] = None
    area_id: Optional[str] = None
    batch_id: Optional[str] = None

    def __post_init__(self):
        self.amount = to_decimal(self.amount)
        if not isinstance(self.schedule_kind, ScheduleKind):
            self.schedule_kind = ScheduleKind(self.schedule_kind)
        self.payment_date = as_date(self.payment_date)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['schedule_kind'] = self.schedule_kind.value
        result['payment_date'] = self.payment_date.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            serial_number=data['serial_number'],
            amount=Decimal(data['amount']),
            payment_date=date.fromisoformat(data['payment_date']),
            schedule_kind=ScheduleKind(data['schedule_kind']),
            agent_name=data.get('agent_name'),
            area_id=data.get('area_id'),
            batch_id=data.get('batch_id')
        )
