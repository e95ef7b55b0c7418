"""
Test suite for the payment ledger

A loan's paid state is always recomputed from its full payment history:
overpayment is capped on the loan, deletes undo exactly, and reconciling
twice changes nothing.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.audit import AuditTrail, AuditEventType
from loan_ledger.errors import (
    ErrorKind, InvalidAmountError, LoanNotFoundError, PaymentNotFoundError
)
from loan_ledger.ledger import (
    PaymentLedger, calculate_reconciliation, filter_payments_by_date, reconcile
)
from loan_ledger.loans import LoanManager
from loan_ledger.models import Payment, utcnow
from loan_ledger.storage import InMemoryStorage, SQLiteStorage
from loan_ledger.terms import LoanTerms, ScheduleKind


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    yield backend
    backend.close()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def loan_manager(storage, audit_trail):
    return LoanManager(storage, audit_trail)


@pytest.fixture
def ledger(storage, loan_manager, audit_trail):
    return PaymentLedger(storage, loan_manager, audit_trail)


@pytest.fixture
def loan(loan_manager):
    return loan_manager.create_loan("1", LoanTerms(
        principal=Decimal('1000'),
        interest_amount=Decimal('100'),
        schedule_kind=ScheduleKind.DAILY,
        issued_date=date(2024, 1, 1),
        number_of_days=10
    ), name="Ravi")


def make_payment(loan, amount, day=2):
    now = utcnow()
    return Payment(
        id=f"p-{amount}-{day}",
        created_at=now,
        updated_at=now,
        loan_id=loan.id,
        serial_number=loan.serial_number,
        amount=Decimal(amount),
        payment_date=date(2024, 1, day),
        schedule_kind=ScheduleKind.DAILY
    )


class TestReconcile:
    """Test the pure reconciliation"""

    def test_overpayment_capped(self, loan):
        payments = [make_payment(loan, '600', 2), make_payment(loan, '600', 3)]

        result = reconcile(loan, payments)

        assert result.raw_total == Decimal('1200')
        assert result.total_paid == Decimal('1100')
        assert result.overpayment == Decimal('100')
        assert loan.total_paid == Decimal('1100')
        assert loan.is_fully_paid

    def test_partial_payment(self, loan):
        result = reconcile(loan, [make_payment(loan, '300')])

        assert loan.total_paid == Decimal('300')
        assert not loan.is_fully_paid
        assert result.overpayment == Decimal('0')

    def test_idempotent(self, loan):
        payments = [make_payment(loan, '250', 2), make_payment(loan, '400', 3)]

        first = reconcile(loan, payments)
        second = reconcile(loan, payments)

        assert first == second
        assert loan.total_paid == Decimal('650')

    def test_penalty_counts_toward_owed(self, loan):
        loan.penalty_amount = Decimal('100')

        reconcile(loan, [make_payment(loan, '1150')])

        assert loan.total_paid == Decimal('1150')
        assert not loan.is_fully_paid

    def test_calculate_does_not_mutate(self, loan):
        calculate_reconciliation(loan, [make_payment(loan, '500')])
        assert loan.total_paid == Decimal('0')

    def test_no_payments(self, loan):
        reconcile(loan, [])
        assert loan.total_paid == Decimal('0')
        assert not loan.is_fully_paid


class TestPaymentLedger:
    """Test stored payments"""

    def test_two_payments_of_600(self, ledger, loan_manager, loan):
        """1000 + 100 loan paid 600 twice: capped at the amount owed"""
        ledger.add_payment("1", Decimal('600'), date(2024, 1, 2), ScheduleKind.DAILY)
        ledger.add_payment("1", Decimal('600'), date(2024, 1, 3), ScheduleKind.DAILY)

        stored = loan_manager.get_loan(loan.id)
        assert stored.total_paid == Decimal('1100')
        assert stored.is_fully_paid

    def test_extra_payment_after_fully_paid(self, ledger, loan_manager):
        loan = loan_manager.create_loan("7", LoanTerms(
            principal=Decimal('1000'),
            interest_amount=Decimal('200'),
            schedule_kind=ScheduleKind.DAILY,
            issued_date=date(2024, 1, 1),
            number_of_days=12
        ))
        ledger.add_payment("7", Decimal('600'), date(2024, 1, 2), ScheduleKind.DAILY)
        ledger.add_payment("7", Decimal('600'), date(2024, 1, 3), ScheduleKind.DAILY)

        stored = loan_manager.get_loan(loan.id)
        assert stored.total_paid == Decimal('1200')
        assert stored.is_fully_paid

        ledger.add_payment("7", Decimal('50'), date(2024, 1, 4), ScheduleKind.DAILY)
        stored = loan_manager.get_loan(loan.id)
        assert stored.total_paid == Decimal('1200')
        assert len(ledger.get_loan_payments(loan.id)) == 3

    def test_payment_defaults(self, ledger, loan):
        payment = ledger.add_payment("1", "250.50", "2024-01-02", "weekly")

        assert payment.amount == Decimal('250.50')
        assert payment.schedule_kind == ScheduleKind.WEEKLY
        assert payment.agent_name == "Not specified"
        assert payment.loan_id == loan.id

    def test_serial_is_trimmed(self, ledger, loan):
        payment = ledger.add_payment("  1 ", Decimal('10'), date(2024, 1, 2), ScheduleKind.DAILY)
        assert payment.loan_id == loan.id

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-5')])
    def test_invalid_amount(self, ledger, loan, amount):
        with pytest.raises(InvalidAmountError) as exc_info:
            ledger.add_payment("1", amount, date(2024, 1, 2), ScheduleKind.DAILY)
        assert exc_info.value.kind == ErrorKind.INVALID_AMOUNT
        assert ledger.get_loan_payments(loan.id) == []

    def test_unknown_serial(self, ledger, loan):
        with pytest.raises(LoanNotFoundError) as exc_info:
            ledger.add_payment("99", Decimal('10'), date(2024, 1, 2), ScheduleKind.DAILY)
        assert exc_info.value.kind == ErrorKind.LOAN_NOT_FOUND

    def test_delete_payment_reconciles(self, ledger, loan_manager, loan):
        first = ledger.add_payment("1", Decimal('600'), date(2024, 1, 2), ScheduleKind.DAILY)
        ledger.add_payment("1", Decimal('600'), date(2024, 1, 3), ScheduleKind.DAILY)

        updated = ledger.delete_payment(first.id)

        assert updated.total_paid == Decimal('600')
        assert not updated.is_fully_paid
        assert loan_manager.get_loan(loan.id).total_paid == Decimal('600')

    def test_delete_missing_payment(self, ledger):
        with pytest.raises(PaymentNotFoundError):
            ledger.delete_payment("nope")

    def test_reconcile_all(self, ledger, loan_manager, loan):
        ledger.add_payment("1", Decimal('1100'), date(2024, 1, 2), ScheduleKind.DAILY)

        results = ledger.reconcile_all()

        assert results == {"loans_processed": 1, "fully_paid": 1}

    def test_reconcile_by_id(self, ledger, loan):
        ledger.add_payment("1", Decimal('100'), date(2024, 1, 2), ScheduleKind.DAILY)
        result = ledger.reconcile_loan(loan.id)
        assert result.total_paid == Decimal('100')

        with pytest.raises(LoanNotFoundError):
            ledger.reconcile_loan("missing")

    def test_get_payments_filters(self, ledger, loan):
        ledger.add_payment("1", Decimal('100'), date(2024, 1, 2), ScheduleKind.DAILY)
        ledger.add_payment("1", Decimal('200'), date(2024, 1, 5), ScheduleKind.WEEKLY)
        ledger.add_payment("1", Decimal('300'), date(2024, 1, 9), ScheduleKind.DAILY)

        window = ledger.get_payments(start_date=date(2024, 1, 3), end_date=date(2024, 1, 9))
        assert [p.amount for p in window] == [Decimal('200'), Decimal('300')]

        daily = ledger.get_payments(schedule_kind=ScheduleKind.DAILY)
        assert [p.amount for p in daily] == [Decimal('100'), Decimal('300')]

    def test_audit_events(self, ledger, audit_trail, loan):
        payment = ledger.add_payment("1", Decimal('100'), date(2024, 1, 2), ScheduleKind.DAILY)
        ledger.delete_payment(payment.id)

        assert len(audit_trail.get_events_by_type(AuditEventType.PAYMENT_ADDED)) == 1
        assert len(audit_trail.get_events_by_type(AuditEventType.PAYMENT_DELETED)) == 1
        assert len(audit_trail.get_events_by_type(AuditEventType.LOAN_RECONCILED)) == 2
        assert audit_trail.verify_integrity()['valid']


class TestFilterPaymentsByDate:
    """Test date window filtering"""

    def test_bounds_inclusive(self, loan):
        payments = [make_payment(loan, '1', day) for day in (1, 5, 10)]

        result = filter_payments_by_date(payments, date(2024, 1, 5), date(2024, 1, 10))

        assert [p.payment_date.day for p in result] == [5, 10]

    def test_open_bounds(self, loan):
        payments = [make_payment(loan, '1', day) for day in (1, 5, 10)]
        assert len(filter_payments_by_date(payments)) == 3
        assert len(filter_payments_by_date(payments, end_date=date(2024, 1, 5))) == 2
