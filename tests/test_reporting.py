"""
Test suite for the Reporting Engine module
"""

import csv
import io
import json

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.balance_sheet import BalanceSheetFilter, LoanStatusFilter
from loan_ledger.config import LedgerConfig
from loan_ledger.errors import AreaNotFoundError
from loan_ledger.reporting import LoanListStatus, ReportFormat, ReportResult
from loan_ledger.system import LoanLedgerSystem
from loan_ledger.terms import LoanTerms, ScheduleKind


def daily_terms(principal, interest):
    return LoanTerms(
        principal=Decimal(principal),
        interest_amount=Decimal(interest),
        schedule_kind=ScheduleKind.DAILY,
        issued_date=date(2024, 1, 1),
        number_of_days=10
    )


@pytest.fixture
def system():
    ledger_system = LoanLedgerSystem(LedgerConfig(database_url="memory://", currency="INR"))
    north = ledger_system.area_manager.create_area("North")

    loans = ledger_system.loan_manager
    loans.create_loan("1", daily_terms('1000', '100'), area_id=north.id, name="Asha")
    loans.create_loan("2", daily_terms('2000', '200'), area_id=north.id, name="Bala")
    loans.create_loan("3", daily_terms('1000', '100'), name="Chitra")

    payments = ledger_system.payment_ledger
    payments.add_payment("1", Decimal('1100'), date(2024, 1, 5), ScheduleKind.DAILY)
    payments.add_payment("2", Decimal('550'), date(2024, 1, 5), ScheduleKind.WEEKLY)
    payments.add_payment("2", Decimal('550'), date(2024, 1, 8), ScheduleKind.DAILY)

    ledger_system.north_id = north.id
    yield ledger_system
    ledger_system.close()


@pytest.fixture
def reporting(system):
    return system.reporting_engine


class TestPortfolioSummary:
    """Test dashboard figures"""

    def test_summary(self, reporting):
        result = reporting.portfolio_summary(as_of=date(2024, 1, 5))
        summary = result.totals

        assert summary['total_loans'] == 3
        assert summary['active_loans'] == 2
        assert summary['completed_loans'] == 1
        assert summary['overdue_loans'] == 0
        assert summary['total_given'] == Decimal('4000')
        assert summary['total_due'] == Decimal('4400')
        assert summary['total_collected'] == Decimal('2200')
        assert summary['total_earnings'] == Decimal('200')
        assert summary['pending_amount'] == Decimal('2200')
        assert summary['todays_collection'] == Decimal('1650')
        assert summary['todays_payment_count'] == 2
        assert summary['currency'] == 'INR'
        assert result.metadata['display']['total_given'] == 'INR 4,000.00'

    def test_overdue_count(self, reporting):
        summary = reporting.portfolio_summary(as_of=date(2024, 1, 12)).totals
        assert summary['overdue_loans'] == 2

    def test_area_scope(self, reporting, system):
        summary = reporting.portfolio_summary(area_id=system.north_id, as_of=date(2024, 1, 5)).totals
        assert summary['total_loans'] == 2
        assert summary['total_given'] == Decimal('3000')


class TestAreaReport:
    """Test area performance"""

    def test_received_split(self, reporting, system):
        result = reporting.area_report(system.north_id)
        totals = result.totals

        assert totals['total_principal'] == Decimal('3000')
        assert totals['total_interest'] == Decimal('300')
        assert totals['total_paid'] == Decimal('2200')
        assert totals['received_principal'] == Decimal('2000')
        assert totals['received_interest'] == Decimal('200')
        assert totals['pending_principal'] == Decimal('1000')
        assert totals['pending_interest'] == Decimal('100')
        assert totals['fully_paid_loans'] == 1
        assert totals['pending_loans'] == 1
        assert len(result.data) == 2

    def test_payments_by_schedule(self, reporting, system):
        by_schedule = reporting.area_report(system.north_id).totals['payments_by_schedule']

        assert by_schedule['daily'] == {'count': 2, 'amount': Decimal('1650')}
        assert by_schedule['weekly'] == {'count': 1, 'amount': Decimal('550')}
        assert by_schedule['monthly']['count'] == 0

    def test_unknown_area(self, reporting):
        with pytest.raises(AreaNotFoundError):
            reporting.area_report("missing")


class TestCollectionAndEarnings:
    """Test windowed reports"""

    def test_collection_window(self, reporting):
        result = reporting.collection_report(date(2024, 1, 1), date(2024, 1, 6))

        assert result.totals['total_collected'] == Decimal('1650')
        assert result.totals['loans_paying'] == 2
        assert result.period_start == date(2024, 1, 1)

    def test_collection_by_schedule(self, reporting):
        result = reporting.collection_report(schedule_kind=ScheduleKind.WEEKLY)

        assert result.totals['total_collected'] == Decimal('550')
        assert result.metadata['schedule_kind'] == 'weekly'

    def test_earnings_window(self, reporting):
        result = reporting.earnings_report(date(2024, 1, 1), date(2024, 1, 6))

        assert result.totals['total_earnings'] == Decimal('150')
        assert len(result.data) == 3

    def test_overdue_list(self, reporting):
        result = reporting.loan_status_report(LoanListStatus.OVERDUE, as_of=date(2024, 1, 12))

        assert [row['serial_number'] for row in result.data] == ["2", "3"]
        assert result.data[0]['days_overdue'] == 1
        assert result.totals['balance_due'] == Decimal('2200')

    def test_paid_list(self, reporting):
        result = reporting.loan_status_report("paid")
        assert [row['serial_number'] for row in result.data] == ["1"]

    def test_collection_shows_current_serial(self, reporting, system):
        loan = system.loan_manager.get_loan_by_serial("1")
        system.loan_manager.update_loan(loan.id, serial_number="10")

        result = reporting.collection_report(date(2024, 1, 1), date(2024, 1, 31))

        assert [row['serial_number'] for row in result.data] == ["2", "10"]
        assert result.data[1]['amount'] == Decimal('1100')


class TestAreaScopedPayments:
    """Area reports follow the loan's current area, not the payment's"""

    def move_first_loan(self, system):
        south = system.area_manager.create_area("South")
        loan = system.loan_manager.get_loan_by_serial("1")
        system.loan_manager.update_loan(loan.id, area_id=south.id)
        return south.id

    def test_earnings_follow_moved_loan(self, reporting, system):
        south_id = self.move_first_loan(system)

        south = reporting.earnings_report(area_id=south_id)
        north = reporting.earnings_report(area_id=system.north_id)

        assert south.totals['total_earnings'] == Decimal('100')
        assert north.totals['total_earnings'] == Decimal('100')

    def test_summary_follows_moved_loan(self, reporting, system):
        south_id = self.move_first_loan(system)

        summary = reporting.portfolio_summary(area_id=south_id, as_of=date(2024, 1, 5)).totals

        assert summary['total_collected'] == Decimal('1100')
        assert summary['pending_amount'] == Decimal('0')
        assert summary['total_earnings'] == Decimal('100')

    def test_balance_sheet_follows_moved_loan(self, reporting, system):
        south_id = self.move_first_loan(system)

        result = reporting.balance_sheet_report(
            BalanceSheetFilter(area_id=south_id), report_date=date(2024, 1, 11)
        )

        assert [row['serial_number'] for row in result.data] == ["1"]
        assert result.data[0]['receivables'] == Decimal('0')
        assert result.totals['transaction_summary']['total_repaid'] == '1100.00'

    def test_area_report_after_move(self, reporting, system):
        self.move_first_loan(system)

        totals = reporting.area_report(system.north_id).totals

        assert totals['total_paid'] == Decimal('1100')
        assert totals['payments_by_schedule']['daily'] == {'count': 1, 'amount': Decimal('550')}

    def test_payment_recorded_under_other_area(self, reporting, system):
        system.payment_ledger.add_payment(
            "3", Decimal('500'), date(2024, 1, 6), ScheduleKind.DAILY, area_id=system.north_id
        )

        north = reporting.portfolio_summary(area_id=system.north_id, as_of=date(2024, 1, 6)).totals
        book = reporting.portfolio_summary(as_of=date(2024, 1, 6)).totals

        assert north['total_collected'] == Decimal('2200')
        assert book['total_collected'] == Decimal('2700')


class TestBalanceSheetReport:
    """Test balance sheet reporting"""

    def test_area_sheets_balance(self, reporting, system):
        result = reporting.balance_sheet_report(
            BalanceSheetFilter(area_id=system.north_id), report_date=date(2024, 1, 11)
        )

        assert len(result.data) == 2
        assert all(row['balanced'] for row in result.data)
        assert result.metadata['unbalanced'] == []
        assert result.totals['assets']['fixed_assets']['investments'] == '3000.00'

    def test_active_only(self, reporting):
        result = reporting.balance_sheet_report(
            BalanceSheetFilter(end_date=date(2024, 1, 11), loan_status=LoanStatusFilter.ACTIVE)
        )
        assert [row['serial_number'] for row in result.data] == ["2", "3"]


class TestExportReport:
    """Test report export formats"""

    def test_dict(self, reporting):
        result = reporting.portfolio_summary(as_of=date(2024, 1, 5))
        exported = reporting.export_report(result, ReportFormat.DICT)

        assert exported['report_id'] == 'portfolio_summary'
        assert exported['period_end'] == '2024-01-05'
        assert exported['metadata']['row_count'] == 1

    def test_json(self, reporting):
        result = reporting.collection_report(date(2024, 1, 1), date(2024, 1, 31))
        exported = json.loads(reporting.export_report(result, ReportFormat.JSON))

        assert exported['totals']['total_collected'] == '2200.00'
        assert len(exported['data']) == 2

    def test_csv(self, reporting):
        result = reporting.loan_status_report(LoanListStatus.PENDING)
        exported = reporting.export_report(result, ReportFormat.CSV)

        rows = list(csv.DictReader(io.StringIO(exported)))
        assert [row['serial_number'] for row in rows] == ["2", "3"]
        assert rows[0]['balance_due'] == '1100.00'

    def test_csv_empty(self, reporting):
        result = ReportResult(report_id="empty", generated_at=reporting.portfolio_summary().generated_at)
        assert reporting.export_report(result, ReportFormat.CSV) == ""

    def test_unsupported_format(self, reporting):
        result = reporting.portfolio_summary()
        with pytest.raises(ValueError):
            reporting.export_report(result, "xml")
