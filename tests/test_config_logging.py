"""
Tests for configuration, structured logging and system wiring
"""

import json
import logging
import sys

from decimal import Decimal
from datetime import date

from loan_ledger.config import LedgerConfig, get_config, reload_config
from loan_ledger.logging_config import JSONFormatter, get_logger, log_action, setup_logging
from loan_ledger.storage import InMemoryStorage, SQLiteStorage
from loan_ledger.system import LoanLedgerSystem
from loan_ledger.terms import LoanTerms, ScheduleKind


class TestLedgerConfig:
    """Test pydantic-settings configuration"""

    def test_defaults(self, monkeypatch):
        for name in ("LOAN_LEDGER_DATABASE_URL", "LOAN_LEDGER_CURRENCY", "LOAN_LEDGER_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = LedgerConfig(_env_file=None)

        assert config.database_url == "memory://"
        assert config.currency == "INR"
        assert config.display_precision == 2
        assert config.balance_sheet_tolerance == Decimal('0.01')
        assert config.default_agent_name == "Not specified"
        assert config.enable_audit_logging

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LOAN_LEDGER_DATABASE_URL", "sqlite://:memory:")
        monkeypatch.setenv("LOAN_LEDGER_BALANCE_SHEET_TOLERANCE", "0.5")
        monkeypatch.setenv("LOAN_LEDGER_ENABLE_AUDIT_LOGGING", "false")

        config = LedgerConfig(_env_file=None)

        assert config.database_url == "sqlite://:memory:"
        assert config.balance_sheet_tolerance == Decimal('0.5')
        assert not config.enable_audit_logging

    def test_reload(self, monkeypatch):
        monkeypatch.setenv("LOAN_LEDGER_DEFAULT_AGENT_NAME", "Office")

        reloaded = reload_config()

        assert reloaded.default_agent_name == "Office"
        assert get_config() is reloaded
        monkeypatch.delenv("LOAN_LEDGER_DEFAULT_AGENT_NAME")
        reload_config()


class TestLogging:
    """Test structured logging"""

    def _record(self, **attrs):
        record = logging.LogRecord(
            name="loan_ledger.ledger", level=logging.INFO, pathname=__file__,
            lineno=1, msg="Recorded payment %s", args=("P1",), exc_info=None
        )
        for key, value in attrs.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        output = json.loads(JSONFormatter().format(self._record(action="add_payment")))

        assert output["level"] == "INFO"
        assert output["logger"] == "loan_ledger.ledger"
        assert output["message"] == "Recorded payment P1"
        assert output["action"] == "add_payment"
        assert "resource" not in output

    def test_json_formatter_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = self._record()
            record.exc_info = sys.exc_info()

        output = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in output["exception"]

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", logger_name="loan_ledger.test_setup")
        setup_logging("WARNING", logger_name="loan_ledger.test_setup", log_format="text")

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert not logger.propagate
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_action(self, caplog):
        logger = get_logger("loan_ledger.test_action")
        logger.propagate = True

        with caplog.at_level(logging.INFO, logger="loan_ledger.test_action"):
            log_action(logger, "info", "Batch committed", action="commit",
                       resource="batch", extra={"payments": 2})

        record = caplog.records[-1]
        assert record.getMessage() == "Batch committed"
        assert record.action == "commit"
        assert record.extra == {"payments": 2}

    def test_log_action_below_level(self, caplog):
        logger = get_logger("loan_ledger.test_quiet")
        logger.propagate = True

        with caplog.at_level(logging.WARNING, logger="loan_ledger.test_quiet"):
            log_action(logger, "debug", "ignored")

        assert caplog.records == []

    def test_ledger_logs_mutations(self, caplog):
        system = LoanLedgerSystem(LedgerConfig(_env_file=None, database_url="memory://"))

        with caplog.at_level(logging.INFO, logger="loan_ledger"):
            system.loan_manager.create_loan("1", LoanTerms(
                principal=Decimal('1000'), interest_amount=Decimal('100'),
                schedule_kind=ScheduleKind.DAILY, issued_date=date(2024, 1, 1),
                number_of_days=10
            ))

        assert any("Created loan 1" in r.getMessage() for r in caplog.records)


class TestLoanLedgerSystem:
    """Test component wiring"""

    def test_backend_from_config(self):
        system = LoanLedgerSystem(LedgerConfig(_env_file=None, database_url="sqlite://:memory:"))
        assert isinstance(system.storage, SQLiteStorage)
        system.close()

    def test_shared_storage_and_agent_default(self):
        storage = InMemoryStorage()
        system = LoanLedgerSystem(
            LedgerConfig(_env_file=None, default_agent_name="Field team"), storage=storage
        )
        system.loan_manager.create_loan("1", LoanTerms(
            principal=Decimal('500'), interest_amount=Decimal('50'),
            schedule_kind=ScheduleKind.DAILY, issued_date=date(2024, 1, 1),
            number_of_days=5
        ))

        payment = system.payment_ledger.add_payment("1", Decimal('55'), date(2024, 1, 2), ScheduleKind.DAILY)

        assert system.storage is storage
        assert payment.agent_name == "Field team"
        assert system.audit_trail.verify_integrity()['valid']

    def test_audit_disabled(self):
        system = LoanLedgerSystem(LedgerConfig(_env_file=None, enable_audit_logging=False))
        system.area_manager.create_area("North")
        assert system.storage.count("audit_events") == 0

    def test_configure_logging_from_config(self):
        package_logger = logging.getLogger("loan_ledger")
        try:
            LoanLedgerSystem(
                LedgerConfig(_env_file=None, log_level="DEBUG", log_format="text"),
                configure_logging=True
            )
            assert package_logger.level == logging.DEBUG
            assert len(package_logger.handlers) == 1
        finally:
            for handler in package_logger.handlers[:]:
                package_logger.removeHandler(handler)
            package_logger.setLevel(logging.NOTSET)
            package_logger.propagate = True
