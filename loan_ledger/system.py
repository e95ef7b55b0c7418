"""
Ledger system wiring

Builds every component over one shared storage backend and audit trail.
"""

from typing import Optional

from .areas import AreaManager
from .audit import AuditTrail
from .batch import BatchPaymentProcessor
from .config import LedgerConfig, get_config
from .currency import Currency
from .ledger import PaymentLedger
from .loans import LoanManager
from .logging_config import setup_logging_from_config
from .penalties import PenaltyEngine
from .reporting import ReportingEngine
from .storage import StorageInterface, create_storage


class LoanLedgerSystem:
    """Loan ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        configure_logging: bool = False
    ):
        self.config = config or get_config()
        if configure_logging:
            setup_logging_from_config(self.config)

        self.storage = storage or create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)

        self.loan_manager = LoanManager(self.storage, self.audit_trail)
        self.payment_ledger = PaymentLedger(
            self.storage, self.loan_manager, self.audit_trail,
            default_agent_name=self.config.default_agent_name
        )
        self.area_manager = AreaManager(self.storage, self.loan_manager, self.audit_trail)
        self.penalty_engine = PenaltyEngine(self.loan_manager, self.payment_ledger, self.audit_trail)
        self.batch_processor = BatchPaymentProcessor(
            self.storage, self.loan_manager, self.payment_ledger, self.audit_trail
        )
        self.reporting_engine = ReportingEngine(
            self.loan_manager, self.payment_ledger, self.area_manager,
            currency=Currency.from_code(self.config.currency),
            precision=self.config.display_precision,
            tolerance=self.config.balance_sheet_tolerance
        )

    def close(self) -> None:
        self.storage.close()
