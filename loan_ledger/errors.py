"""
Ledger error taxonomy.

Every error carries an ErrorKind so batch results and callers can report
failures by kind without matching on message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Kinds of ledger failures"""
    INVALID_AMOUNT = "InvalidAmount"
    LOAN_NOT_FOUND = "LoanNotFound"
    INVALID_TERM = "InvalidTerm"
    BATCH_PARTIAL_FAILURE = "BatchPartialFailure"
    PAYMENT_NOT_FOUND = "PaymentNotFound"
    AREA_NOT_FOUND = "AreaNotFound"
    DUPLICATE_SERIAL = "DuplicateSerial"


class LedgerError(ValueError):
    """Base exception for ledger operations"""

    kind: ErrorKind = None

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class InvalidAmountError(LedgerError):
    """Payment amount is zero or negative"""
    kind = ErrorKind.INVALID_AMOUNT


class LoanNotFoundError(LedgerError):
    """Serial number or loan ID does not resolve to a loan"""
    kind = ErrorKind.LOAN_NOT_FOUND


class InvalidTermError(LedgerError):
    """Loan terms cannot produce a schedule (period count or principal <= 0)"""
    kind = ErrorKind.INVALID_TERM


class BatchPartialFailureError(LedgerError):
    """A batch with failed entries was committed without allowing partial commit"""
    kind = ErrorKind.BATCH_PARTIAL_FAILURE

    def __init__(self, message: str, failed_serials=None):
        super().__init__(message)
        self.failed_serials = list(failed_serials or [])


class PaymentNotFoundError(LedgerError):
    """Payment ID does not exist"""
    kind = ErrorKind.PAYMENT_NOT_FOUND


class AreaNotFoundError(LedgerError):
    """Area ID does not exist"""
    kind = ErrorKind.AREA_NOT_FOUND


class DuplicateSerialError(LedgerError):
    """Serial number is already assigned to another loan"""
    kind = ErrorKind.DUPLICATE_SERIAL
