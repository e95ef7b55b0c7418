"""
Loan Ledger Engine

Micro-loan book keeping: term calculation, payment reconciliation, overdue
penalties, earnings recognition and accrual balance sheets, with Decimal
math throughout and a hash-chained audit trail.
"""

__version__ = "1.0.0"
